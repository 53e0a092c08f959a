from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_sim.errors import UpstreamUnavailable  # noqa: E402
from persona_sim.memory.model import FIRST_ENCOUNTER_GREETING, create_initial_memory  # noqa: E402
from persona_sim.personas.catalog import load_persona_catalog  # noqa: E402
from persona_sim.prompts.customer import build_customer_system_prompt  # noqa: E402
from persona_sim.services.gemini_client import GeminiClient  # noqa: E402
from persona_sim.services.responder import GeminiResponseGenerator, TemplateResponseGenerator  # noqa: E402
from persona_sim.session.models import BusinessContext, ConversationContext, PersonaSession  # noqa: E402
from persona_sim.state.model import create_initial_state, increment_interaction, request_escalation  # noqa: E402

NOW = datetime(2026, 3, 4, 11, 0, tzinfo=timezone.utc)
CATALOG = load_persona_catalog()


def _session(persona_id: str = "executive") -> PersonaSession:
    return PersonaSession(
        session_id="s-1",
        persona_id=persona_id,
        user_id="u-1",
        state=create_initial_state("s-1", CATALOG.get(persona_id), NOW),
        memory=create_initial_memory(persona_id, "u-1", NOW),
        context=ConversationContext(
            ticket_type="mobile_email_sync",
            ticket_category="mobile",
            business_context=BusinessContext(priority="critical", business_impact="significant"),
        ),
        start_time=NOW,
        last_activity=NOW,
    )


class _FakeGeminiClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, list[tuple[str, str]]]] = []

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def generate(self, system_prompt: str, turns: list[tuple[str, str]]) -> str:
        self.calls.append((system_prompt, turns))
        return "I need this fixed before my board meeting."


def test_build_payload_maps_roles_and_skips_blank_turns() -> None:
    payload = GeminiClient.build_payload(
        "  be the customer  ",
        [("trainee", "Hello"), ("customer", "My phone stopped syncing"), ("trainee", "   ")],
    )

    assert payload["systemInstruction"] == {"parts": [{"text": "be the customer"}]}
    assert payload["contents"] == [
        {"role": "user", "parts": [{"text": "Hello"}]},
        {"role": "model", "parts": [{"text": "My phone stopped syncing"}]},
    ]


def test_extract_text_joins_parts_and_reports_blocks() -> None:
    data = {"candidates": [{"content": {"parts": [{"text": " First. "}, {"text": "Second."}]}}]}
    assert GeminiClient._extract_text(data) == "First.\nSecond."

    with pytest.raises(UpstreamUnavailable, match="SAFETY"):
        GeminiClient._extract_text({"promptFeedback": {"blockReason": "SAFETY"}})
    with pytest.raises(UpstreamUnavailable, match="MAX_TOKENS"):
        GeminiClient._extract_text({"candidates": [{"content": {"parts": []}, "finishReason": "MAX_TOKENS"}]})


def test_customer_prompt_carries_persona_state_and_ticket() -> None:
    session = _session()
    persona = CATALOG.get("executive")
    state = request_escalation(increment_interaction(session.state, NOW), NOW)
    state = increment_interaction(state, NOW)

    prompt = build_customer_system_prompt(persona, session, state, greeting=FIRST_ENCOUNTER_GREETING)

    assert persona.name in prompt
    assert "mobile_email_sync" in prompt
    assert "Business priority: critical" in prompt
    assert "supervisor" in prompt
    assert FIRST_ENCOUNTER_GREETING not in prompt


def test_template_responder_opens_with_greeting_then_follows_mood() -> None:
    async def scenario() -> tuple[str, str]:
        responder = TemplateResponseGenerator()
        session = _session("office_worker")
        first = increment_interaction(session.state, NOW)
        opening = await responder.generate(session, "hello", first)
        escalated = request_escalation(increment_interaction(first, NOW), NOW)
        return opening, await responder.generate(session, "hold on", escalated)

    opening, escalated = asyncio.run(scenario())
    assert opening.startswith(FIRST_ENCOUNTER_GREETING)
    assert "mobile email sync" in opening
    assert "supervisor" in escalated


def test_gemini_responder_sends_system_prompt_and_trainee_turn() -> None:
    client = _FakeGeminiClient()
    responder = GeminiResponseGenerator(client, CATALOG)  # type: ignore[arg-type]
    session = _session()
    state = increment_interaction(session.state, NOW)

    reply = asyncio.run(responder.generate(session, "Have you tried restarting?", state))

    assert reply == "I need this fixed before my board meeting."
    system_prompt, turns = client.calls[0]
    assert turns == [("trainee", "Have you tried restarting?")]
    assert "Robin Davis" in system_prompt

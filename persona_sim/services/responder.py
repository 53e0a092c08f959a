from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from ..errors import NotFound
from ..memory.model import get_personalized_greeting
from ..prompts.customer import build_customer_system_prompt
from .gemini_client import GeminiClient

if TYPE_CHECKING:
    from ..config import Settings
    from ..personas.catalog import PersonaCatalog
    from ..session.models import PersonaSession
    from ..state.model import PersonaState

logger = logging.getLogger("persona_sim.services")


class ResponseGenerator(Protocol):
    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def generate(self, session: "PersonaSession", user_message: str, state: "PersonaState") -> str: ...


def _issue_label(session: "PersonaSession") -> str:
    return session.context.ticket_type.replace("_", " ").strip()


_MOOD_LINES = {
    "angry": "This is unacceptable. {issue} is still broken and I need it fixed now.",
    "frustrated": "I'm getting really frustrated. {issue} still isn't sorted out.",
    "impatient": "Okay, but how much longer is this going to take?",
    "concerned": "I'm a bit worried about this. Will {issue} happen again?",
    "neutral": "Alright. What should I try next?",
    "calm": "Okay, I can do that. What's the next step?",
    "pleased": "That sounds good, thanks. What do I do next?",
    "grateful": "Thank you, this is really helping.",
}


class TemplateResponseGenerator:
    """Deterministic customer replies keyed on mood and session outcome."""

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def generate(self, session: "PersonaSession", user_message: str, state: "PersonaState") -> str:
        issue = _issue_label(session)
        if state.interaction_count <= 1:
            greeting = get_personalized_greeting(session.memory)
            return f"{greeting} I'm experiencing {issue} and feeling {state.current_mood}."
        if state.escalation_requested:
            return "I'd like to speak with a supervisor about this, please."
        if state.conversation_phase == "verification":
            return "Let me check... yes, it looks like it's working now."
        return _MOOD_LINES.get(state.current_mood, _MOOD_LINES["neutral"]).format(issue=issue)


class GeminiResponseGenerator:
    def __init__(self, client: GeminiClient, catalog: "PersonaCatalog") -> None:
        self.client = client
        self.catalog = catalog

    async def start(self) -> None:
        await self.client.start()

    async def close(self) -> None:
        await self.client.close()

    async def generate(self, session: "PersonaSession", user_message: str, state: "PersonaState") -> str:
        persona = self.catalog.get(session.persona_id)
        if persona is None:
            raise NotFound(f"Persona {session.persona_id!r} is not in the catalog")
        system_prompt = build_customer_system_prompt(
            persona,
            session,
            state,
            greeting=get_personalized_greeting(session.memory),
        )
        return await self.client.generate(system_prompt, [("trainee", user_message)])


def build_responder(settings: "Settings", catalog: "PersonaCatalog") -> ResponseGenerator:
    if settings.responder_backend == "gemini":
        logger.info("Using Gemini responder (%s)", settings.gemini_model)
        client = GeminiClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_seconds=settings.gemini_timeout_seconds,
            temperature=settings.gemini_temperature,
            max_output_tokens=settings.gemini_max_output_tokens,
            base_url=settings.gemini_base_url,
        )
        return GeminiResponseGenerator(client, catalog)
    return TemplateResponseGenerator()

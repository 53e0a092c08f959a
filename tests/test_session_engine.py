from __future__ import annotations

import asyncio
import dataclasses
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_sim.analytics import state_insights  # noqa: E402
from persona_sim.config import Settings  # noqa: E402
from persona_sim.errors import NotFound, UpstreamUnavailable, ValidationFailure  # noqa: E402
from persona_sim.memory.model import create_initial_memory  # noqa: E402
from persona_sim.personas.catalog import load_persona_catalog  # noqa: E402
from persona_sim.personas.selector import CatalogPersonaSelector, SelectionHints  # noqa: E402
from persona_sim.services.responder import TemplateResponseGenerator  # noqa: E402
from persona_sim.session.engine import PersonaSessionEngine  # noqa: E402
from persona_sim.session.models import BusinessContext, ConversationContext, encode_memory  # noqa: E402
from persona_sim.store.base import memory_key, session_key  # noqa: E402
from persona_sim.store.memory_store import InMemoryStore  # noqa: E402

CATALOG = load_persona_catalog()
BUSINESS_HOURS = datetime(2026, 3, 4, 11, 0, tzinfo=timezone.utc)


def _settings(**overrides: object) -> Settings:
    base = Settings(
        store_backend="memory",
        sqlite_path=Path("unused.db"),
        postgres_dsn="",
        session_ttl_seconds=3600,
        memory_ttl_seconds=86400,
        session_cache_enabled=True,
        record_interactions=True,
        key_moment_limit=50,
        max_message_chars=500,
        response_timeout_seconds=2.0,
        business_hours_start=9,
        business_hours_end=17,
        persona_catalog_path=None,
        responder_backend="template",
        gemini_api_key="",
        gemini_base_url="https://generativelanguage.googleapis.com",
        gemini_model="gemini-2.5-flash",
        gemini_timeout_seconds=30,
        gemini_temperature=0.7,
        gemini_max_output_tokens=0,
        log_level="INFO",
    )
    return dataclasses.replace(base, **overrides)


class _FailingResponder(TemplateResponseGenerator):
    async def generate(self, session, user_message, state):  # type: ignore[no-untyped-def]
        raise ConnectionError("model endpoint refused the connection")


class _SlowResponder(TemplateResponseGenerator):
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def generate(self, session, user_message, state):  # type: ignore[no-untyped-def]
        await asyncio.sleep(self.delay)
        return await super().generate(session, user_message, state)


def _engine(
    store: InMemoryStore | None = None,
    *,
    responder: TemplateResponseGenerator | None = None,
    at: datetime = BUSINESS_HOURS,
    **overrides: object,
) -> PersonaSessionEngine:
    return PersonaSessionEngine(
        settings=_settings(**overrides),
        store=store or InMemoryStore(),
        selector=CatalogPersonaSelector(CATALOG),
        responder=responder or TemplateResponseGenerator(),
        catalog=CATALOG,
        clock=lambda: at,
    )


def _context(priority: str = "medium", ticket_type: str = "vpn_connection_problems") -> ConversationContext:
    return ConversationContext(
        ticket_type=ticket_type,
        ticket_category="network",
        business_context=BusinessContext(priority=priority),
    )


def _hints(persona_id: str = "office_worker") -> SelectionHints:
    return SelectionHints(override_persona=persona_id)


def test_critical_priority_raises_initial_frustration_by_two() -> None:
    async def scenario() -> None:
        async with _engine() as engine:
            session = await engine.start_session("s-a", "u-1", _context("critical"), _hints())
            baseline = await engine.start_session("s-a2", "u-2", _context("medium"), _hints())

        assert session.state.frustration_level == baseline.state.frustration_level + 2
        assert session.state.contextual_factors.urgency == "critical"
        assert session.state.current_mood == "neutral"

    asyncio.run(scenario())


def test_returning_user_starts_with_extra_trust_and_good_service() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        memory = create_initial_memory("office_worker", "u-1", BUSINESS_HOURS)
        memory.total_interactions = 6
        await store.set(memory_key("office_worker", "u-1"), encode_memory(memory), 3600)

        async with _engine(store) as engine:
            session = await engine.start_session("s-b", "u-1", _context(), _hints())

        assert session.state.trust_level == 6
        assert session.state.behavioral_modifiers.has_received_good_service is True
        assert session.memory.total_interactions == 6

    asyncio.run(scenario())


def test_gratitude_on_third_turn_is_troubleshooting_with_skill_moment() -> None:
    async def scenario() -> None:
        async with _engine() as engine:
            await engine.start_session("s-c", "u-1", _context(), _hints())
            await engine.process_interaction("s-c", "Hi, I'm from the help desk.")
            await engine.process_interaction("s-c", "Could you check the VPN client version?")
            result = await engine.process_interaction("s-c", "thank you so much, that's helpful")
            memory = await engine.get_persona_memory("office_worker", "u-1")
            stored = await engine.get_interaction("s-c", 3)

        assert result.interaction.turn == 3
        assert result.interaction.interaction_type == "troubleshooting"
        assert [(m.kind, m.impact) for m in result.learning_moments] == [("skill_demonstrated", "high")]
        assert result.state.current_mood == "calm"
        assert result.interaction.mood_change == {"from": "neutral", "to": "calm", "trigger": "thank you"}
        assert result.response
        assert memory is not None
        assert [m.description for m in memory.key_moments] == ["Learning progress in customer_satisfaction"]
        assert stored == result.interaction

    asyncio.run(scenario())


def test_unknown_session_fails_without_writing() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        async with _engine(store) as engine:
            with pytest.raises(NotFound):
                await engine.process_interaction("missing", "hello")
        assert store.writes == 0

    asyncio.run(scenario())


def test_end_session_returns_analytics_and_leaves_record_in_store() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        async with _engine(store) as engine:
            await engine.start_session("s-e", "u-1", _context(), _hints())
            await engine.process_interaction("s-e", "Hello, what seems to be the issue?")
            await engine.process_interaction("s-e", "Please try restarting the VPN client, thank you")
            analytics = await engine.end_session("s-e", True)

            assert engine.status_snapshot()["cached_sessions"] == 0
            assert engine.status_snapshot()["active_sessions"] == 0
            assert engine.status_snapshot()["session_locks"] == 0
            stored = await engine.get_session("s-e")
            memory = await engine.get_persona_memory("office_worker", "u-1")

        assert stored is not None
        assert stored.is_active is False
        assert stored.state.issue_resolved == "resolved"
        expected = (state_insights(stored.state).overall_satisfaction + 5.0) / 2
        assert analytics.overall_performance == pytest.approx(expected)
        assert analytics.session_id == "s-e"
        assert memory is not None
        assert memory.total_interactions == 2
        assert memory.session_history[-1].resolution == "resolved"
        assert session_key("s-e") in store.keys()

    asyncio.run(scenario())


def test_ended_session_rejects_further_turns() -> None:
    async def scenario() -> None:
        async with _engine() as engine:
            await engine.start_session("s-x", "u-1", _context(), _hints())
            await engine.end_session("s-x", False)
            with pytest.raises(ValidationFailure):
                await engine.process_interaction("s-x", "are you still there?")
            with pytest.raises(ValidationFailure):
                await engine.end_session("s-x", True)

    asyncio.run(scenario())


def test_start_session_rejects_bad_input_and_duplicates() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        async with _engine(store) as engine:
            with pytest.raises(ValidationFailure):
                await engine.start_session("s-1", "u-1", _context(priority="urgent"), _hints())
            with pytest.raises(ValidationFailure):
                await engine.start_session("", "u-1", _context(), _hints())
            assert store.writes == 0

            await engine.start_session("s-1", "u-1", _context(), _hints())
            with pytest.raises(ValidationFailure):
                await engine.start_session("s-1", "u-1", _context(), _hints())
            with pytest.raises(NotFound):
                await engine.start_session("s-2", "u-1", _context(), _hints("astronaut"))

    asyncio.run(scenario())


def test_message_validation_happens_before_any_lookup() -> None:
    async def scenario() -> None:
        async with _engine(max_message_chars=10) as engine:
            await engine.start_session("s-1", "u-1", _context(), _hints())
            with pytest.raises(ValidationFailure):
                await engine.process_interaction("s-1", "   ")
            with pytest.raises(ValidationFailure):
                await engine.process_interaction("s-1", "x" * 11)
            session = await engine.get_session("s-1")
        assert session is not None
        assert session.state.interaction_count == 0

    asyncio.run(scenario())


def test_concurrent_turns_on_one_session_are_serialized() -> None:
    async def scenario() -> None:
        async with _engine(responder=_SlowResponder(0.01)) as engine:
            await engine.start_session("s-1", "u-1", _context(), _hints())
            results = await asyncio.gather(
                *(engine.process_interaction("s-1", f"please check item {i}") for i in range(4))
            )
            session = await engine.get_session("s-1")

        assert sorted(r.interaction.turn for r in results) == [1, 2, 3, 4]
        assert session is not None
        assert session.state.interaction_count == 4

    asyncio.run(scenario())


def test_sessions_for_same_user_fold_into_one_memory() -> None:
    async def scenario() -> None:
        async with _engine(responder=_SlowResponder(0.01)) as engine:
            await engine.start_session("s-1", "u-1", _context(), _hints())
            await engine.start_session("s-2", "u-1", _context(), _hints())
            await asyncio.gather(
                engine.process_interaction("s-1", "hello"),
                engine.process_interaction("s-2", "hello"),
            )
            await asyncio.gather(engine.end_session("s-1", True), engine.end_session("s-2", False))
            memory = await engine.get_persona_memory("office_worker", "u-1")

        assert memory is not None
        assert sorted(s.session_id for s in memory.session_history) == ["s-1", "s-2"]
        assert memory.total_interactions == 2

    asyncio.run(scenario())


def test_responder_failure_leaves_session_unchanged() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        async with _engine(store, responder=_FailingResponder()) as engine:
            before = await engine.start_session("s-1", "u-1", _context(), _hints())
            writes = store.writes
            with pytest.raises(UpstreamUnavailable):
                await engine.process_interaction("s-1", "thank you, that's helpful")
            after = await engine.get_session("s-1")

        assert store.writes == writes
        assert after == before

    asyncio.run(scenario())


def test_responder_timeout_surfaces_as_upstream_unavailable() -> None:
    async def scenario() -> None:
        async with _engine(responder=_SlowResponder(1.0), response_timeout_seconds=0.05) as engine:
            await engine.start_session("s-1", "u-1", _context(), _hints())
            with pytest.raises(UpstreamUnavailable):
                await engine.process_interaction("s-1", "hello")
            session = await engine.get_session("s-1")
        assert session is not None
        assert session.state.interaction_count == 0

    asyncio.run(scenario())


def test_cache_does_not_change_observable_results() -> None:
    messages = ["hello", "It's still not working", "Please restart it, thank you", "great, it's working now"]

    async def run(cache_enabled: bool) -> tuple[list[str], object]:
        async with _engine(session_cache_enabled=cache_enabled) as engine:
            await engine.start_session("s-1", "u-1", _context(), _hints("frustrated_user"))
            responses = [(await engine.process_interaction("s-1", m)).response for m in messages]
            analytics = await engine.end_session("s-1", True)
        return responses, analytics

    cached = asyncio.run(run(True))
    uncached = asyncio.run(run(False))
    assert cached == uncached


def test_off_hours_start_marks_time_of_day_and_upsets_time_sensitive_persona() -> None:
    async def scenario() -> None:
        async with _engine(at=datetime(2026, 3, 4, 20, 0, tzinfo=timezone.utc)) as engine:
            evening = await engine.start_session("s-1", "u-1", _context(), _hints("executive"))
        async with _engine(at=datetime(2026, 3, 4, 7, 0, tzinfo=timezone.utc)) as engine:
            morning = await engine.start_session("s-2", "u-1", _context(), _hints("office_worker"))
        async with _engine() as engine:
            daytime = await engine.start_session("s-3", "u-1", _context(), _hints("executive"))

        assert evening.state.contextual_factors.time_of_day == "evening"
        assert evening.state.frustration_level == daytime.state.frustration_level + 1
        assert morning.state.contextual_factors.time_of_day == "morning"
        assert morning.state.frustration_level == 2

    asyncio.run(scenario())


def test_escalation_turn_sets_phase_and_flag() -> None:
    async def scenario() -> None:
        async with _engine() as engine:
            await engine.start_session("s-1", "u-1", _context(), _hints())
            await engine.process_interaction("s-1", "hello")
            result = await engine.process_interaction("s-1", "I need to talk to your manager")
            analytics = await engine.get_session_analytics("s-1")

        assert result.interaction.interaction_type == "escalation"
        assert result.state.escalation_requested is True
        assert result.state.conversation_phase == "escalation"
        assert result.insights.escalation_risk == 10.0
        assert analytics is not None
        assert "consider_escalation" in analytics.recommendations

    asyncio.run(scenario())


class _FlakyStore(InMemoryStore):
    """Fails the next ``failures`` writes whose key starts with ``prefix``."""

    def __init__(self, prefix: str, failures: int = 1) -> None:
        super().__init__()
        self.prefix = prefix
        self.failures = failures

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if key.startswith(self.prefix) and self.failures > 0:
            self.failures -= 1
            raise ConnectionError(f"write to {key} dropped")
        await super().set(key, value, ttl_seconds)


def test_end_session_retry_after_failed_commit_counts_session_once() -> None:
    async def scenario() -> None:
        store = _FlakyStore("session:", failures=0)
        async with _engine(store) as engine:
            await engine.start_session("s-1", "u-1", _context(), _hints())
            await engine.process_interaction("s-1", "hello")
            await engine.process_interaction("s-1", "Could you check the VPN client version?")

            store.failures = 1
            with pytest.raises(UpstreamUnavailable):
                await engine.end_session("s-1", True)
            after_failure = await engine.get_persona_memory("office_worker", "u-1")
            still_open = await engine.get_session("s-1")

            await engine.end_session("s-1", True)
            memory = await engine.get_persona_memory("office_worker", "u-1")

        assert after_failure is not None
        assert after_failure.session_history == []
        assert after_failure.total_interactions == 0
        assert still_open is not None
        assert still_open.is_active is True
        assert memory is not None
        assert [s.session_id for s in memory.session_history] == ["s-1"]
        assert memory.total_interactions == 2

    asyncio.run(scenario())


@pytest.mark.parametrize("prefix", ["session:", "interaction:"])
def test_failed_turn_commit_puts_previous_memory_back(prefix: str) -> None:
    async def scenario() -> None:
        store = _FlakyStore(prefix, failures=0)
        async with _engine(store) as engine:
            await engine.start_session("s-1", "u-1", _context(), _hints())
            await engine.process_interaction("s-1", "hello")

            store.failures = 1
            with pytest.raises(UpstreamUnavailable):
                await engine.process_interaction("s-1", "ok I understand now, thanks")
            memory = await engine.get_persona_memory("office_worker", "u-1")
            session = await engine.get_session("s-1")

            retry = await engine.process_interaction("s-1", "Could you check the VPN client version?")
            after_retry = await engine.get_persona_memory("office_worker", "u-1")
            stored = await engine.get_interaction("s-1", 2)

        assert memory is not None
        assert memory.key_moments == []
        assert memory.technical_understanding == {}
        assert session is not None
        assert session.state.interaction_count == 1
        assert retry.interaction.turn == 2
        assert after_retry is not None
        assert after_retry.key_moments == []
        assert stored is not None
        assert stored.user_message == "Could you check the VPN client version?"

    asyncio.run(scenario())


def test_task_manager_request_is_not_an_escalation() -> None:
    async def scenario() -> None:
        async with _engine() as engine:
            await engine.start_session("s-1", "u-1", _context(), _hints())
            await engine.process_interaction("s-1", "hello")
            result = await engine.process_interaction("s-1", "Can you check Task Manager for me?")

        assert result.interaction.interaction_type == "troubleshooting"
        assert result.state.escalation_requested is False
        assert result.state.conversation_phase == "troubleshooting"

    asyncio.run(scenario())

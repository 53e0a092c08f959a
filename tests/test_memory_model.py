from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_sim.errors import ValidationFailure  # noqa: E402
from persona_sim.memory.model import (  # noqa: E402
    FIRST_ENCOUNTER_GREETING,
    TIER_ORDER,
    PersonaMemory,
    SessionSummary,
    add_session_memory,
    create_initial_memory,
    get_personalized_greeting,
    record_key_moment,
    trim_key_moments,
    update_technical_understanding,
)
from persona_sim.serde import dump_record, load_record  # noqa: E402

NOW = datetime(2026, 3, 4, 11, 0, tzinfo=timezone.utc)


def _summary(session_id: str, *, resolution: str = "resolved", satisfaction: int = 7, count: int = 3) -> SessionSummary:
    return SessionSummary(
        session_id=session_id,
        ended_at=NOW,
        issue_type="vpn_connection_problems",
        resolution=resolution,
        duration_seconds=420,
        satisfaction_level=satisfaction,
        interaction_count=count,
    )


def test_initial_memory_is_empty() -> None:
    memory = create_initial_memory("executive", "u-1", NOW)
    assert memory.total_interactions == 0
    assert memory.technical_understanding == {}
    assert memory.key_moments == []
    assert memory.session_history == []
    assert memory.relationship.trust_level == 5.0


def test_update_technical_understanding_is_monotonic() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    memory = update_technical_understanding(memory, "email", "intermediate", True, NOW)

    for tier in TIER_ORDER:
        again = update_technical_understanding(memory, "email", tier, True, NOW)
        assert TIER_ORDER.index(again.technical_understanding["email"]) >= TIER_ORDER.index("intermediate")

    upgraded = update_technical_understanding(memory, "email", "advanced", True, NOW)
    assert upgraded.technical_understanding["email"] == "advanced"
    assert memory.technical_understanding["email"] == "intermediate"


def test_update_technical_understanding_ignores_unimproved_calls() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    unchanged = update_technical_understanding(memory, "vpn", "advanced", False, NOW)
    assert unchanged.technical_understanding == {}
    assert unchanged is not memory


def test_update_technical_understanding_rejects_unknown_tier() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    with pytest.raises(ValidationFailure):
        update_technical_understanding(memory, "vpn", "guru", True, NOW)


def test_record_key_moment_appends_without_aliasing_and_dedupes_replays() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    first = record_key_moment(memory, "learning", "Learning progress in vpn", "medium", "got it", session_id="s", turn=2)
    replay = record_key_moment(first, "learning", "Learning progress in vpn", "medium", "got it", session_id="s", turn=2)
    nxt = record_key_moment(replay, "learning", "Learning progress in vpn", "medium", "i see", session_id="s", turn=3)

    assert memory.key_moments == []
    assert len(first.key_moments) == 1
    assert len(replay.key_moments) == 1
    assert [m.turn for m in nxt.key_moments] == [2, 3]


def test_trim_key_moments_keeps_most_recent() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    for turn in range(1, 8):
        memory = record_key_moment(memory, "positive", f"moment {turn}", "low", "", session_id="s", turn=turn)

    trimmed = trim_key_moments(memory, 3)

    assert [m.description for m in trimmed.key_moments] == ["moment 5", "moment 6", "moment 7"]
    assert len(memory.key_moments) == 7


def test_add_session_memory_counts_interactions_and_drifts_relationship() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    memory = add_session_memory(memory, _summary("s-1", count=2), NOW)
    assert memory.total_interactions == 2
    assert memory.relationship.trust_level == pytest.approx(5.5)
    assert memory.relationship.comfort_level == pytest.approx(5.0)

    memory = add_session_memory(memory, _summary("s-2", resolution="abandoned", count=2), NOW)
    assert memory.total_interactions == 4
    assert memory.relationship.trust_level == pytest.approx(5.5)
    assert memory.relationship.comfort_level == pytest.approx(5.2)
    assert [s.session_id for s in memory.session_history] == ["s-1", "s-2"]


def test_add_session_memory_ignores_a_replayed_session_end() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    memory = add_session_memory(memory, _summary("s-1", count=2), NOW)
    memory = add_session_memory(memory, _summary("s-1", count=2), NOW)

    assert [s.session_id for s in memory.session_history] == ["s-1"]
    assert memory.total_interactions == 2
    assert memory.relationship.trust_level == pytest.approx(5.5)


def test_greeting_for_first_encounter_and_returning_user() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    assert get_personalized_greeting(memory) == FIRST_ENCOUNTER_GREETING

    unresolved = add_session_memory(memory, _summary("s-1", resolution="abandoned"), NOW)
    assert get_personalized_greeting(unresolved) == (
        "Hello! I see we were working on vpn_connection_problems last time. How is that going?"
    )

    resolved = add_session_memory(memory, _summary("s-1"), NOW)
    resolved.relationship.comfort_level = 8.0
    assert get_personalized_greeting(resolved) == "Hi! Good to hear from you again. What can I help you with today?"


def test_memory_round_trips_through_json_record() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    memory = update_technical_understanding(memory, "email", "basic", True, NOW + timedelta(minutes=1))
    memory = record_key_moment(memory, "learning", "Learning progress in email", "medium", "ok", session_id="s", turn=1)
    memory = add_session_memory(memory, _summary("s"), NOW)

    restored = PersonaMemory.from_dict(load_record(dump_record(memory)))

    assert restored == memory

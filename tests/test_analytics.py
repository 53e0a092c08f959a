from __future__ import annotations

import dataclasses
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_sim.analytics import escalation_risk, memory_insights, state_insights, synthesize  # noqa: E402
from persona_sim.memory.model import (  # noqa: E402
    SessionSummary,
    add_session_memory,
    create_initial_memory,
    update_technical_understanding,
)
from persona_sim.personas.catalog import load_persona_catalog  # noqa: E402
from persona_sim.session.models import ConversationContext, PersonaSession  # noqa: E402
from persona_sim.state.model import create_initial_state, request_escalation  # noqa: E402

NOW = datetime(2026, 3, 4, 11, 0, tzinfo=timezone.utc)
CATALOG = load_persona_catalog()


def _session(persona_id: str = "office_worker") -> PersonaSession:
    return PersonaSession(
        session_id="s-1",
        persona_id=persona_id,
        user_id="u-1",
        state=create_initial_state("s-1", CATALOG.get(persona_id), NOW),
        memory=create_initial_memory(persona_id, "u-1", NOW),
        context=ConversationContext(ticket_type="vpn_connection_problems"),
        start_time=NOW,
        last_activity=NOW,
    )


def test_state_insights_for_fresh_office_worker() -> None:
    insights = state_insights(_session().state)

    # sat 5, frus 2, trust 5, engagement 6
    assert insights.overall_satisfaction == pytest.approx(5 * 0.4 + 8 * 0.3 + 5 * 0.2 + 6 * 0.1)
    assert insights.engagement_quality == pytest.approx((6 + 5 + 8) / 3)
    assert insights.relationship_strength == pytest.approx((5 + 5 + 6) / 3)
    assert insights.escalation_risk == pytest.approx(2 * 0.3 + 5 * 0.2 + 5 * 0.2)
    assert insights.learning_progress == 0.0
    assert insights.recommended_actions == []


def test_escalation_risk_is_pinned_once_requested() -> None:
    state = request_escalation(_session().state, NOW)
    assert escalation_risk(state) == 10.0


def test_escalation_risk_counts_long_sessions_and_caps_at_ten() -> None:
    state = _session().state
    long_state = dataclasses.replace(state, time_in_session=601)
    assert escalation_risk(long_state) == pytest.approx(escalation_risk(state) + 2)

    worst = dataclasses.replace(long_state, frustration_level=10, satisfaction_level=0, trust_level=0)
    assert escalation_risk(worst) == 10.0


def test_frustrated_novice_gets_patience_and_empathy_actions() -> None:
    state = dataclasses.replace(_session("frustrated_user").state, frustration_level=8, trust_level=3)
    actions = state_insights(state).recommended_actions
    assert actions[:2] == ["show_empathy", "provide_immediate_help"]
    assert "build_credibility" in actions
    assert "slow_down_explanations" in actions


def test_memory_insights_defaults_without_history() -> None:
    insights = memory_insights(create_initial_memory("office_worker", "u-1", NOW))
    assert insights.relationship_strength == 5.0
    assert insights.learning_progress == 0.0
    assert insights.satisfaction_trend == 5.0
    assert insights.recommended_approaches == []


def test_memory_insights_average_recent_sessions_and_competency() -> None:
    memory = create_initial_memory("office_worker", "u-1", NOW)
    memory = update_technical_understanding(memory, "email", "basic", True, NOW)
    memory = update_technical_understanding(memory, "vpn", "advanced", True, NOW)
    for index, satisfaction in enumerate([1, 2, 6, 7, 8, 9]):
        memory = add_session_memory(
            memory,
            SessionSummary(
                session_id=f"s-{index}",
                ended_at=NOW,
                issue_type="vpn",
                resolution="resolved",
                duration_seconds=60,
                satisfaction_level=satisfaction,
                interaction_count=1,
                learning_achievements=["Learning progress in vpn"],
            ),
            NOW,
        )

    insights = memory_insights(memory)

    assert insights.learning_progress == pytest.approx((20 + 80) / 2)
    assert insights.satisfaction_trend == pytest.approx((2 + 6 + 7 + 8 + 9) / 5)
    assert insights.knowledge_growth == 60.0


def test_synthesize_averages_state_and_memory_views() -> None:
    session = _session()
    analytics = synthesize(session)

    expected = (state_insights(session.state).overall_satisfaction + 5.0) / 2
    assert analytics.overall_performance == pytest.approx(expected)
    assert analytics.skill_development[0].skill == "empathy"
    assert analytics.skill_development[0].current_level == 50
    assert analytics.behavior_patterns[0].context == ["vpn_connection_problems"]
    assert analytics.behavior_patterns[0].improvement_suggestions == ["Show more empathy", "Ask clarifying questions"]

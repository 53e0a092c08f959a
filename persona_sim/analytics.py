from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .memory.model import PersonaMemory

if TYPE_CHECKING:
    from .session.models import PersonaSession
    from .state.model import PersonaState

TIER_COMPETENCY: dict[str, int] = {
    "none": 0,
    "basic": 20,
    "intermediate": 50,
    "advanced": 80,
}

# Seconds after which a session itself counts toward escalation risk.
LONG_SESSION_SECONDS = 600


@dataclass(slots=True)
class StateInsights:
    overall_satisfaction: float
    escalation_risk: float
    engagement_quality: float
    learning_progress: float
    relationship_strength: float
    recommended_actions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MemoryInsights:
    relationship_strength: float
    learning_progress: float
    satisfaction_trend: float
    engagement_level: float
    knowledge_growth: float
    recommended_approaches: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SkillDevelopment:
    skill: str
    initial_level: int
    current_level: int
    progress: int
    practice_time: int
    success_rate: int


@dataclass(slots=True)
class BehaviorPattern:
    pattern: str
    frequency: int
    effectiveness: int
    context: list[str] = field(default_factory=list)
    improvement_suggestions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class PersonaAnalytics:
    session_id: str
    persona_id: str
    overall_performance: float
    learning_effectiveness: float
    engagement_level: float
    satisfaction_trend: float
    skill_development: list[SkillDevelopment] = field(default_factory=list)
    behavior_patterns: list[BehaviorPattern] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


def escalation_risk(state: "PersonaState") -> float:
    if state.escalation_requested:
        return 10.0
    risk = (
        state.frustration_level * 0.3
        + (10 - state.satisfaction_level) * 0.2
        + (10 - state.trust_level) * 0.2
        + (2 if state.time_in_session > LONG_SESSION_SECONDS else 0)
    )
    return min(10.0, risk)


def state_insights(state: "PersonaState") -> StateInsights:
    sat = state.satisfaction_level
    frus = state.frustration_level
    trust = state.trust_level
    eng = state.engagement_level
    risk = escalation_risk(state)

    actions: list[str] = []
    if frus > 6:
        actions.extend(["show_empathy", "provide_immediate_help"])
    if trust < 4:
        actions.extend(["build_credibility", "demonstrate_expertise"])
    if state.behavioral_modifiers.needs_extra_patience:
        actions.extend(["slow_down_explanations", "check_understanding"])
    if eng < 4:
        actions.extend(["re_engage_customer", "simplify_approach"])
    if risk > 7:
        actions.extend(["consider_escalation", "involve_supervisor"])

    learning = 0.0
    if state.behavioral_modifiers.is_learning_mode:
        learning = min(10.0, state.technical_confidence + state.interaction_count * 0.5)

    return StateInsights(
        overall_satisfaction=sat * 0.4 + (10 - frus) * 0.3 + trust * 0.2 + eng * 0.1,
        escalation_risk=risk,
        engagement_quality=(eng + trust + (10 - frus)) / 3,
        learning_progress=learning,
        relationship_strength=(trust + sat + eng) / 3,
        recommended_actions=actions,
    )


def memory_insights(memory: PersonaMemory) -> MemoryInsights:
    relationship = memory.relationship
    tiers = list(memory.technical_understanding.values())
    learning = sum(TIER_COMPETENCY.get(tier, 0) for tier in tiers) / len(tiers) if tiers else 0.0

    recent = memory.session_history[-5:]
    trend = sum(s.satisfaction_level for s in recent) / len(recent) if recent else 5.0

    achievements = sum(len(s.learning_achievements) for s in memory.session_history)

    approaches: list[str] = []
    if relationship.trust_level < 5:
        approaches.append("build_trust")
    if relationship.learning_motivation > 7:
        approaches.append("provide_advanced_learning")

    return MemoryInsights(
        relationship_strength=(relationship.trust_level + relationship.comfort_level) / 2,
        learning_progress=float(learning),
        satisfaction_trend=float(trend),
        engagement_level=relationship.learning_motivation,
        knowledge_growth=float(min(100, achievements * 10)),
        recommended_approaches=approaches,
    )


def _skill_development(state: "PersonaState") -> list[SkillDevelopment]:
    sat = state.satisfaction_level
    return [
        SkillDevelopment(
            skill="empathy",
            initial_level=60,
            current_level=sat * 10,
            progress=sat - 6,
            practice_time=state.time_in_session,
            success_rate=85 if sat > 6 else 65,
        )
    ]


def _behavior_patterns(session: "PersonaSession") -> list[BehaviorPattern]:
    state = session.state
    return [
        BehaviorPattern(
            pattern="active_listening",
            frequency=state.interaction_count,
            effectiveness=state.engagement_level * 10,
            context=[session.context.ticket_type],
            improvement_suggestions=(
                ["Show more empathy", "Ask clarifying questions"] if state.satisfaction_level < 7 else []
            ),
        )
    ]


def synthesize(session: "PersonaSession", memory: PersonaMemory | None = None) -> PersonaAnalytics:
    """Project a session and its memory into a read-only analytics record.

    ``memory`` defaults to the snapshot carried by the session.
    """
    state_view = state_insights(session.state)
    memory_view = memory_insights(memory if memory is not None else session.memory)
    return PersonaAnalytics(
        session_id=session.session_id,
        persona_id=session.persona_id,
        overall_performance=(state_view.overall_satisfaction + memory_view.satisfaction_trend) / 2,
        learning_effectiveness=memory_view.learning_progress,
        engagement_level=state_view.engagement_quality,
        satisfaction_trend=memory_view.satisfaction_trend,
        skill_development=_skill_development(session.state),
        behavior_patterns=_behavior_patterns(session),
        recommendations=[*state_view.recommended_actions, *memory_view.recommended_approaches],
    )

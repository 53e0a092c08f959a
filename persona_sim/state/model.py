from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..errors import ValidationFailure
from ..serde import parse_dt, utc_now
from .mood import clamp_level, mood_intensity, normalize_direction, normalize_mood, shift_mood

if TYPE_CHECKING:
    from ..personas.catalog import PersonaProfile


RESOLUTION_STATES: tuple[str, ...] = ("unresolved", "resolved", "abandoned")

CONVERSATION_PHASES: tuple[str, ...] = (
    "greeting",
    "problem_description",
    "troubleshooting",
    "solution_implementation",
    "verification",
    "resolution",
    "follow_up",
    "escalation",
)

_BASELINE_FRUSTRATION = {
    "angry": 8,
    "frustrated": 6,
    "impatient": 5,
    "concerned": 4,
}

_TECHNICAL_CONFIDENCE = {
    "novice": 2,
    "intermediate": 5,
    "advanced": 8,
}

# Per unit of mood intensity.
_LEVEL_SHIFTS = {
    "positive": {"satisfaction_level": 1, "frustration_level": -1, "trust_level": 1},
    "negative": {"satisfaction_level": -1, "frustration_level": 1, "trust_level": -1},
}


def time_of_day_for(hour: int) -> str:
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    if hour < 21:
        return "evening"
    return "night"


@dataclass(slots=True)
class MoodChange:
    from_mood: str
    to_mood: str
    trigger: str
    trigger_type: str
    intensity: int
    source_message: str
    timestamp: datetime
    user_action: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MoodChange":
        return cls(
            from_mood=normalize_mood(data["from_mood"]),
            to_mood=normalize_mood(data["to_mood"]),
            trigger=str(data.get("trigger") or ""),
            trigger_type=normalize_direction(data["trigger_type"]),
            intensity=int(data.get("intensity") or 0),
            source_message=str(data.get("source_message") or ""),
            timestamp=parse_dt(data["timestamp"]),
            user_action=data.get("user_action"),
        )


@dataclass(slots=True)
class ContextualFactors:
    time_of_day: str = "afternoon"
    day_of_week: str = "weekday"
    urgency: str = "medium"
    business_impact: str = "minimal"
    has_deadline: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContextualFactors":
        return cls(
            time_of_day=str(data.get("time_of_day") or "afternoon"),
            day_of_week=str(data.get("day_of_week") or "weekday"),
            urgency=str(data.get("urgency") or "medium"),
            business_impact=str(data.get("business_impact") or "minimal"),
            has_deadline=bool(data.get("has_deadline", False)),
        )


@dataclass(slots=True)
class BehavioralModifiers:
    has_received_good_service: bool = False
    is_learning_mode: bool = False
    needs_extra_patience: bool = False
    prefers_detailed_explanations: bool = False
    wants_quick_fix: bool = False
    is_multitasking: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BehavioralModifiers":
        names = [f.name for f in dataclasses.fields(cls)]
        return cls(**{name: bool(data.get(name, False)) for name in names})


@dataclass(slots=True)
class PersonaState:
    session_id: str
    persona_id: str
    current_mood: str
    frustration_level: int
    trust_level: int
    satisfaction_level: int
    engagement_level: int
    technical_confidence: int
    last_updated: datetime
    interaction_count: int = 0
    time_in_session: int = 0
    issue_resolved: str = "unresolved"
    escalation_requested: bool = False
    conversation_phase: str = "greeting"
    contextual_factors: ContextualFactors = field(default_factory=ContextualFactors)
    behavioral_modifiers: BehavioralModifiers = field(default_factory=BehavioralModifiers)
    mood_history: list[MoodChange] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersonaState":
        resolution = str(data.get("issue_resolved") or "unresolved")
        if resolution not in RESOLUTION_STATES:
            raise ValidationFailure(f"Unknown resolution state {resolution!r}")
        return cls(
            session_id=str(data["session_id"]),
            persona_id=str(data["persona_id"]),
            current_mood=normalize_mood(data["current_mood"]),
            frustration_level=clamp_level(data["frustration_level"]),
            trust_level=clamp_level(data["trust_level"]),
            satisfaction_level=clamp_level(data["satisfaction_level"]),
            engagement_level=clamp_level(data["engagement_level"]),
            technical_confidence=clamp_level(data.get("technical_confidence", 5)),
            last_updated=parse_dt(data["last_updated"]),
            interaction_count=max(0, int(data.get("interaction_count") or 0)),
            time_in_session=max(0, int(data.get("time_in_session") or 0)),
            issue_resolved=resolution,
            escalation_requested=bool(data.get("escalation_requested", False)),
            conversation_phase=str(data.get("conversation_phase") or "greeting"),
            contextual_factors=ContextualFactors.from_dict(data.get("contextual_factors") or {}),
            behavioral_modifiers=BehavioralModifiers.from_dict(data.get("behavioral_modifiers") or {}),
            mood_history=[MoodChange.from_dict(item) for item in data.get("mood_history") or []],
        )


def create_initial_state(session_id: str, persona: "PersonaProfile", now: datetime | None = None) -> PersonaState:
    now = now or utc_now()
    return PersonaState(
        session_id=session_id,
        persona_id=persona.id,
        current_mood=persona.baseline_mood,
        satisfaction_level=5,
        frustration_level=_BASELINE_FRUSTRATION.get(persona.baseline_mood, 2),
        trust_level=5,
        # Slightly positive: the customer is the one asking for help.
        engagement_level=6,
        technical_confidence=_TECHNICAL_CONFIDENCE.get(persona.technical_level, 5),
        last_updated=now,
        contextual_factors=ContextualFactors(
            time_of_day=time_of_day_for(now.hour),
            day_of_week="weekend" if now.weekday() >= 5 else "weekday",
        ),
        behavioral_modifiers=BehavioralModifiers(
            is_learning_mode=persona.curiosity in {"high", "very_high"},
            needs_extra_patience=persona.technical_level == "novice",
            prefers_detailed_explanations=persona.verbosity == "verbose",
            wants_quick_fix=persona.patience in {"low", "very_low"},
            is_multitasking=persona.multitasking,
        ),
    )


def apply_trigger(
    state: PersonaState,
    direction: str,
    *,
    trigger: str = "",
    source_message: str = "",
    user_action: str | None = None,
    now: datetime | None = None,
) -> PersonaState:
    """Apply one positive/negative trigger and return the resulting state.

    The mood moves a single step on the scale; satisfaction, frustration and
    trust follow by the distance actually moved, so a trigger at either end of
    the scale changes nothing but the audit trail.
    """
    now = now or utc_now()
    direction = normalize_direction(direction)
    new_mood = shift_mood(state.current_mood, direction)
    intensity = mood_intensity(state.current_mood, new_mood)
    change = MoodChange(
        from_mood=state.current_mood,
        to_mood=new_mood,
        trigger=trigger,
        trigger_type=direction,
        intensity=intensity,
        source_message=source_message,
        timestamp=now,
        user_action=user_action,
    )
    shifts = _LEVEL_SHIFTS[direction]
    return dataclasses.replace(
        state,
        current_mood=new_mood,
        mood_history=[*state.mood_history, change],
        satisfaction_level=clamp_level(state.satisfaction_level + shifts["satisfaction_level"] * intensity),
        frustration_level=clamp_level(state.frustration_level + shifts["frustration_level"] * intensity),
        trust_level=clamp_level(state.trust_level + shifts["trust_level"] * intensity),
        last_updated=now,
    )


def estimated_turn_seconds(state: PersonaState) -> int:
    # Frustrated customers answer faster.
    pace = 0.7 if state.frustration_level > 5 else 1.2
    return int(round(30 * pace * (state.engagement_level / 10)))


def increment_interaction(state: PersonaState, now: datetime | None = None) -> PersonaState:
    return dataclasses.replace(
        state,
        interaction_count=state.interaction_count + 1,
        time_in_session=state.time_in_session + estimated_turn_seconds(state),
        last_updated=now or utc_now(),
    )


def set_conversation_phase(state: PersonaState, phase: str, now: datetime | None = None) -> PersonaState:
    if phase not in CONVERSATION_PHASES:
        raise ValidationFailure(f"Unknown conversation phase {phase!r}")
    return dataclasses.replace(state, conversation_phase=phase, last_updated=now or utc_now())


def request_escalation(state: PersonaState, now: datetime | None = None) -> PersonaState:
    return dataclasses.replace(
        state,
        escalation_requested=True,
        conversation_phase="escalation",
        frustration_level=clamp_level(state.frustration_level + 1),
        trust_level=clamp_level(state.trust_level - 1),
        last_updated=now or utc_now(),
    )


def resolve_issue(state: PersonaState, resolved: bool, now: datetime | None = None) -> PersonaState:
    return dataclasses.replace(
        state,
        issue_resolved="resolved" if resolved else "abandoned",
        satisfaction_level=clamp_level(state.satisfaction_level + (2 if resolved else -1)),
        frustration_level=clamp_level(state.frustration_level + (-3 if resolved else 1)),
        conversation_phase="resolution" if resolved else "escalation",
        last_updated=now or utc_now(),
    )


from .model import (
    BehavioralModifiers,
    ContextualFactors,
    MoodChange,
    PersonaState,
    apply_trigger,
    create_initial_state,
    increment_interaction,
    request_escalation,
    resolve_issue,
    set_conversation_phase,
)
from .mood import MOOD_SCALE, clamp_level, shift_mood

__all__ = [
    "MOOD_SCALE",
    "BehavioralModifiers",
    "ContextualFactors",
    "MoodChange",
    "PersonaState",
    "apply_trigger",
    "clamp_level",
    "create_initial_state",
    "increment_interaction",
    "request_escalation",
    "resolve_issue",
    "set_conversation_phase",
    "shift_mood",
]

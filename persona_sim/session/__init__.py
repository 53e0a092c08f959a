
from .engine import PersonaSessionEngine
from .locks import KeyedLocks
from .models import (
    BusinessContext,
    ConversationContext,
    InteractionResult,
    LearningMoment,
    PersonaInteraction,
    PersonaSession,
    ResponseMetrics,
)

__all__ = [
    "BusinessContext",
    "ConversationContext",
    "InteractionResult",
    "KeyedLocks",
    "LearningMoment",
    "PersonaInteraction",
    "PersonaSession",
    "PersonaSessionEngine",
    "ResponseMetrics",
]


from .model import (
    TIER_ORDER,
    KeyMoment,
    PersonaMemory,
    RelationshipData,
    SessionSummary,
    add_session_memory,
    create_initial_memory,
    get_personalized_greeting,
    record_key_moment,
    trim_key_moments,
    update_technical_understanding,
)

__all__ = [
    "TIER_ORDER",
    "KeyMoment",
    "PersonaMemory",
    "RelationshipData",
    "SessionSummary",
    "add_session_memory",
    "create_initial_memory",
    "get_personalized_greeting",
    "record_key_moment",
    "trim_key_moments",
    "update_technical_understanding",
]

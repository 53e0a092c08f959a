from __future__ import annotations

import copy
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..errors import ValidationFailure
from ..serde import parse_dt, utc_now

TIER_ORDER: tuple[str, ...] = ("none", "basic", "intermediate", "advanced")
KEY_MOMENT_KINDS: frozenset[str] = frozenset(
    {"positive", "negative", "learning", "breakthrough", "frustration", "appreciation"}
)
IMPACTS: tuple[str, ...] = ("low", "medium", "high")

FIRST_ENCOUNTER_GREETING = "Hello! I'm here to help you with your technical question today."

_TIER_RANK = {tier: rank for rank, tier in enumerate(TIER_ORDER)}


def _clamp_float(value: float, low: float = 0.0, high: float = 10.0) -> float:
    return max(low, min(high, float(value)))


def normalize_tier(value: str) -> str:
    tier = str(value or "").strip().casefold()
    if tier not in _TIER_RANK:
        raise ValidationFailure(f"Unknown proficiency tier {value!r}; expected one of {', '.join(TIER_ORDER)}")
    return tier


def tier_rank(tier: str) -> int:
    return _TIER_RANK[normalize_tier(tier)]


@dataclass(slots=True)
class KeyMoment:
    kind: str
    description: str
    impact: str
    source_message: str
    timestamp: datetime
    session_id: str = ""
    turn: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KeyMoment":
        return cls(
            kind=str(data["kind"]),
            description=str(data.get("description") or ""),
            impact=str(data.get("impact") or "medium"),
            source_message=str(data.get("source_message") or ""),
            timestamp=parse_dt(data["timestamp"]),
            session_id=str(data.get("session_id") or ""),
            turn=int(data.get("turn") or 0),
        )


@dataclass(slots=True)
class SessionSummary:
    session_id: str
    ended_at: datetime
    issue_type: str
    resolution: str
    duration_seconds: int
    satisfaction_level: int
    interaction_count: int
    final_mood: str = "neutral"
    escalated: bool = False
    learning_achievements: list[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.resolution == "resolved"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionSummary":
        return cls(
            session_id=str(data["session_id"]),
            ended_at=parse_dt(data["ended_at"]),
            issue_type=str(data.get("issue_type") or ""),
            resolution=str(data.get("resolution") or "abandoned"),
            duration_seconds=int(data.get("duration_seconds") or 0),
            satisfaction_level=int(data.get("satisfaction_level") or 0),
            interaction_count=int(data.get("interaction_count") or 0),
            final_mood=str(data.get("final_mood") or "neutral"),
            escalated=bool(data.get("escalated", False)),
            learning_achievements=[str(item) for item in data.get("learning_achievements") or []],
        )


@dataclass(slots=True)
class RelationshipData:
    trust_level: float = 5.0
    comfort_level: float = 5.0
    learning_motivation: float = 6.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelationshipData":
        return cls(
            trust_level=_clamp_float(data.get("trust_level", 5.0)),
            comfort_level=_clamp_float(data.get("comfort_level", 5.0)),
            learning_motivation=_clamp_float(data.get("learning_motivation", 6.0)),
        )


@dataclass(slots=True)
class PersonaMemory:
    persona_id: str
    user_id: str
    created_at: datetime
    last_updated: datetime
    total_interactions: int = 0
    technical_understanding: dict[str, str] = field(default_factory=dict)
    key_moments: list[KeyMoment] = field(default_factory=list)
    session_history: list[SessionSummary] = field(default_factory=list)
    relationship: RelationshipData = field(default_factory=RelationshipData)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersonaMemory":
        understanding = data.get("technical_understanding") or {}
        if not isinstance(understanding, dict):
            raise ValidationFailure("technical_understanding must be an object")
        return cls(
            persona_id=str(data["persona_id"]),
            user_id=str(data["user_id"]),
            created_at=parse_dt(data.get("created_at") or data["last_updated"]),
            last_updated=parse_dt(data["last_updated"]),
            total_interactions=max(0, int(data.get("total_interactions") or 0)),
            technical_understanding={str(k): normalize_tier(v) for k, v in understanding.items()},
            key_moments=[KeyMoment.from_dict(item) for item in data.get("key_moments") or []],
            session_history=[SessionSummary.from_dict(item) for item in data.get("session_history") or []],
            relationship=RelationshipData.from_dict(data.get("relationship") or {}),
        )


def create_initial_memory(persona_id: str, user_id: str, now: datetime | None = None) -> PersonaMemory:
    now = now or utc_now()
    return PersonaMemory(persona_id=persona_id, user_id=user_id, created_at=now, last_updated=now)


def update_technical_understanding(
    memory: PersonaMemory,
    area: str,
    tier: str,
    improved: bool,
    now: datetime | None = None,
) -> PersonaMemory:
    """Raise the stored tier for ``area``; never lowers it.

    A call with ``improved=False`` or a tier below the stored one returns an
    unchanged copy.
    """
    area = str(area or "").strip()
    if not area:
        raise ValidationFailure("Technical area must be a non-empty string")
    tier = normalize_tier(tier)
    updated = copy.deepcopy(memory)
    if not improved:
        return updated
    current = updated.technical_understanding.get(area, "none")
    if tier_rank(tier) >= tier_rank(current):
        updated.technical_understanding[area] = tier
        updated.last_updated = now or utc_now()
    return updated


def record_key_moment(
    memory: PersonaMemory,
    kind: str,
    description: str,
    impact: str,
    source_message: str,
    *,
    session_id: str = "",
    turn: int = 0,
    now: datetime | None = None,
) -> PersonaMemory:
    if kind not in KEY_MOMENT_KINDS:
        raise ValidationFailure(f"Unknown key moment kind {kind!r}")
    if impact not in IMPACTS:
        raise ValidationFailure(f"Unknown impact {impact!r}")
    updated = copy.deepcopy(memory)
    if session_id and any(
        m.session_id == session_id and m.turn == turn and m.kind == kind and m.description == description
        for m in updated.key_moments
    ):
        # Same turn replayed after a failed commit.
        return updated
    now = now or utc_now()
    updated.key_moments.append(
        KeyMoment(
            kind=kind,
            description=description,
            impact=impact,
            source_message=source_message,
            timestamp=now,
            session_id=session_id,
            turn=turn,
        )
    )
    updated.last_updated = now
    return updated


def trim_key_moments(memory: PersonaMemory, limit: int) -> PersonaMemory:
    if limit < 0:
        raise ValidationFailure("Key moment limit must be >= 0")
    updated = copy.deepcopy(memory)
    overflow = len(updated.key_moments) - limit
    if overflow > 0:
        updated.key_moments = updated.key_moments[overflow:]
    return updated


def add_session_memory(memory: PersonaMemory, summary: SessionSummary, now: datetime | None = None) -> PersonaMemory:
    updated = copy.deepcopy(memory)
    if any(existing.session_id == summary.session_id for existing in updated.session_history):
        # Session end replayed after a failed commit.
        return updated
    updated.session_history.append(copy.deepcopy(summary))
    updated.total_interactions += max(0, summary.interaction_count)
    updated.last_updated = now or utc_now()

    relationship = updated.relationship
    if summary.resolved:
        relationship = dataclasses.replace(relationship, trust_level=_clamp_float(relationship.trust_level + 0.5))
    if updated.total_interactions > 3:
        relationship = dataclasses.replace(relationship, comfort_level=_clamp_float(relationship.comfort_level + 0.2))
    updated.relationship = relationship
    return updated


def get_personalized_greeting(memory: PersonaMemory) -> str:
    if memory.total_interactions == 0 and not memory.session_history:
        return FIRST_ENCOUNTER_GREETING

    greeting = "Hi" if memory.relationship.comfort_level > 7 else "Hello"
    last = memory.session_history[-1] if memory.session_history else None
    if last is not None and not last.resolved:
        issue = last.issue_type or "your issue"
        return f"{greeting}! I see we were working on {issue} last time. How is that going?"
    return f"{greeting}! Good to hear from you again. What can I help you with today?"

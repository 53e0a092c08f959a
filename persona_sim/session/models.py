from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..errors import ValidationFailure
from ..memory.model import PersonaMemory
from ..serde import dump_record, load_record, parse_dt
from ..state.model import PersonaState

if TYPE_CHECKING:
    from ..analytics import StateInsights

PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "critical")
BUSINESS_IMPACTS: tuple[str, ...] = ("none", "minimal", "moderate", "significant", "severe")
COMPLEXITIES: tuple[str, ...] = ("simple", "moderate", "complex")


@dataclass(frozen=True, slots=True)
class BusinessContext:
    department: str = ""
    priority: str = "medium"
    business_impact: str = "minimal"
    affected_users: int = 1
    deadline_constraints: str | None = None
    escalation_path: tuple[str, ...] = ()

    def validate(self) -> None:
        if self.priority not in PRIORITIES:
            raise ValidationFailure(f"Unknown priority {self.priority!r}; expected one of {', '.join(PRIORITIES)}")
        if self.business_impact not in BUSINESS_IMPACTS:
            raise ValidationFailure(
                f"Unknown business impact {self.business_impact!r}; expected one of {', '.join(BUSINESS_IMPACTS)}"
            )
        if self.affected_users < 0:
            raise ValidationFailure("affected_users must be >= 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BusinessContext":
        return cls(
            department=str(data.get("department") or ""),
            priority=str(data.get("priority") or "medium"),
            business_impact=str(data.get("business_impact") or "minimal"),
            affected_users=int(data.get("affected_users", 1)),
            deadline_constraints=data.get("deadline_constraints"),
            escalation_path=tuple(str(item) for item in data.get("escalation_path") or ()),
        )


@dataclass(frozen=True, slots=True)
class ConversationContext:
    ticket_type: str
    ticket_category: str = "general"
    ticket_id: str = ""
    scenario_id: str = ""
    learning_objectives: tuple[str, ...] = ()
    expected_duration: int = 15
    complexity: str = "moderate"
    business_context: BusinessContext = field(default_factory=BusinessContext)

    def validate(self) -> None:
        if not str(self.ticket_type or "").strip():
            raise ValidationFailure("ticket_type must be a non-empty string")
        if self.complexity not in COMPLEXITIES:
            raise ValidationFailure(f"Unknown complexity {self.complexity!r}; expected one of {', '.join(COMPLEXITIES)}")
        if self.expected_duration < 0:
            raise ValidationFailure("expected_duration must be >= 0")
        self.business_context.validate()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationContext":
        return cls(
            ticket_type=str(data.get("ticket_type") or ""),
            ticket_category=str(data.get("ticket_category") or "general"),
            ticket_id=str(data.get("ticket_id") or ""),
            scenario_id=str(data.get("scenario_id") or ""),
            learning_objectives=tuple(str(item) for item in data.get("learning_objectives") or ()),
            expected_duration=int(data.get("expected_duration", 15)),
            complexity=str(data.get("complexity") or "moderate"),
            business_context=BusinessContext.from_dict(data.get("business_context") or {}),
        )


@dataclass(slots=True)
class PersonaSession:
    session_id: str
    persona_id: str
    user_id: str
    state: PersonaState
    memory: PersonaMemory
    context: ConversationContext
    start_time: datetime
    last_activity: datetime
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersonaSession":
        try:
            return cls(
                session_id=str(data["session_id"]),
                persona_id=str(data["persona_id"]),
                user_id=str(data["user_id"]),
                state=PersonaState.from_dict(data["state"]),
                memory=PersonaMemory.from_dict(data["memory"]),
                context=ConversationContext.from_dict(data["context"]),
                start_time=parse_dt(data["start_time"]),
                last_activity=parse_dt(data["last_activity"]),
                is_active=bool(data.get("is_active", True)),
            )
        except (KeyError, TypeError) as exc:
            raise ValidationFailure(f"Stored session record is incomplete: {exc}") from exc


@dataclass(frozen=True, slots=True)
class LearningMoment:
    kind: str
    description: str
    impact: str
    area: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LearningMoment":
        return cls(
            kind=str(data["kind"]),
            description=str(data.get("description") or ""),
            impact=str(data.get("impact") or "medium"),
            area=str(data.get("area") or ""),
        )


@dataclass(slots=True)
class ResponseMetrics:
    response_time_ms: int = 0
    appropriateness: int = 0
    consistency: int = 0
    naturalness: int = 0
    learning_value: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResponseMetrics":
        return cls(**{key: int(data.get(key) or 0) for key in (
            "response_time_ms",
            "appropriateness",
            "consistency",
            "naturalness",
            "learning_value",
        )})


@dataclass(slots=True)
class PersonaInteraction:
    session_id: str
    turn: int
    timestamp: datetime
    user_message: str
    persona_response: str
    interaction_type: str
    learning_moments: list[LearningMoment] = field(default_factory=list)
    mood_change: dict[str, str] | None = None
    response_metrics: ResponseMetrics = field(default_factory=ResponseMetrics)
    user_action: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersonaInteraction":
        mood_change = data.get("mood_change")
        return cls(
            session_id=str(data["session_id"]),
            turn=int(data["turn"]),
            timestamp=parse_dt(data["timestamp"]),
            user_message=str(data.get("user_message") or ""),
            persona_response=str(data.get("persona_response") or ""),
            interaction_type=str(data.get("interaction_type") or "troubleshooting"),
            learning_moments=[LearningMoment.from_dict(item) for item in data.get("learning_moments") or []],
            mood_change={str(k): str(v) for k, v in mood_change.items()} if isinstance(mood_change, dict) else None,
            response_metrics=ResponseMetrics.from_dict(data.get("response_metrics") or {}),
            user_action=data.get("user_action"),
        )


@dataclass(slots=True)
class InteractionResult:
    response: str
    state: PersonaState
    insights: "StateInsights"
    learning_moments: list[LearningMoment]
    interaction: PersonaInteraction


def encode_session(session: PersonaSession) -> bytes:
    return dump_record(session)


def decode_session(raw: bytes | str) -> PersonaSession:
    return PersonaSession.from_dict(load_record(raw))


def encode_memory(memory: PersonaMemory) -> bytes:
    return dump_record(memory)


def decode_memory(raw: bytes | str) -> PersonaMemory:
    return PersonaMemory.from_dict(load_record(raw))


def encode_interaction(interaction: PersonaInteraction) -> bytes:
    return dump_record(interaction)


def decode_interaction(raw: bytes | str) -> PersonaInteraction:
    return PersonaInteraction.from_dict(load_record(raw))

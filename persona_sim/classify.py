from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from .errors import ValidationFailure
from .memory.model import IMPACTS


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def normalize_phrase(value: str) -> str:
    return collapse_spaces(str(value or "").replace("_", " ")).casefold()


def _normalize_message(text: str) -> str:
    return collapse_spaces(str(text or "").replace("’", "'")).casefold()


def compile_marker(marker: str) -> re.Pattern[str]:
    """Word-bounded pattern for a marker; a trailing ``*`` also accepts suffixes.

    ``thank*`` matches "thanks" and "thankful" but not "unthanked".
    """
    if not isinstance(marker, str):
        raise ValidationFailure(f"Marker {marker!r} is not a string")
    stem = marker.endswith("*")
    phrase = normalize_phrase(marker[:-1] if stem else marker)
    if not phrase or "*" in phrase:
        raise ValidationFailure(f"Invalid marker {marker!r}")
    suffix = r"\w*" if stem else ""
    return re.compile(rf"(?<!\w){re.escape(phrase)}{suffix}(?!\w)")


def compile_markers(markers: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    if isinstance(markers, str):
        raise ValidationFailure("Markers must be a list of strings")
    return tuple(compile_marker(marker) for marker in markers)


def _mask(text_cf: str, patterns: Iterable[re.Pattern[str]]) -> str:
    for pattern in patterns:
        text_cf = pattern.sub(" ", text_cf)
    return text_cf


def _search_any(text_cf: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    return any(pattern.search(text_cf) for pattern in patterns)


@dataclass(frozen=True, slots=True)
class TriggerEvent:
    direction: str
    phrase: str


@dataclass(frozen=True, slots=True)
class TriggerTable:
    """Normalised positive/negative trigger phrases of one persona.

    Phrases are validated on construction and match on word boundaries, so
    ``patience`` does not fire inside ``impatience``.
    """

    positive: tuple[str, ...]
    negative: tuple[str, ...]
    owner: str = "persona"
    _patterns: tuple[tuple[str, str, re.Pattern[str]], ...] = field(
        default=(), init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        seen: set[str] = set()
        normalized: dict[str, list[str]] = {"positive": [], "negative": []}
        for direction, phrases in (("positive", self.positive), ("negative", self.negative)):
            if isinstance(phrases, str):
                raise ValidationFailure(f"{self.owner}: {direction} triggers must be a list of strings")
            for raw in phrases:
                if not isinstance(raw, str):
                    raise ValidationFailure(f"{self.owner}: {direction} trigger {raw!r} is not a string")
                phrase = normalize_phrase(raw)
                if not phrase:
                    raise ValidationFailure(f"{self.owner}: empty {direction} trigger")
                if phrase in seen:
                    raise ValidationFailure(f"{self.owner}: duplicate trigger {phrase!r}")
                seen.add(phrase)
                normalized[direction].append(phrase)

        object.__setattr__(self, "positive", tuple(normalized["positive"]))
        object.__setattr__(self, "negative", tuple(normalized["negative"]))
        object.__setattr__(
            self,
            "_patterns",
            tuple(
                (direction, phrase, re.compile(rf"(?<!\w){re.escape(phrase)}(?!\w)"))
                for direction in ("positive", "negative")
                for phrase in normalized[direction]
            ),
        )


def detect_triggers(message: str, table: TriggerTable) -> list[TriggerEvent]:
    """Positive phrases first, then negative, each in declaration order."""
    text_cf = _normalize_message(message)
    if not text_cf:
        return []
    return [TriggerEvent(direction, phrase) for direction, phrase, pattern in table._patterns if pattern.search(text_cf)]


@dataclass(frozen=True, slots=True)
class LearningMomentRule:
    kind: str
    description: str
    impact: str
    phrases: tuple[str, ...]
    # None means the ticket type of the session.
    area: str | None = None
    # Spans that are blanked out before ``phrases`` are looked for.
    exclusions: tuple[str, ...] = ()
    _patterns: tuple[re.Pattern[str], ...] = field(default=(), init=False, repr=False, compare=False)
    _exclusion_patterns: tuple[re.Pattern[str], ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_patterns", compile_markers(self.phrases))
        object.__setattr__(self, "_exclusion_patterns", compile_markers(self.exclusions))

    def matches(self, text_cf: str) -> bool:
        return _search_any(_mask(text_cf, self._exclusion_patterns), self._patterns)


@dataclass(frozen=True, slots=True)
class DetectedMoment:
    kind: str
    description: str
    impact: str
    area: str


LEARNING_MOMENT_KINDS: frozenset[str] = frozenset(
    {"concept_learned", "skill_demonstrated", "mistake_corrected", "breakthrough_achieved"}
)


def validate_learning_rules(rules: Iterable[LearningMomentRule]) -> tuple[LearningMomentRule, ...]:
    checked = tuple(rules)
    for rule in checked:
        if rule.kind not in LEARNING_MOMENT_KINDS:
            raise ValidationFailure(f"Unknown learning moment kind {rule.kind!r}")
        if rule.impact not in IMPACTS:
            raise ValidationFailure(f"Unknown impact {rule.impact!r} in {rule.kind} rule")
        if not rule.phrases:
            raise ValidationFailure(f"Learning rule {rule.kind} needs at least one phrase")
        if rule.area is not None and not rule.area.strip():
            raise ValidationFailure(f"Learning rule {rule.kind} has an empty area")
    return checked


LEARNING_MOMENT_RULES: tuple[LearningMomentRule, ...] = validate_learning_rules(
    (
        LearningMomentRule(
            kind="concept_learned",
            description="Customer demonstrated understanding",
            impact="medium",
            phrases=("understand", "understood", "got it", "i see", "makes sense"),
            exclusions=(
                "don't understand",
                "do not understand",
                "dont understand",
                "didn't understand",
                "not understood",
                "doesn't make sense",
                "does not make sense",
            ),
        ),
        LearningMomentRule(
            kind="skill_demonstrated",
            description="Effective customer service delivery",
            impact="high",
            phrases=("thank*", "helpful", "great"),
            area="customer_satisfaction",
        ),
    )
)


def detect_learning_moments(
    message: str,
    ticket_type: str,
    rules: Iterable[LearningMomentRule] = LEARNING_MOMENT_RULES,
) -> list[DetectedMoment]:
    text_cf = _normalize_message(message)
    if not text_cf:
        return []
    return [
        DetectedMoment(kind=rule.kind, description=rule.description, impact=rule.impact, area=rule.area or ticket_type)
        for rule in rules
        if rule.matches(text_cf)
    ]


INTERACTION_TYPES: tuple[str, ...] = (
    "greeting",
    "problem_statement",
    "troubleshooting",
    "resolution",
    "escalation",
)

# Mid-session phase implied by each interaction type.
PHASE_BY_INTERACTION: dict[str, str] = {
    "greeting": "problem_description",
    "problem_statement": "problem_description",
    "troubleshooting": "troubleshooting",
    "resolution": "verification",
    "escalation": "escalation",
}


@dataclass(frozen=True, slots=True)
class InteractionRule:
    interaction_type: str
    markers: tuple[str, ...]
    exclusions: tuple[str, ...] = ()
    _patterns: tuple[re.Pattern[str], ...] = field(default=(), init=False, repr=False, compare=False)
    _exclusion_patterns: tuple[re.Pattern[str], ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_patterns", compile_markers(self.markers))
        object.__setattr__(self, "_exclusion_patterns", compile_markers(self.exclusions))

    def matches(self, text_cf: str) -> bool:
        return _search_any(_mask(text_cf, self._exclusion_patterns), self._patterns)


def validate_interaction_rules(rules: Iterable[InteractionRule]) -> tuple[InteractionRule, ...]:
    checked = tuple(rules)
    seen: set[str] = set()
    for rule in checked:
        if rule.interaction_type not in INTERACTION_TYPES or rule.interaction_type not in PHASE_BY_INTERACTION:
            raise ValidationFailure(f"Unknown interaction type {rule.interaction_type!r}")
        if rule.interaction_type == "greeting":
            raise ValidationFailure("greeting is assigned by turn number, not by markers")
        if rule.interaction_type in seen:
            raise ValidationFailure(f"Duplicate rule for interaction type {rule.interaction_type!r}")
        if not rule.markers:
            raise ValidationFailure(f"Interaction rule {rule.interaction_type} needs at least one marker")
        seen.add(rule.interaction_type)
    return checked


# Checked in order; the first match wins. Bare "working" is left out so
# "still not working" reads as a problem, not a resolution.
INTERACTION_TYPE_RULES: tuple[InteractionRule, ...] = validate_interaction_rules(
    (
        InteractionRule(
            "escalation",
            ("escalat*", "manager", "supervisor"),
            exclusions=("task manager", "device manager", "file manager", "password manager", "package manager"),
        ),
        InteractionRule(
            "resolution",
            (
                "fixed",
                "resolved",
                "working now",
                "works now",
                "is working",
                "it's working",
                "its working",
                "it works",
                "it worked",
                "works fine",
                "working fine",
                "working again",
                "works again",
            ),
        ),
        InteractionRule("problem_statement", ("problem*", "issue*", "not working", "broken", "error*")),
        InteractionRule("troubleshooting", ("try*", "tried", "check*", "test*", "restart*", "reboot*")),
    )
)

_DEFAULT_INTERACTION_TYPE = "troubleshooting"


def classify_interaction(
    message: str,
    interaction_count: int,
    rules: Iterable[InteractionRule] = INTERACTION_TYPE_RULES,
) -> str:
    """Classify a turn; ``interaction_count`` is the count after this turn."""
    if interaction_count <= 1:
        return "greeting"
    text_cf = _normalize_message(message)
    for rule in rules:
        if rule.matches(text_cf):
            return rule.interaction_type
    return _DEFAULT_INTERACTION_TYPE

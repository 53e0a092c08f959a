from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from .catalog import PersonaCatalog, PersonaProfile

if TYPE_CHECKING:
    from ..session.models import ConversationContext

logger = logging.getLogger("persona_sim.personas")


@dataclass(frozen=True, slots=True)
class SelectionHints:
    override_persona: str | None = None
    # Most recent first.
    previous_personas: tuple[str, ...] = ()


@dataclass(slots=True)
class PersonaSelection:
    selected_persona: PersonaProfile
    rationale: list[str] = field(default_factory=list)
    score: float = 0.0


class PersonaSelector(Protocol):
    async def select_persona(
        self,
        context: "ConversationContext",
        hints: SelectionHints | None = None,
    ) -> PersonaSelection | None: ...


_CATEGORY_ALIGNMENTS: dict[str, tuple[str, ...]] = {
    "office_worker": ("email", "productivity", "software", "network"),
    "frustrated_user": ("crash", "error", "not_working", "broken"),
    "patient_retiree": ("security", "basic_usage", "learning"),
    "new_employee": ("access", "setup", "permissions", "training"),
    "executive": ("mobile", "performance", "business_critical"),
}

_COMPLEXITY_FIT: dict[str, dict[str, float]] = {
    "simple": {"novice": 1.0, "intermediate": 0.7, "advanced": 0.4},
    "moderate": {"novice": 0.6, "intermediate": 1.0, "advanced": 0.8},
    "complex": {"novice": 0.3, "intermediate": 0.7, "advanced": 1.0},
}

_PRIORITY_FIT: dict[str, dict[str, float]] = {
    "critical": {
        "executive": 1.0,
        "frustrated_user": 0.8,
        "office_worker": 0.6,
        "new_employee": 0.4,
        "patient_retiree": 0.2,
    },
    "high": {
        "office_worker": 1.0,
        "executive": 0.8,
        "frustrated_user": 0.7,
        "new_employee": 0.6,
        "patient_retiree": 0.3,
    },
    "medium": {
        "office_worker": 1.0,
        "new_employee": 0.9,
        "patient_retiree": 0.8,
        "frustrated_user": 0.6,
        "executive": 0.4,
    },
    "low": {
        "patient_retiree": 1.0,
        "new_employee": 0.8,
        "office_worker": 0.6,
        "frustrated_user": 0.3,
        "executive": 0.1,
    },
}

_WEIGHTS = {"ticket_type": 0.45, "complexity": 0.30, "priority": 0.25}


class CatalogPersonaSelector:
    """Transparent weighted scoring over the persona catalog."""

    def __init__(self, catalog: PersonaCatalog) -> None:
        self.catalog = catalog

    async def select_persona(
        self,
        context: "ConversationContext",
        hints: SelectionHints | None = None,
    ) -> PersonaSelection | None:
        hints = hints or SelectionHints()
        if hints.override_persona:
            persona = self.catalog.get(hints.override_persona)
            if persona is None:
                logger.warning("Override persona %r is not in the catalog", hints.override_persona)
                return None
            return PersonaSelection(persona, [f"Override requested: {persona.id}"], score=100.0)

        scored = [self._score(persona, context, hints) for persona in self.catalog.profiles()]
        if not scored:
            return None
        # Stable on ties: catalog order wins.
        best = max(scored, key=lambda item: item.score)
        logger.debug("Persona selected: %s (score=%.1f)", best.selected_persona.id, best.score)
        return best

    def _score(
        self,
        persona: PersonaProfile,
        context: "ConversationContext",
        hints: SelectionHints,
    ) -> PersonaSelection:
        rationale: list[str] = []
        ticket_type = context.ticket_type.casefold()
        category = context.ticket_category.casefold()

        if any(issue.casefold() in ticket_type or ticket_type in issue.casefold() for issue in persona.typical_issues):
            ticket_fit = 1.0
            rationale.append(f"{persona.name} commonly experiences {context.ticket_type} issues")
        elif any(tag in category or tag in ticket_type for tag in _CATEGORY_ALIGNMENTS.get(persona.id, ())):
            ticket_fit = 0.7
            rationale.append(f"{persona.name} role aligns with {context.ticket_category} category")
        else:
            ticket_fit = 0.3
            rationale.append(f"Generic fit for {context.ticket_type} issues")

        complexity_fit = _COMPLEXITY_FIT.get(context.complexity, {}).get(persona.technical_level, 0.5)
        rationale.append(f"{persona.technical_level} technical level vs {context.complexity} complexity: {complexity_fit:.1f}")

        priority = context.business_context.priority
        priority_fit = _PRIORITY_FIT.get(priority, {}).get(persona.id, 0.5)
        rationale.append(f"{priority} priority fit: {priority_fit:.1f}")

        score = 100.0 * (
            ticket_fit * _WEIGHTS["ticket_type"]
            + complexity_fit * _WEIGHTS["complexity"]
            + priority_fit * _WEIGHTS["priority"]
        )

        if persona.id in hints.previous_personas:
            recency = hints.previous_personas.index(persona.id)
            reduction = max(0, 5 - recency) * 5
            if reduction:
                score = max(0.0, score - reduction)
                rationale.append(f"Reduced for diversity (used {recency + 1} sessions ago)")

        return PersonaSelection(persona, rationale, score=round(score, 2))

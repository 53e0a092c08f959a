
from .catalog import DEFAULT_PERSONAS, PersonaCatalog, PersonaProfile, build_profile, load_persona_catalog
from .selector import CatalogPersonaSelector, PersonaSelection, PersonaSelector, SelectionHints

__all__ = [
    "DEFAULT_PERSONAS",
    "CatalogPersonaSelector",
    "PersonaCatalog",
    "PersonaProfile",
    "PersonaSelection",
    "PersonaSelector",
    "SelectionHints",
    "build_profile",
    "load_persona_catalog",
]

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..classify import TriggerTable
from ..errors import ValidationFailure
from ..prompts.json_loader import load_json_overrides
from ..state.mood import normalize_mood

logger = logging.getLogger("persona_sim.personas")

TECHNICAL_LEVELS = frozenset({"novice", "intermediate", "advanced"})
PATIENCE_LEVELS = frozenset({"very_low", "low", "moderate", "high", "very_high"})
CURIOSITY_LEVELS = frozenset({"low", "moderate", "high", "very_high"})
VERBOSITY_LEVELS = frozenset({"brief", "moderate", "verbose"})


@dataclass(frozen=True, slots=True)
class PersonaProfile:
    id: str
    name: str
    title: str
    background: str
    technical_level: str
    baseline_mood: str
    triggers: TriggerTable
    patience: str = "moderate"
    curiosity: str = "moderate"
    verbosity: str = "moderate"
    communication_style: str = "direct"
    multitasking: bool = False
    time_sensitive: bool = False
    escalation_likelihood: float = 0.3
    technical_areas: tuple[str, ...] = ()
    typical_issues: tuple[str, ...] = ()
    greeting_styles: tuple[str, ...] = ()
    satisfaction_factors: tuple[str, ...] = field(default=())


DEFAULT_PERSONAS: dict[str, dict[str, Any]] = {
    "office_worker": {
        "name": "Alex Chen",
        "title": "Administrative Coordinator",
        "background": "Works in a corporate environment with moderate technical exposure",
        "technical_level": "intermediate",
        "baseline_mood": "neutral",
        "positive_triggers": [
            "quick_resolution",
            "clear_instructions",
            "professional_service",
            "step by step",
            "thank you",
        ],
        "negative_triggers": ["delays", "technical_jargon", "multiple_transfers", "transfer you", "ticket queue"],
        "patience": "moderate",
        "curiosity": "moderate",
        "verbosity": "moderate",
        "communication_style": "direct",
        "multitasking": True,
        "time_sensitive": False,
        "escalation_likelihood": 0.3,
        "technical_areas": ["email", "office_software", "basic_networking", "mobile_devices"],
        "typical_issues": [
            "email_connectivity_problems",
            "password_reset_requests",
            "printer_connectivity_issues",
            "software_installation_help",
            "VPN_connection_problems",
            "file_sharing_difficulties",
        ],
        "greeting_styles": [
            "Hello, I need help with...",
            "Hi, I'm having trouble with...",
            "Good morning, can you assist with...",
        ],
        "satisfaction_factors": ["efficient_resolution", "clear_communication", "follow_up_confirmation"],
    },
    "frustrated_user": {
        "name": "Jordan Martinez",
        "title": "Marketing Assistant",
        "background": "Small business staff member with limited patience for technology problems",
        "technical_level": "novice",
        "baseline_mood": "frustrated",
        "positive_triggers": ["immediate_help", "simple_solutions", "empathy", "sorry", "right away", "i understand"],
        "negative_triggers": ["waiting", "complex_instructions", "blame", "calm down", "your fault", "you should have"],
        "patience": "very_low",
        "curiosity": "low",
        "verbosity": "verbose",
        "communication_style": "casual",
        "multitasking": False,
        "time_sensitive": False,
        "escalation_likelihood": 0.8,
        "technical_areas": ["basic_computer_use", "social_media", "mobile_apps"],
        "typical_issues": [
            "computer_freezing_or_crashing",
            "lost_files_or_documents",
            "internet_connectivity_problems",
            "software_not_responding",
            "email_account_issues",
            "password_forgotten",
        ],
        "greeting_styles": ["This is not working!", "I need help NOW!", "Everything is broken!"],
        "satisfaction_factors": ["quick_response", "problem_solved_immediately", "feeling_heard_and_understood"],
    },
    "patient_retiree": {
        "name": "Margaret Thompson",
        "title": "Retired Teacher",
        "background": "Home user learning modern technology at a careful pace",
        "technical_level": "novice",
        "baseline_mood": "calm",
        "positive_triggers": ["patience", "detailed_explanations", "politeness", "please", "take your time"],
        "negative_triggers": ["rushing", "condescension", "impatience", "obviously", "hurry"],
        "patience": "very_high",
        "curiosity": "high",
        "verbosity": "verbose",
        "communication_style": "detailed",
        "multitasking": False,
        "time_sensitive": False,
        "escalation_likelihood": 0.1,
        "technical_areas": ["email", "web_browsing", "basic_software"],
        "typical_issues": [
            "email_setup_and_management",
            "photo_storage_and_sharing",
            "online_security_concerns",
            "software_updates_confusion",
            "device_synchronization",
            "internet_safety_questions",
        ],
        "greeting_styles": [
            "Good morning, could you please help me...",
            "Hello dear, I'm having trouble...",
            "Excuse me, I hope you can assist...",
        ],
        "satisfaction_factors": ["patient_service", "thorough_explanations", "learning_something_new"],
    },
    "new_employee": {
        "name": "Sam Patel",
        "title": "Junior Analyst",
        "background": "Recently hired and still learning the company systems",
        "technical_level": "intermediate",
        "baseline_mood": "neutral",
        "positive_triggers": ["learning_opportunities", "clear_guidance", "encouragement", "good question", "let me show you"],
        "negative_triggers": ["criticism", "assumptions_of_knowledge", "unclear_expectations", "you should know"],
        "patience": "high",
        "curiosity": "very_high",
        "verbosity": "moderate",
        "communication_style": "questioning",
        "multitasking": True,
        "time_sensitive": False,
        "escalation_likelihood": 0.2,
        "technical_areas": ["modern_software", "mobile_technology", "cloud_services", "social_platforms"],
        "typical_issues": [
            "account_setup_and_permissions",
            "software_access_requests",
            "company_system_navigation",
            "security_protocol_questions",
            "workflow_integration_help",
            "tool_training_requests",
        ],
        "greeting_styles": [
            "Hi, I'm new here and need help with...",
            "Hello, I'm still learning the system...",
            "Excuse me, could you help me understand...",
        ],
        "satisfaction_factors": ["learning_value", "patient_teaching", "future_self_sufficiency"],
    },
    "executive": {
        "name": "Robin Davis",
        "title": "VP of Operations",
        "background": "Senior leader whose time is expensive and whose issues affect the business",
        "technical_level": "intermediate",
        "baseline_mood": "neutral",
        "positive_triggers": ["quick_resolution", "proactive_service", "business_understanding", "priority", "immediately"],
        "negative_triggers": ["delays", "excuses", "technical_details", "wait", "tomorrow"],
        "patience": "low",
        "curiosity": "moderate",
        "verbosity": "brief",
        "communication_style": "direct",
        "multitasking": True,
        "time_sensitive": True,
        "escalation_likelihood": 0.7,
        "technical_areas": ["business_applications", "mobile_devices", "video_conferencing", "cloud_services"],
        "typical_issues": [
            "mobile_device_integration",
            "video_conferencing_problems",
            "email_server_issues",
            "system_performance_concerns",
            "security_incident_response",
            "business_continuity_planning",
        ],
        "greeting_styles": [
            "I need this resolved immediately",
            "This is impacting business operations",
            "Get me someone who can fix this now",
        ],
        "satisfaction_factors": ["rapid_response", "business_continuity", "senior_level_attention"],
    },
}


def _choice(persona_id: str, data: dict[str, Any], key: str, allowed: frozenset[str], default: str) -> str:
    value = str(data.get(key, default) or default).strip().lower()
    if value not in allowed:
        raise ValidationFailure(f"{persona_id}: {key} must be one of {', '.join(sorted(allowed))}, got {value!r}")
    return value


def _str_tuple(persona_id: str, data: dict[str, Any], key: str) -> tuple[str, ...]:
    raw = data.get(key) or []
    if isinstance(raw, str) or not isinstance(raw, list):
        raise ValidationFailure(f"{persona_id}: {key} must be a list of strings")
    return tuple(str(item).strip() for item in raw if str(item).strip())


def _trigger_list(persona_id: str, data: dict[str, Any], key: str) -> tuple[Any, ...]:
    raw = data.get(key) or []
    if not isinstance(raw, list):
        raise ValidationFailure(f"{persona_id}: {key} must be a list of strings")
    return tuple(raw)


def build_profile(persona_id: str, data: dict[str, Any]) -> PersonaProfile:
    if not isinstance(data, dict):
        raise ValidationFailure(f"{persona_id}: persona entry must be an object")
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationFailure(f"{persona_id}: name is required")
    try:
        likelihood = float(data.get("escalation_likelihood", 0.3))
    except (TypeError, ValueError) as exc:
        raise ValidationFailure(f"{persona_id}: escalation_likelihood must be a number") from exc
    if not 0.0 <= likelihood <= 1.0:
        raise ValidationFailure(f"{persona_id}: escalation_likelihood must be in [0, 1]")

    return PersonaProfile(
        id=persona_id,
        name=name,
        title=str(data.get("title") or "").strip(),
        background=str(data.get("background") or "").strip(),
        technical_level=_choice(persona_id, data, "technical_level", TECHNICAL_LEVELS, "intermediate"),
        baseline_mood=normalize_mood(data.get("baseline_mood", "neutral")),
        triggers=TriggerTable(
            positive=_trigger_list(persona_id, data, "positive_triggers"),
            negative=_trigger_list(persona_id, data, "negative_triggers"),
            owner=persona_id,
        ),
        patience=_choice(persona_id, data, "patience", PATIENCE_LEVELS, "moderate"),
        curiosity=_choice(persona_id, data, "curiosity", CURIOSITY_LEVELS, "moderate"),
        verbosity=_choice(persona_id, data, "verbosity", VERBOSITY_LEVELS, "moderate"),
        communication_style=str(data.get("communication_style") or "direct").strip().lower(),
        multitasking=bool(data.get("multitasking", False)),
        time_sensitive=bool(data.get("time_sensitive", False)),
        escalation_likelihood=likelihood,
        technical_areas=_str_tuple(persona_id, data, "technical_areas"),
        typical_issues=_str_tuple(persona_id, data, "typical_issues"),
        greeting_styles=_str_tuple(persona_id, data, "greeting_styles"),
        satisfaction_factors=_str_tuple(persona_id, data, "satisfaction_factors"),
    )


class PersonaCatalog:
    def __init__(self, profiles: dict[str, PersonaProfile]) -> None:
        if not profiles:
            raise ValidationFailure("Persona catalog is empty")
        self._profiles = dict(profiles)

    def __contains__(self, persona_id: object) -> bool:
        return persona_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def get(self, persona_id: str) -> PersonaProfile | None:
        return self._profiles.get(persona_id)

    def ids(self) -> list[str]:
        return list(self._profiles)

    def profiles(self) -> list[PersonaProfile]:
        return list(self._profiles.values())


def load_persona_catalog(path: Path | None = None) -> PersonaCatalog:
    merged = load_json_overrides(path, DEFAULT_PERSONAS)
    profiles: dict[str, PersonaProfile] = {}
    for persona_id, data in merged.items():
        key = str(persona_id).strip()
        if not key:
            raise ValidationFailure("Persona ids must be non-empty")
        profiles[key] = build_profile(key, data)
    logger.info("Persona catalog loaded: %s personas%s", len(profiles), f" (overrides: {path})" if path else "")
    return PersonaCatalog(profiles)

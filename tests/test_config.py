from __future__ import annotations

import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_sim.config import Settings  # noqa: E402
from persona_sim.errors import ValidationFailure  # noqa: E402
from persona_sim.personas.catalog import load_persona_catalog  # noqa: E402
from persona_sim.store.factory import build_store  # noqa: E402
from persona_sim.store.memory_store import InMemoryStore  # noqa: E402
from persona_sim.store.sqlite_store import SqliteStore  # noqa: E402

_ENV_KEYS = (
    "STORE_BACKEND",
    "STORE_POSTGRES_DSN",
    "DATABASE_URL",
    "SESSION_TTL_SECONDS",
    "MEMORY_TTL_SECONDS",
    "BUSINESS_HOURS_START",
    "BUSINESS_HOURS_END",
    "RESPONDER_BACKEND",
    "GEMINI_API_KEY",
    "SESSION_CACHE_ENABLED",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_are_valid() -> None:
    settings = Settings.from_env()
    settings.validate()
    assert settings.store_backend == "sqlite"
    assert settings.responder_backend == "template"
    assert settings.session_cache_enabled is True
    assert isinstance(build_store(settings), SqliteStore)


def test_env_values_are_parsed_and_bad_numbers_fall_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORE_BACKEND", "Memory")
    monkeypatch.setenv("SESSION_TTL_SECONDS", "not-a-number")
    monkeypatch.setenv("SESSION_CACHE_ENABLED", "off")

    settings = Settings.from_env()

    assert settings.store_backend == "memory"
    assert settings.session_ttl_seconds == 3600
    assert settings.session_cache_enabled is False
    assert isinstance(build_store(settings), InMemoryStore)


def test_postgres_dsn_accepts_database_url_alias(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORE_BACKEND", "postgres")
    monkeypatch.setenv("DATABASE_URL", "postgresql://persona@localhost/persona")

    settings = Settings.from_env()
    settings.validate()

    assert settings.postgres_dsn == "postgresql://persona@localhost/persona"


@pytest.mark.parametrize(
    "env,message",
    [
        ({"STORE_BACKEND": "redis"}, "STORE_BACKEND"),
        ({"STORE_BACKEND": "postgres"}, "STORE_POSTGRES_DSN"),
        ({"SESSION_TTL_SECONDS": "30"}, "SESSION_TTL_SECONDS"),
        ({"MEMORY_TTL_SECONDS": "120"}, "MEMORY_TTL_SECONDS"),
        ({"BUSINESS_HOURS_START": "18"}, "BUSINESS_HOURS_START"),
        ({"BUSINESS_HOURS_END": "24"}, "BUSINESS_HOURS_END"),
        ({"RESPONDER_BACKEND": "gemini"}, "GEMINI_API_KEY"),
        ({"RESPONDER_BACKEND": "gemini", "GEMINI_API_KEY": "put_your_gemini_api_key_here"}, "placeholder"),
    ],
)
def test_validate_rejects_bad_settings(monkeypatch: pytest.MonkeyPatch, env: dict[str, str], message: str) -> None:
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    with pytest.raises(ValueError, match=message):
        Settings.from_env().validate()


def test_catalog_overrides_merge_over_defaults(tmp_path: Path) -> None:
    path = tmp_path / "personas.json"
    path.write_text(
        '{"executive": {"patience": "very_low"}, "night_shift": {"name": "Sam Ortiz", "technical_level": "advanced"}}',
        encoding="utf-8",
    )

    catalog = load_persona_catalog(path)

    assert len(catalog) == 6
    assert catalog.get("executive").patience == "very_low"
    assert catalog.get("executive").name == "Robin Davis"
    assert catalog.get("night_shift").technical_level == "advanced"


def test_catalog_rejects_invalid_entries(tmp_path: Path) -> None:
    bad_level = tmp_path / "bad_level.json"
    bad_level.write_text('{"executive": {"technical_level": "wizard"}}', encoding="utf-8")
    with pytest.raises(ValidationFailure):
        load_persona_catalog(bad_level)

    overlapping = tmp_path / "overlapping.json"
    overlapping.write_text('{"executive": {"positive_triggers": ["delays"]}}', encoding="utf-8")
    with pytest.raises(ValidationFailure):
        load_persona_catalog(overlapping)

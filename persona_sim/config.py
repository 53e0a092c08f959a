from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _env_path(name: str) -> Path | None:
    raw = (_env_lookup(name) or "").strip()
    if not raw:
        return None
    return Path(raw).expanduser()


@dataclass(slots=True)
class Settings:
    store_backend: str
    sqlite_path: Path
    postgres_dsn: str
    session_ttl_seconds: int
    memory_ttl_seconds: int

    session_cache_enabled: bool
    record_interactions: bool
    key_moment_limit: int
    max_message_chars: int
    response_timeout_seconds: float
    business_hours_start: int
    business_hours_end: int
    persona_catalog_path: Path | None

    responder_backend: str
    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str
    gemini_timeout_seconds: int
    gemini_temperature: float
    gemini_max_output_tokens: int

    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            store_backend=_env_str("STORE_BACKEND", "sqlite").lower(),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/persona_sessions.db")).expanduser(),
            postgres_dsn=_env_str("STORE_POSTGRES_DSN", "", aliases=("DATABASE_URL",)),
            session_ttl_seconds=_env_int("SESSION_TTL_SECONDS", 3600),
            memory_ttl_seconds=_env_int("MEMORY_TTL_SECONDS", 86400),
            session_cache_enabled=_env_bool("SESSION_CACHE_ENABLED", True),
            record_interactions=_env_bool("RECORD_INTERACTIONS", True),
            key_moment_limit=_env_int("KEY_MOMENT_LIMIT", 50),
            max_message_chars=_env_int("MAX_MESSAGE_CHARS", 4000),
            response_timeout_seconds=_env_float("RESPONSE_TIMEOUT_SECONDS", 20.0),
            business_hours_start=_env_int("BUSINESS_HOURS_START", 9),
            business_hours_end=_env_int("BUSINESS_HOURS_END", 17),
            persona_catalog_path=_env_path("PERSONA_CATALOG_PATH"),
            responder_backend=_env_str("RESPONDER_BACKEND", "template").lower(),
            gemini_api_key=_env_str("GEMINI_API_KEY", ""),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_timeout_seconds=_env_int("GEMINI_TIMEOUT_SECONDS", 30),
            gemini_temperature=_env_float("GEMINI_TEMPERATURE", 0.7),
            gemini_max_output_tokens=_env_int("GEMINI_MAX_OUTPUT_TOKENS", 0),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        if self.store_backend not in {"memory", "sqlite", "postgres"}:
            raise ValueError("STORE_BACKEND must be 'memory', 'sqlite' or 'postgres'")
        if self.store_backend == "postgres" and not self.postgres_dsn:
            raise ValueError("STORE_POSTGRES_DSN is required when STORE_BACKEND=postgres")

        if self.session_ttl_seconds < 60:
            raise ValueError("SESSION_TTL_SECONDS must be >= 60")
        if self.memory_ttl_seconds < self.session_ttl_seconds:
            raise ValueError("MEMORY_TTL_SECONDS must be >= SESSION_TTL_SECONDS")

        if self.key_moment_limit < 1:
            raise ValueError("KEY_MOMENT_LIMIT must be >= 1")
        if self.max_message_chars < 1:
            raise ValueError("MAX_MESSAGE_CHARS must be >= 1")
        if self.response_timeout_seconds <= 0:
            raise ValueError("RESPONSE_TIMEOUT_SECONDS must be > 0")

        for name, hour in (
            ("BUSINESS_HOURS_START", self.business_hours_start),
            ("BUSINESS_HOURS_END", self.business_hours_end),
        ):
            if hour < 0 or hour > 23:
                raise ValueError(f"{name} must be in [0, 23]")
        if self.business_hours_start >= self.business_hours_end:
            raise ValueError("BUSINESS_HOURS_START must be earlier than BUSINESS_HOURS_END")

        if self.responder_backend not in {"template", "gemini"}:
            raise ValueError("RESPONDER_BACKEND must be 'template' or 'gemini'")
        if self.responder_backend == "gemini":
            if not self.gemini_api_key:
                raise ValueError("GEMINI_API_KEY is required when RESPONDER_BACKEND=gemini")
            if self.gemini_api_key == "put_your_gemini_api_key_here":
                raise ValueError("GEMINI_API_KEY is still placeholder")
            if self.gemini_timeout_seconds < 5:
                raise ValueError("GEMINI_TIMEOUT_SECONDS must be >= 5")
            if self.gemini_max_output_tokens < 0:
                raise ValueError("GEMINI_MAX_OUTPUT_TOKENS must be >= 0 (0 disables explicit cap)")

from __future__ import annotations

import dataclasses
import json
from datetime import datetime, timezone
from typing import Any

from .errors import ValidationFailure


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_dt(value: object) -> datetime:
    """Re-hydrate a stored timestamp into an aware ``datetime``."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    raw = str(value or "").strip()
    if not raw:
        raise ValidationFailure("Missing timestamp in stored record")
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationFailure(f"Malformed timestamp in stored record: {raw!r}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _json_default(value: object) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_record(obj: Any) -> bytes:
    payload = dataclasses.asdict(obj) if dataclasses.is_dataclass(obj) else obj
    return json.dumps(payload, default=_json_default, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def load_record(raw: bytes | str) -> dict[str, Any]:
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
        parsed = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationFailure(f"Stored record is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValidationFailure("Stored record root must be a JSON object")
    return parsed

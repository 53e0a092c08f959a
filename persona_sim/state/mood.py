from __future__ import annotations

from typing import Literal

from ..errors import ValidationFailure

Direction = Literal["positive", "negative"]

# Ordered from the "angry" end to the "grateful" end.
MOOD_SCALE: tuple[str, ...] = (
    "angry",
    "frustrated",
    "impatient",
    "concerned",
    "neutral",
    "calm",
    "pleased",
    "grateful",
)

DIRECTIONS: frozenset[str] = frozenset({"positive", "negative"})

LEVEL_MIN = 0
LEVEL_MAX = 10

_MOOD_INDEX = {mood: index for index, mood in enumerate(MOOD_SCALE)}


def clamp_level(value: int | float) -> int:
    return int(max(LEVEL_MIN, min(LEVEL_MAX, round(value))))


def normalize_mood(value: str) -> str:
    mood = str(value or "").strip().casefold()
    if mood not in _MOOD_INDEX:
        raise ValidationFailure(f"Unknown mood {value!r}; expected one of {', '.join(MOOD_SCALE)}")
    return mood


def normalize_direction(value: str) -> str:
    direction = str(value or "").strip().casefold()
    if direction not in DIRECTIONS:
        raise ValidationFailure(f"Unknown trigger direction {value!r}; expected 'positive' or 'negative'")
    return direction


def mood_index(mood: str) -> int:
    return _MOOD_INDEX[normalize_mood(mood)]


def shift_mood(mood: str, direction: str) -> str:
    """Move one step toward "grateful" (positive) or "angry" (negative).

    The scale ends are sticky: shifting past either end returns the same mood.
    """
    index = mood_index(mood)
    if normalize_direction(direction) == "positive":
        return MOOD_SCALE[min(len(MOOD_SCALE) - 1, index + 1)]
    return MOOD_SCALE[max(0, index - 1)]


def mood_intensity(previous: str, current: str) -> int:
    return abs(mood_index(current) - mood_index(previous))

# src/shared/keys.py
"""
Ключи и пути realtime-хранилища.
"""

from __future__ import annotations

import math
import re

from src.common.constants import BUSES_PATH

# Символы, запрещённые в ключах хранилища: . # $ / [ ]
_FORBIDDEN_KEY_CHARS = re.compile(r"[.#$/\[\]]")


def sanitize_key(name: str | None) -> str:
    """
    Превращает имя автобуса в допустимый ключ хранилища.

    Каждый запрещённый символ заменяется на "_", поэтому функция
    идемпотентна. Имена, отличающиеся только запрещёнными символами,
    дают один и тот же ключ.
    """
    return _FORBIDDEN_KEY_CHARS.sub("_", name or "")


def bus_path(name: str | None) -> str:
    """Путь записи автобуса: buses/{sanitized}."""
    return f"{BUSES_PATH}/{sanitize_key(name)}"


def is_valid_coordinates(latitude: object, longitude: object) -> bool:
    """Координаты конечны и лежат в диапазоне |lat| <= 90, |lng| <= 180."""
    if isinstance(latitude, bool) or isinstance(longitude, bool):
        return False
    if not isinstance(latitude, (int, float)) or not isinstance(longitude, (int, float)):
        return False
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    return abs(latitude) <= 90 and abs(longitude) <= 180

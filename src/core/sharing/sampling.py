# src/core/sharing/sampling.py
"""
Чистые помощники конвейера трансляции: интервал опроса,
сборка записи и политика повторов.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from src.common.logger import log_warning
from src.common.constants import DeviceType
from src.shared.errors import InvalidCoordinatesError, is_transient_error
from src.shared.keys import is_valid_coordinates
from src.shared.models import BusRecord, PositionFix

T = TypeVar("T")

# Значения по умолчанию совпадают с SharingSettings
FAST_SPEED_THRESHOLD = 10.0
SLOW_SPEED_THRESHOLD = 2.0
FAST_INTERVAL_MS = 3000
SLOW_INTERVAL_MS = 5000
IDLE_INTERVAL_MS = 10000


def now_ms() -> int:
    """Текущее время устройства, epoch ms."""
    return int(time.time() * 1000)


def compute_update_interval(speed: float | None, config: Any = None) -> int:
    """
    Интервал опроса GPS по скорости (м/с).

    > 10 м/с -> 3 с, > 2 м/с -> 5 с, иначе 10 с.
    Границы относятся к нижней полосе.
    """
    fast_threshold = getattr(config, "FAST_SPEED_THRESHOLD", FAST_SPEED_THRESHOLD)
    slow_threshold = getattr(config, "SLOW_SPEED_THRESHOLD", SLOW_SPEED_THRESHOLD)

    if speed is None or not math.isfinite(speed):
        speed = 0.0

    if speed > fast_threshold:
        return getattr(config, "FAST_INTERVAL_MS", FAST_INTERVAL_MS)
    if speed > slow_threshold:
        return getattr(config, "SLOW_INTERVAL_MS", SLOW_INTERVAL_MS)
    return getattr(config, "IDLE_INTERVAL_MS", IDLE_INTERVAL_MS)


def _non_negative(value: float | None) -> float:
    if value is None or not math.isfinite(value) or value < 0:
        return 0.0
    return float(value)


def build_bus_record(
    fix: PositionFix,
    shared_by: str,
    device_type: DeviceType = DeviceType.STUDENT_SHARE,
    timestamp: int | None = None,
) -> BusRecord:
    """
    Собирает запись из координат устройства.

    Raises:
        InvalidCoordinatesError: координаты не конечны или вне диапазона
    """
    if not is_valid_coordinates(fix.latitude, fix.longitude):
        raise InvalidCoordinatesError(
            f"Недопустимые координаты: {fix.latitude}, {fix.longitude}",
            latitude=fix.latitude,
            longitude=fix.longitude,
        )

    return BusRecord(
        latitude=fix.latitude,
        longitude=fix.longitude,
        timestamp=timestamp if timestamp is not None else now_ms(),
        accuracy=_non_negative(fix.accuracy),
        speed=_non_negative(fix.speed),
        heading=_non_negative(fix.heading),
        device_type=device_type,
        shared_by=shared_by or "Student",
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Экспоненциальная пауза между повторами: base * 2 ** (attempt - 1)."""
    max_retries: int = 3
    base_delay: float = 2.0

    def delay(self, attempt: int) -> float:
        return self.base_delay * 2 ** (attempt - 1)


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    description: str = "операция",
) -> T:
    """
    Выполняет операцию, повторяя её после временных ошибок.

    Всего не больше 1 + policy.max_retries попыток. Постоянные
    ошибки пробрасываются сразу.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            attempt += 1
            if not is_transient_error(e) or attempt > policy.max_retries:
                raise
            delay = policy.delay(attempt)
            await log_warning(
                f"{description}: временная ошибка ({e!r}), повтор {attempt}/{policy.max_retries} через {delay} с"
            )
            await sleep(delay)

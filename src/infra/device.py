# src/infra/device.py
"""
Адаптеры устройства: геолокация и фоновые задачи ОС.

PushLocationProvider получает координаты, которые телефон присылает
по HTTP, и отдаёт их конвейеру как "текущее местоположение".
AsyncioTaskManager имитирует фоновую доставку координат ОС:
зарегистрированный обработчик вызывается с пачкой координат по таймеру.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from src.common.logger import get_logger, log_debug, log_error, log_info
from src.common.constants import LocationAccuracy, TypeMsg
from src.shared.errors import LocationTimeoutError, LocationUnavailableError, TaskNotDefinedError
from src.shared.models import PositionFix

logger = get_logger("device")

# handler(locations, error)
TaskHandler = Callable[[list[PositionFix] | None, Exception | None], Awaitable[Any]]


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# ГЕОЛОКАЦИЯ
# =============================================================================

class LocationProvider(ABC):
    """Источник координат и разрешений устройства."""

    @abstractmethod
    async def request_foreground_permission(self) -> bool:
        ...

    @abstractmethod
    async def request_background_permission(self) -> bool:
        ...

    @abstractmethod
    async def has_services_enabled(self) -> bool:
        ...

    @abstractmethod
    async def get_current_position(
        self,
        accuracy: LocationAccuracy = LocationAccuracy.HIGH,
        timeout_ms: int = 10000,
        max_age_ms: int = 5000,
    ) -> PositionFix:
        """
        Текущее местоположение.

        Raises:
            LocationTimeoutError: координаты не получены за timeout_ms
            LocationUnavailableError: GPS недоступен
        """


class PushLocationProvider(LocationProvider):
    """
    Координаты, присланные устройством.

    Последний фикс кэшируется. Если он моложе max_age_ms, он возвращается
    сразу, иначе ожидается следующий push не дольше timeout_ms.
    """

    def __init__(
        self,
        *,
        foreground_granted: bool = True,
        background_granted: bool = True,
        services_enabled: bool = True,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.foreground_granted = foreground_granted
        self.background_granted = background_granted
        self.services_enabled = services_enabled
        self.available = True
        self._clock = clock
        self._last_fix: PositionFix | None = None
        self._received_at: int | None = None
        self._generation = 0
        self._condition = asyncio.Condition()

    @property
    def last_fix(self) -> PositionFix | None:
        return self._last_fix

    def update_state(
        self,
        *,
        foreground_granted: bool | None = None,
        background_granted: bool | None = None,
        services_enabled: bool | None = None,
        available: bool | None = None,
    ) -> None:
        """Устройство сообщает об изменении разрешений или состояния GPS."""
        if foreground_granted is not None:
            self.foreground_granted = foreground_granted
        if background_granted is not None:
            self.background_granted = background_granted
        if services_enabled is not None:
            self.services_enabled = services_enabled
        if available is not None:
            self.available = available

    async def push(self, fix: PositionFix) -> None:
        """Принимает новые координаты от устройства."""
        now = self._clock()
        if fix.timestamp is None:
            fix = fix.model_copy(update={"timestamp": now})
        async with self._condition:
            self._last_fix = fix
            self._received_at = now
            self._generation += 1
            self._condition.notify_all()

    async def request_foreground_permission(self) -> bool:
        return self.foreground_granted

    async def request_background_permission(self) -> bool:
        return self.background_granted

    async def has_services_enabled(self) -> bool:
        return self.services_enabled

    async def get_current_position(
        self,
        accuracy: LocationAccuracy = LocationAccuracy.HIGH,
        timeout_ms: int = 10000,
        max_age_ms: int = 5000,
    ) -> PositionFix:
        if not self.available:
            raise LocationUnavailableError("GPS недоступен на устройстве")

        if self._last_fix is not None and self._received_at is not None:
            if self._clock() - self._received_at <= max_age_ms:
                return self._last_fix

        generation = self._generation

        async def wait_next() -> PositionFix:
            async with self._condition:
                await self._condition.wait_for(lambda: self._generation != generation or not self.available)
                if not self.available:
                    raise LocationUnavailableError("GPS недоступен на устройстве")
                return self._last_fix  # type: ignore[return-value]

        try:
            return await asyncio.wait_for(wait_next(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise LocationTimeoutError(f"Нет координат за {timeout_ms} мс", accuracy=accuracy.value) from e


# =============================================================================
# ФОНОВЫЕ ЗАДАЧИ
# =============================================================================

@dataclass
class ContinuousUpdateOptions:
    """Параметры фоновой доставки координат."""
    accuracy: LocationAccuracy = LocationAccuracy.HIGH
    time_interval_ms: int = 5000
    distance_interval_m: float = 0.0
    notification_title: str = "Sharing bus location"
    notification_body: str = ""
    notification_color: str = "#2563EB"


class TaskManager(ABC):
    """Регистрация фоновых задач ОС."""

    @abstractmethod
    def define_task(self, task_id: str, handler: TaskHandler) -> None:
        ...

    @abstractmethod
    def is_task_defined(self, task_id: str) -> bool:
        ...

    @abstractmethod
    async def start_continuous_updates(self, task_id: str, options: ContinuousUpdateOptions) -> None:
        ...

    @abstractmethod
    async def stop_continuous_updates(self, task_id: str) -> None:
        ...

    @abstractmethod
    async def has_started_updates(self, task_id: str) -> bool:
        ...


class AsyncioTaskManager(TaskManager):
    """
    Фоновая доставка координат на asyncio.

    Каждая регистрация - отдельная задача, которая раз в
    options.time_interval_ms читает провайдер и вызывает обработчик.
    """

    def __init__(self, provider: LocationProvider, read_timeout_ms: int = 10000) -> None:
        self._provider = provider
        self._read_timeout_ms = read_timeout_ms
        self._handlers: dict[str, TaskHandler] = {}
        self._running: dict[str, asyncio.Task] = {}
        self._options: dict[str, ContinuousUpdateOptions] = {}

    def define_task(self, task_id: str, handler: TaskHandler) -> None:
        self._handlers[task_id] = handler

    def is_task_defined(self, task_id: str) -> bool:
        return task_id in self._handlers

    def options_for(self, task_id: str) -> ContinuousUpdateOptions | None:
        return self._options.get(task_id)

    async def start_continuous_updates(self, task_id: str, options: ContinuousUpdateOptions) -> None:
        if task_id not in self._handlers:
            raise TaskNotDefinedError(f"Задача {task_id} не зарегистрирована")

        await self.stop_continuous_updates(task_id)
        self._options[task_id] = options
        self._running[task_id] = asyncio.create_task(self._run(task_id, options))
        await log_info(
            f"Фоновые обновления {task_id} запущены ({options.notification_body})",
            type_msg=TypeMsg.INFO,
        )

    async def stop_continuous_updates(self, task_id: str) -> None:
        task = self._running.pop(task_id, None)
        self._options.pop(task_id, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await log_info(f"Фоновые обновления {task_id} остановлены", type_msg=TypeMsg.INFO)

    async def has_started_updates(self, task_id: str) -> bool:
        task = self._running.get(task_id)
        return task is not None and not task.done()

    async def shutdown(self) -> None:
        for task_id in list(self._running):
            await self.stop_continuous_updates(task_id)

    async def _run(self, task_id: str, options: ContinuousUpdateOptions) -> None:
        handler = self._handlers[task_id]
        interval = options.time_interval_ms / 1000
        while True:
            locations: list[PositionFix] | None = None
            error: Exception | None = None
            try:
                fix = await self._provider.get_current_position(
                    accuracy=options.accuracy,
                    timeout_ms=self._read_timeout_ms,
                    max_age_ms=options.time_interval_ms,
                )
                locations = [fix]
            except (LocationTimeoutError, LocationUnavailableError) as e:
                error = e

            try:
                await handler(locations, error)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Обработчик фоновой задачи {task_id} упал: {e}", exc_info=True)

            await log_debug(f"Следующий фоновый вызов {task_id} через {interval} с")
            await asyncio.sleep(interval)


def describe_options(options: ContinuousUpdateOptions) -> dict[str, Any]:
    """Параметры регистрации для ответа API."""
    return {
        "accuracy": options.accuracy.value,
        "time_interval_ms": options.time_interval_ms,
        "distance_interval_m": options.distance_interval_m,
        "notification": {
            "title": options.notification_title,
            "body": options.notification_body,
            "color": options.notification_color,
        },
    }

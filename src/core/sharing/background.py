# src/core/sharing/background.py
"""
Обработчик фоновой задачи геолокации.

Вызывается ОС (или AsyncioTaskManager) с пачкой координат.
Не хранит состояния между вызовами: автобус и счётчик ошибок
читаются из хранилища флагов при каждом вызове.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from src.common.constants import BACKGROUND_TASK_NAME, BG_CONSECUTIVE_ERRORS_KEY, BUS_NAME_KEY, TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.core.sharing.sampling import RetryPolicy, build_bus_record, with_retries
from src.infra.device import TaskManager
from src.infra.flag_store import FlagStore
from src.infra.realtime_store import RealtimeStore
from src.shared.errors import InvalidCoordinatesError
from src.shared.keys import bus_path
from src.shared.models import BusRecord, PositionFix

BACKGROUND_SHARER = "Background"

StoreFactory = Callable[[], Awaitable[RealtimeStore]]


@dataclass
class BackgroundInvocationResult:
    """Итог одного вызова фоновой задачи."""
    written: bool = False
    skipped_reason: str | None = None
    error: str | None = None
    record: BusRecord | None = None
    consecutive_errors: int = 0


class BackgroundLocationHandler:
    """
    Запись координат, доставленных фоновой задачей.

    Пишет запись с sharedBy="Background", с таймаутом записи и
    повторами. Подряд идущие ошибки считаются в хранилище флагов,
    после порога в лог пишутся предупреждения. Задача сама себя не снимает.
    """

    def __init__(
        self,
        flag_store: FlagStore,
        store_factory: StoreFactory,
        *,
        config: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        from src.config import settings

        self._flags = flag_store
        self._store_factory = store_factory
        self._config = config or settings.sharing
        self._sleep = sleep
        self._retry_policy = RetryPolicy(
            max_retries=self._config.WRITE_MAX_RETRIES,
            base_delay=self._config.BACKGROUND_RETRY_BASE_DELAY,
        )

    async def __call__(
        self,
        locations: list[PositionFix] | None,
        error: Exception | None,
    ) -> BackgroundInvocationResult:
        if error is not None:
            count = await self._bump_errors()
            await log_error(f"Фоновая задача получила ошибку ({count} подряд): {error}")
            return BackgroundInvocationResult(error=str(error), consecutive_errors=count)

        if not locations:
            await log_warning("Фоновая задача вызвана без координат")
            return BackgroundInvocationResult(skipped_reason="no_locations")

        label = await self._flags.get_item(BUS_NAME_KEY)
        if not label:
            await log_warning("Фоновая задача: автобус не выбран, запись пропущена")
            return BackgroundInvocationResult(skipped_reason="no_bus_label")

        try:
            record = build_bus_record(locations[0], BACKGROUND_SHARER)
        except InvalidCoordinatesError as e:
            await log_warning(f"Фоновая задача: {e}")
            return BackgroundInvocationResult(skipped_reason="invalid_coordinates")

        path = bus_path(label)
        try:
            store = await self._store_factory()
            await with_retries(
                lambda: asyncio.wait_for(
                    store.set(path, record.to_store()),
                    timeout=self._config.BACKGROUND_WRITE_TIMEOUT,
                ),
                self._retry_policy,
                sleep=self._sleep,
                description=f"Фоновая запись {path}",
            )
        except Exception as e:
            count = await self._bump_errors()
            await log_error(f"Фоновая запись {path} не удалась ({count} подряд): {e!r}")
            return BackgroundInvocationResult(error=repr(e), consecutive_errors=count)

        await self._flags.set_item(BG_CONSECUTIVE_ERRORS_KEY, "0")
        await log_info(
            f"Фоновая запись {path}: {record.latitude:.5f}, {record.longitude:.5f}",
            type_msg=TypeMsg.DEBUG,
        )
        return BackgroundInvocationResult(written=True, record=record)

    async def consecutive_errors(self) -> int:
        raw = await self._flags.get_item(BG_CONSECUTIVE_ERRORS_KEY)
        try:
            return int(raw) if raw else 0
        except ValueError:
            return 0

    async def _bump_errors(self) -> int:
        count = await self.consecutive_errors() + 1
        await self._flags.set_item(BG_CONSECUTIVE_ERRORS_KEY, str(count))
        if count >= self._config.MAX_CONSECUTIVE_ERRORS:
            await log_warning(
                f"Фоновая задача: {count} ошибок подряд (порог {self._config.MAX_CONSECUTIVE_ERRORS}), "
                f"проверьте сеть и разрешения"
            )
        return count


def register_background_task(task_manager: TaskManager, handler: BackgroundLocationHandler) -> None:
    """Регистрирует обработчик под идентификатором фоновой задачи."""
    task_manager.define_task(BACKGROUND_TASK_NAME, handler)

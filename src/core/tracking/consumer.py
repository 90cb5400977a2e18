# src/core/tracking/consumer.py
"""
Карта автобусов на устройстве-наблюдателе.

Подписка на коллекцию автобусов с повторным подключением,
фильтрация устаревших записей, кластеризация и периодическая
очистка хранилища от записей, которые перестали обновляться.
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable

from src.common.constants import BUSES_PATH, ConnectionStatus, LocationAccuracy, TypeMsg
from src.common.localization import get_text
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.core.sharing.sampling import now_ms
from src.core.tracking.filters import (
    SINGLE_BUS_ZOOM,
    build_markers,
    compute_camera,
    filter_recent_buses,
    find_stale_keys,
)
from src.infra.device import LocationProvider
from src.infra.realtime_store import RealtimeStore, Unsubscribe
from src.shared.errors import (
    BusTrackerError,
    InvalidCoordinatesError,
    PermissionDeniedError,
    ServicesDisabledError,
)
from src.shared.keys import is_valid_coordinates
from src.shared.models import ActiveBus, CameraTarget, CleanupStats, MapSnapshot


class BusMapConsumer:
    """
    Состояние карты автобусов.

    Статусы подписки: disconnected -> connecting -> connected,
    при ошибке error и повтор через 2 с * 2 ** попытка, после
    исчерпания попыток connected_with_warning до ручного refresh().
    """

    def __init__(
        self,
        store: RealtimeStore,
        *,
        clock: Callable[[], int] = now_ms,
        location_provider: LocationProvider | None = None,
        config: Any = None,
        lang: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        from src.config import settings

        self._store = store
        self._clock = clock
        self._provider = location_provider
        self._config = config or settings.tracking
        self._lang = lang or settings.domain.DEFAULT_LANGUAGE
        self._sleep = sleep
        self._jitter = jitter

        self._status = ConnectionStatus.DISCONNECTED
        self._buses: list[ActiveBus] = []
        self._last_updated: datetime | None = None
        self._retry_count = 0
        self._alert: str | None = None
        self._user_location: CameraTarget | None = None
        self._cleanup_stats = CleanupStats()

        self._unsubscribe: Unsubscribe | None = None
        self._generation = 0
        self._retry_task: asyncio.Task | None = None
        self._cleanup_task: asyncio.Task | None = None
        self._cleanup_in_progress = False

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def buses(self) -> list[ActiveBus]:
        return list(self._buses)

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def cleanup_stats(self) -> CleanupStats:
        return self._cleanup_stats

    def _text(self, key: str, **kwargs: Any) -> str:
        return get_text(key, self._lang, **kwargs)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def start(self, *, with_cleanup: bool = True) -> None:
        """Открывает подписку и запускает периодическую очистку."""
        if self._unsubscribe is None and self._status == ConnectionStatus.DISCONNECTED:
            await self._subscribe()
        if with_cleanup and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            await log_info("Периодическая очистка автобусов запущена", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Закрывает подписку и останавливает фоновые задачи."""
        for task in (self._retry_task, self._cleanup_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._retry_task = None
        self._cleanup_task = None
        await self._close_subscription()
        self._status = ConnectionStatus.DISCONNECTED
        await log_info("Карта автобусов остановлена", type_msg=TypeMsg.INFO)

    async def refresh(self) -> None:
        """Переподключение с нуля: сбрасывает счётчик повторов."""
        await log_info("Обновление данных карты...", type_msg=TypeMsg.INFO)
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
        self._retry_task = None
        await self._close_subscription()
        self._retry_count = 0
        self._alert = None
        self._status = ConnectionStatus.REFRESHING
        await self._subscribe()

    # =========================================================================
    # ПОДПИСКА
    # =========================================================================

    async def _subscribe(self) -> None:
        if self._status != ConnectionStatus.REFRESHING:
            self._status = ConnectionStatus.CONNECTING

        self._generation += 1
        generation = self._generation
        try:
            self._unsubscribe = await self._store.on_value(
                BUSES_PATH,
                partial(self._on_data, generation),
                partial(self._on_error, generation),
            )
        except Exception as e:
            await self._on_error(generation, e)

    async def _close_subscription(self) -> None:
        # Колбэки закрытой подписки игнорируются
        self._generation += 1
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is None:
            return
        try:
            await unsubscribe()
        except Exception as e:
            await log_warning(f"Ошибка отписки от {BUSES_PATH}: {e}")

    async def _on_data(self, generation: int, data: Any) -> None:
        if generation != self._generation:
            return
        self._buses = filter_recent_buses(
            data if isinstance(data, dict) else None,
            self._clock(),
            self._config.STALE_WINDOW_MS,
        )
        self._status = ConnectionStatus.CONNECTED
        self._retry_count = 0
        self._alert = None
        self._last_updated = datetime.now(timezone.utc)
        await log_debug(f"Активных автобусов: {len(self._buses)}")

    async def _on_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        self._status = ConnectionStatus.ERROR
        self._unsubscribe = None
        await log_error(f"Ошибка подписки на автобусы: {error}")

        if self._retry_count < self._config.SUBSCRIPTION_MAX_RETRIES:
            delay = self._config.SUBSCRIPTION_RETRY_BASE_DELAY * 2 ** self._retry_count
            await log_info(
                f"Повторное подключение через {delay} с "
                f"({self._retry_count + 1}/{self._config.SUBSCRIPTION_MAX_RETRIES})",
                type_msg=TypeMsg.WARNING,
            )
            self._retry_task = asyncio.create_task(self._retry_after(delay))
        else:
            self._status = ConnectionStatus.CONNECTED_WITH_WARNING
            self._alert = self._text("CONNECTION_ERROR")

    async def _retry_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._retry_count += 1
        await self._close_subscription()
        await self._subscribe()

    # =========================================================================
    # ОЧИСТКА
    # =========================================================================

    async def _cleanup_loop(self) -> None:
        while True:
            delay = self._config.CLEANUP_INTERVAL_SECONDS + self._jitter() * self._config.CLEANUP_JITTER_SECONDS
            await self._sleep(delay)
            await self.run_cleanup()

    async def run_cleanup(self) -> CleanupStats | None:
        """
        Удаляет записи старше окна актуальности.

        Удаления выполняются параллельно, ошибка одного удаления
        не мешает остальным. Параллельный запуск не выполняется.
        """
        if self._cleanup_in_progress:
            await log_debug("Очистка уже выполняется, пропуск")
            return None

        self._cleanup_in_progress = True
        try:
            data = await self._store.get(BUSES_PATH)
            stale_keys = find_stale_keys(
                data if isinstance(data, dict) else None,
                self._clock(),
                self._config.STALE_WINDOW_MS,
            )

            failed = 0
            if stale_keys:
                results = await asyncio.gather(
                    *(self._store.remove(f"{BUSES_PATH}/{key}") for key in stale_keys),
                    return_exceptions=True,
                )
                for key, result in zip(stale_keys, results):
                    if isinstance(result, Exception):
                        failed += 1
                        await log_error(f"Не удалось удалить устаревший автобус {key}: {result}")

            deleted = len(stale_keys) - failed
            self._cleanup_stats = CleanupStats(
                last_cleanup=datetime.now(timezone.utc),
                deleted_count=deleted,
                failed_count=failed,
                runs=self._cleanup_stats.runs + 1,
            )
            if stale_keys:
                await log_info(f"Очистка: удалено {deleted}, ошибок {failed}", type_msg=TypeMsg.INFO)
            return self._cleanup_stats
        except Exception as e:
            await log_error(f"Ошибка очистки устаревших автобусов: {e}")
            return None
        finally:
            self._cleanup_in_progress = False

    async def manual_cleanup(self) -> CleanupStats | None:
        await log_info("Ручной запуск очистки", type_msg=TypeMsg.INFO)
        return await self.run_cleanup()

    # =========================================================================
    # ДЕЙСТВИЯ ПОЛЬЗОВАТЕЛЯ
    # =========================================================================

    async def center_on_user(self) -> CameraTarget | None:
        """Показывает на карте местоположение самого наблюдателя."""
        if self._provider is None:
            self._alert = self._text("LOCATION_UNAVAILABLE")
            return None

        try:
            if not await self._provider.request_foreground_permission():
                raise PermissionDeniedError()
            if not await self._provider.has_services_enabled():
                raise ServicesDisabledError()

            fix = await self._provider.get_current_position(
                accuracy=LocationAccuracy.HIGH,
                timeout_ms=self._config.USER_FIX_TIMEOUT_MS,
                max_age_ms=self._config.USER_FIX_MAX_AGE_MS,
            )
            if not is_valid_coordinates(fix.latitude, fix.longitude):
                raise InvalidCoordinatesError()
        except BusTrackerError as e:
            self._alert = self._text(e.message_key)
            await log_warning(f"Не удалось показать местоположение пользователя: {e.code}")
            return None
        except Exception as e:
            self._alert = self._text("LOCATION_ERROR")
            await log_error(f"Ошибка геолокации наблюдателя: {e}")
            return None

        self._user_location = CameraTarget(latitude=fix.latitude, longitude=fix.longitude, zoom=SINGLE_BUS_ZOOM)
        self._alert = None
        return self._user_location

    def clear_user_location(self) -> None:
        self._user_location = None

    def center_on_buses(self) -> CameraTarget | None:
        target = compute_camera(self._buses)
        if target is None:
            self._alert = self._text("NO_BUSES")
        return target

    # =========================================================================
    # ПРЕДСТАВЛЕНИЕ
    # =========================================================================

    def snapshot(self) -> MapSnapshot:
        markers, clustered = build_markers(
            self._buses,
            self._clock(),
            min_buses=self._config.CLUSTERING_MIN_BUSES,
            threshold=self._config.CLUSTER_THRESHOLD_DEG,
            stale_age_ms=self._config.STALE_MARKER_AGE_MS,
        )
        return MapSnapshot(
            status=self._status,
            buses=list(self._buses),
            markers=markers,
            clustered=clustered,
            last_updated=self._last_updated,
            retry_count=self._retry_count,
            cleanup=self._cleanup_stats,
            user_location=self._user_location,
            alert=self._alert,
        )

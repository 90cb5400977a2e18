# src/core/sharing/producer.py
"""
Производитель местоположения автобуса.

Управляет жизненным циклом трансляции: старт с откатом при ошибке,
периодическая запись координат, остановка с удалением записи.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from src.common.constants import (
    BACKGROUND_TASK_NAME,
    BUS_NAME_KEY,
    BUSES_PATH,
    LocationAccuracy,
    SharingMode,
    ShareStatus,
    TypeMsg,
)
from src.common.localization import get_text
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.core.sharing.sampling import (
    RetryPolicy,
    build_bus_record,
    compute_update_interval,
    with_retries,
)
from src.core.sharing.session import BusSession
from src.infra.device import ContinuousUpdateOptions, LocationProvider, TaskManager
from src.infra.flag_store import FlagStore
from src.infra.realtime_store import RealtimeStore
from src.shared.errors import (
    BusChangeNotAllowedError,
    BusTrackerError,
    EmptyBusLabelError,
    InvalidCoordinatesError,
    LocationTimeoutError,
    LocationUnavailableError,
    NotAuthenticatedError,
    PermissionDeniedError,
    ServicesDisabledError,
    StorageVerificationError,
    TaskNotDefinedError,
)
from src.shared.keys import bus_path
from src.shared.models import BusRecord, Identity, ShareResult


class LocationProducer:
    """
    Трансляция местоположения одного устройства.

    В режиме foreground координаты пишет таймер приложения,
    в режиме background их доставляет фоновая задача ОС
    (см. BackgroundLocationHandler).
    """

    def __init__(
        self,
        store: RealtimeStore,
        flag_store: FlagStore,
        provider: LocationProvider,
        task_manager: TaskManager,
        *,
        mode: SharingMode | None = None,
        config: Any = None,
        lang: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            store: Realtime-хранилище записей
            flag_store: Хранилище флагов (выбранный автобус)
            provider: Источник координат устройства
            task_manager: Регистрация фоновых задач
            mode: foreground / background (по умолчанию из конфига)
            config: Секция настроек sharing
            lang: Язык сообщений пользователю
            sleep: Функция ожидания (подменяется в тестах)
        """
        from src.config import settings

        self._store = store
        self._flags = flag_store
        self._provider = provider
        self._tasks = task_manager
        self._config = config or settings.sharing
        self._lang = lang or settings.domain.DEFAULT_LANGUAGE
        self._sleep = sleep
        self._ticks: set[asyncio.Task] = set()

        self._mode = mode or SharingMode(self._config.SHARING_MODE)
        self._retry_policy = RetryPolicy(
            max_retries=self._config.WRITE_MAX_RETRIES,
            base_delay=self._config.WRITE_RETRY_BASE_DELAY,
        )
        self.session = BusSession(
            mode=self._mode,
            default_interval_ms=self._config.DEFAULT_UPDATE_INTERVAL_MS,
        )

    @property
    def mode(self) -> SharingMode:
        return self._mode

    @property
    def is_background(self) -> bool:
        return self._mode == SharingMode.BACKGROUND

    def _text(self, key: str, **kwargs: Any) -> str:
        return get_text(key, self._lang, **kwargs)

    def _failure(self, error: BusTrackerError, bus_label: str | None = None) -> ShareResult:
        self.session.last_error_code = error.code
        return ShareResult(
            status=ShareStatus.FAILED,
            bus_label=bus_label,
            error_code=error.code,
            message=self._text(error.message_key),
        )

    # =========================================================================
    # СТАРТ
    # =========================================================================

    async def start_sharing(self, bus_label: str | None, identity: Identity | None) -> ShareResult:
        """
        Начинает трансляцию для выбранного автобуса.

        Повторный старт того же автобуса ничего не создаёт заново.
        При ошибке после частичной настройки выполняется откат:
        фоновая регистрация снимается, запись и флаг автобуса удаляются.
        """
        session = self.session
        if session.busy or session.stopping:
            return ShareResult(status=ShareStatus.BUSY, message=self._text("OPERATION_IN_PROGRESS"))

        label = (bus_label or "").strip()

        if session.is_sharing:
            if label == session.active_label:
                return ShareResult(
                    status=ShareStatus.ALREADY_SHARING,
                    bus_label=label,
                    message=self._text("ALREADY_SHARING", bus=label),
                )
            if label:
                return self._failure(BusChangeNotAllowedError(), bus_label=session.active_label)

        try:
            if not label:
                raise EmptyBusLabelError()
            if identity is None or not identity.uid:
                raise NotAuthenticatedError()
        except BusTrackerError as e:
            await log_warning(f"Старт трансляции отклонён: {e.code}")
            return self._failure(e, bus_label=label or None)

        session.busy = True
        session.start_task = asyncio.current_task()
        session.selected_label = label
        registered = False
        try:
            await self._check_connectivity()
            await self._ensure_permissions()

            if not await self._provider.has_services_enabled():
                raise ServicesDisabledError()

            if self.is_background:
                await self._stop_stale_registration()

            await self._persist_label(label)

            if self.is_background and not self._tasks.is_task_defined(BACKGROUND_TASK_NAME):
                raise TaskNotDefinedError(f"Задача {BACKGROUND_TASK_NAME} не зарегистрирована")

            session.activate(label, identity.sharer_name)
            await self._write_initial_fix(label)

            if self.is_background:
                await self._tasks.start_continuous_updates(BACKGROUND_TASK_NAME, self._update_options(label))
                registered = True
            else:
                self._reschedule()

            await log_info(
                f"Трансляция начата: {label} ({self._mode.value}, {identity.sharer_name})",
                type_msg=TypeMsg.INFO,
            )
            return ShareResult(
                status=ShareStatus.STARTED,
                bus_label=label,
                message=self._text("SHARING_STARTED", bus=label),
            )

        except BusTrackerError as e:
            await log_warning(f"Не удалось начать трансляцию {label}: {e.code} {e}")
            await self._rollback(registered)
            return self._failure(e, bus_label=label)
        except Exception as e:
            await log_error(f"Ошибка старта трансляции {label}: {e}", exc_info=True)
            await self._rollback(registered)
            self.session.last_error_code = "sharing_failed"
            return ShareResult(
                status=ShareStatus.FAILED,
                bus_label=label,
                error_code="sharing_failed",
                message=self._text("SHARING_FAILED"),
            )
        finally:
            session.busy = False
            if session.start_task is asyncio.current_task():
                session.start_task = None

    async def _check_connectivity(self) -> None:
        """Пробное чтение коллекции. Ошибка только логируется."""
        try:
            await asyncio.wait_for(
                self._store.get(BUSES_PATH),
                timeout=self._config.CONNECTION_CHECK_TIMEOUT,
            )
        except Exception as e:
            await log_warning(f"Проверка соединения с хранилищем не прошла: {e!r}")

    async def _ensure_permissions(self) -> None:
        if not await self._provider.request_foreground_permission():
            raise PermissionDeniedError()
        if self.is_background and not await self._provider.request_background_permission():
            raise PermissionDeniedError(background=True)

    async def _stop_stale_registration(self) -> None:
        """Снимает фоновую регистрацию, оставшуюся от прошлой сессии."""
        if await self._tasks.has_started_updates(BACKGROUND_TASK_NAME):
            await log_info("Найдена старая фоновая регистрация, останавливаем", type_msg=TypeMsg.WARNING)
            await self._tasks.stop_continuous_updates(BACKGROUND_TASK_NAME)
            await self._sleep(self._config.STALE_TASK_STOP_DELAY)

    async def _persist_label(self, label: str) -> None:
        await self._flags.remove_item(BUS_NAME_KEY)
        await self._flags.set_item(BUS_NAME_KEY, label)
        stored = await self._flags.get_item(BUS_NAME_KEY)
        if stored != label:
            raise StorageVerificationError(f"Ожидали {label!r}, прочитали {stored!r}")

    async def _write_initial_fix(self, label: str) -> None:
        """
        Первое чтение координат с высокой точностью.

        Ошибки GPS прерывают старт, ошибка записи только логируется.
        """
        fix = await self._provider.get_current_position(
            accuracy=LocationAccuracy.HIGH,
            timeout_ms=self._config.INITIAL_FIX_TIMEOUT_MS,
            max_age_ms=self._config.INITIAL_FIX_MAX_AGE_MS,
        )
        record = build_bus_record(fix, self.session.shared_by)
        self.session.update_interval_ms = compute_update_interval(fix.speed, self._config)

        try:
            await self._write(bus_path(label), record)
            self.session.updates_written += 1
        except Exception as e:
            await log_error(f"Первая запись {label} не удалась, ждём следующего обновления: {e}")

    def _update_options(self, label: str) -> ContinuousUpdateOptions:
        return ContinuousUpdateOptions(
            accuracy=LocationAccuracy.HIGH,
            time_interval_ms=self._config.BACKGROUND_TIME_INTERVAL_MS,
            distance_interval_m=self._config.BACKGROUND_DISTANCE_INTERVAL_M,
            notification_title=self._config.NOTIFICATION_TITLE,
            notification_body=f"Sharing for {label}",
            notification_color=self._config.NOTIFICATION_COLOR,
        )

    async def _rollback(self, registered: bool) -> None:
        label = self.session.active_label
        await self._cancel_timer()
        if registered or (self.is_background and await self._safe_has_started()):
            try:
                await self._tasks.stop_continuous_updates(BACKGROUND_TASK_NAME)
            except Exception as e:
                await log_error(f"Откат: не удалось снять фоновую регистрацию: {e}")
        if label:
            # Первая запись могла успеть попасть в хранилище
            try:
                await self._store.remove(bus_path(label))
            except Exception as e:
                await log_error(f"Откат: не удалось удалить запись {label}: {e}")
        try:
            await self._flags.remove_item(BUS_NAME_KEY)
        except Exception as e:
            await log_error(f"Откат: не удалось очистить {BUS_NAME_KEY}: {e}")
        self.session.reset()

    async def _safe_has_started(self) -> bool:
        try:
            return await self._tasks.has_started_updates(BACKGROUND_TASK_NAME)
        except Exception:
            return False

    # =========================================================================
    # ТАЙМЕР И ОБНОВЛЕНИЕ
    # =========================================================================

    def _reschedule(self) -> None:
        """Заменяет таймер за один синхронный шаг: старый отменён, новый создан."""
        old = self.session.timer_task
        self.session.timer_task = asyncio.create_task(self._timer_loop(self.session.update_interval_ms))
        if old is not None and not old.done():
            old.cancel()

    async def _timer_loop(self, interval_ms: int) -> None:
        while True:
            await self._sleep(interval_ms / 1000)
            if self.session.updating:
                continue
            tick = asyncio.create_task(self.update_location())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)

    async def _cancel_timer(self) -> None:
        task = self.session.timer_task
        self.session.timer_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _apply_interval(self, interval_ms: int) -> None:
        if interval_ms == self.session.update_interval_ms:
            return
        self.session.update_interval_ms = interval_ms
        if not self.is_background and self.session.timer_task is not None and not self.session.stopping:
            self._reschedule()

    async def _write(self, path: str, record: BusRecord) -> None:
        """Запись с таймаутом: зависшее хранилище даёт asyncio.TimeoutError."""
        await asyncio.wait_for(
            self._store.set(path, record.to_store()),
            timeout=self._config.WRITE_TIMEOUT,
        )

    async def update_location(self) -> BusRecord | None:
        """
        Один тик: чтение координат и запись.

        Пересекающиеся вызовы схлопываются (не больше одной записи
        одновременно). Ошибки тика не прерывают трансляцию.
        """
        session = self.session
        if session.updating or not session.is_sharing or session.stopping:
            return None

        session.updating = True
        session.update_task = asyncio.current_task()
        label = session.active_label
        try:
            try:
                fix = await self._provider.get_current_position(
                    accuracy=LocationAccuracy.HIGH,
                    timeout_ms=self._config.TICK_FIX_TIMEOUT_MS,
                    max_age_ms=self._config.TICK_FIX_MAX_AGE_MS,
                )
            except LocationTimeoutError:
                await log_debug(f"Нет свежих координат для {label}, ждём следующего тика")
                return None
            except LocationUnavailableError as e:
                session.last_alert = self._text(e.message_key)
                session.last_error_code = e.code
                await log_warning(f"GPS недоступен во время трансляции {label}")
                return None

            if not session.is_sharing or session.stopping or session.active_label != label:
                await log_debug(f"Трансляция {label} остановлена во время чтения, запись отменена")
                return None

            record = build_bus_record(fix, session.shared_by)
            path = bus_path(label)
            await with_retries(
                lambda: self._write(path, record),
                self._retry_policy,
                sleep=self._sleep,
                description=f"Запись {path}",
            )
            session.updates_written += 1
            self._apply_interval(compute_update_interval(fix.speed, self._config))
            return record

        except InvalidCoordinatesError as e:
            await log_warning(f"Пропущены недопустимые координаты для {label}: {e}")
            return None
        except Exception as e:
            await log_error(f"Обновление {label} не удалось: {e!r}")
            return None
        finally:
            session.updating = False
            if session.update_task is asyncio.current_task():
                session.update_task = None

    async def _settle(self, task: asyncio.Task | None, what: str) -> None:
        """Ждёт незавершённую операцию, по таймауту отменяет её."""
        if task is None or task.done() or task is asyncio.current_task():
            return
        done, _ = await asyncio.wait({task}, timeout=self._config.STOP_SETTLE_TIMEOUT)
        if not done:
            await log_warning(f"{what} не завершился до остановки, отменяем")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # =========================================================================
    # ОСТАНОВКА
    # =========================================================================

    async def stop_sharing(self) -> ShareResult:
        """
        Останавливает трансляцию и удаляет запись автобуса.

        Идемпотентна. Автобус берётся из сессии, а после перезапуска
        процесса из хранилища флагов. Стоп во время старта дожидается
        его завершения и удаляет всё, что старт успел создать.
        """
        session = self.session
        start_task = session.start_task
        if session.stopping or (session.busy and start_task is None):
            return ShareResult(status=ShareStatus.BUSY, message=self._text("OPERATION_IN_PROGRESS"))

        session.stopping = True
        try:
            if start_task is not None:
                await log_info("Остановка во время старта, ждём его завершения", type_msg=TypeMsg.WARNING)
                await self._settle(start_task, "Старт")
                # откат старта сбрасывает сессию
                session.stopping = True

            session.busy = True
            label = session.active_label
            if label is None:
                label = await self._flags.get_item(BUS_NAME_KEY)

            await self._cancel_timer()
            if self.is_background and await self._safe_has_started():
                try:
                    await self._tasks.stop_continuous_updates(BACKGROUND_TASK_NAME)
                except Exception as e:
                    await log_error(f"Не удалось снять фоновую регистрацию: {e}")

            await self._settle(session.update_task, "Запрос записи")

            if label:
                try:
                    await self._store.remove(bus_path(label))
                except Exception as e:
                    await log_error(f"Не удалось удалить запись {label}: {e}")

            try:
                await self._flags.remove_item(BUS_NAME_KEY)
            except Exception as e:
                await log_error(f"Не удалось очистить {BUS_NAME_KEY}: {e}")

            if not label:
                return ShareResult(status=ShareStatus.NOT_SHARING, message=self._text("NOT_SHARING"))

            await log_info(f"Трансляция остановлена: {label}", type_msg=TypeMsg.INFO)
            return ShareResult(
                status=ShareStatus.STOPPED,
                bus_label=label,
                message=self._text("SHARING_STOPPED", bus=label),
            )
        finally:
            session.reset()

    # =========================================================================
    # ВЫБОР АВТОБУСА И СОСТОЯНИЕ
    # =========================================================================

    async def change_bus(self, new_label: str | None) -> ShareResult:
        """
        Меняет выбранный автобус.

        Во время трансляции смена запрещена, выбор остаётся прежним.
        """
        session = self.session
        label = (new_label or "").strip()

        if session.is_sharing:
            if label == session.active_label:
                return ShareResult(status=ShareStatus.ALREADY_SHARING, bus_label=label)
            await log_warning(f"Смена автобуса {session.active_label} -> {label} отклонена")
            return self._failure(BusChangeNotAllowedError(), bus_label=session.active_label)

        if not label:
            return self._failure(EmptyBusLabelError())

        session.selected_label = label
        return ShareResult(status=ShareStatus.SELECTED, bus_label=label)

    async def teardown(self) -> None:
        """
        Освобождение ресурсов при завершении компонента.

        Удаляет свою запись, ошибки хранилища игнорируются.
        Флаг автобуса не трогает.
        """
        session = self.session
        label = session.active_label
        session.stopping = True
        await self._cancel_timer()

        for task in (session.start_task, session.update_task):
            if task is None or task.done() or task is asyncio.current_task():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self.is_background and await self._safe_has_started():
            try:
                await self._tasks.stop_continuous_updates(BACKGROUND_TASK_NAME)
            except Exception as e:
                await log_warning(f"Teardown: фоновая регистрация не снята: {e}")

        if label:
            try:
                await self._store.remove(bus_path(label))
            except Exception as e:
                await log_warning(f"Teardown: запись {label} не удалена: {e}")

        session.reset()

    def status(self) -> dict[str, Any]:
        return self.session.to_dict()

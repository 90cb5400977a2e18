# src/services/location_sharing/dependencies.py
"""
Зависимости Location Sharing Service.
Инициализация и управление ресурсами.
"""

from __future__ import annotations

from typing import Optional

import asyncpg

from src.infra.device import AsyncioTaskManager, PushLocationProvider
from src.infra.flag_store import FileFlagStore
from src.infra.realtime_store import RedisRealtimeStore


# Глобальные экземпляры ресурсов
_store: Optional[RedisRealtimeStore] = None
_flag_store: Optional[FileFlagStore] = None
_provider: Optional[PushLocationProvider] = None
_task_manager: Optional[AsyncioTaskManager] = None

# Сервисы
_producer: Optional["LocationProducer"] = None
_catalog: Optional["VehicleCatalog"] = None


async def init_dependencies() -> None:
    """Инициализация всех зависимостей сервиса."""
    global _store, _flag_store, _provider, _task_manager, _producer, _catalog

    from src.common.logger import log_error, log_info
    from src.common.constants import TypeMsg
    from src.config import settings
    from src.core.catalog import BusServiceRepository, VehicleCatalog
    from src.core.sharing import BackgroundLocationHandler, LocationProducer, register_background_task
    from src.infra.database import get_db, init_db
    from src.infra.flag_store import get_flag_store, init_flag_store
    from src.infra.realtime_store import ensure_store, get_store, init_store

    # Инфраструктура
    await init_store()
    _store = get_store()

    await init_flag_store()
    _flag_store = get_flag_store()

    _provider = PushLocationProvider(
        foreground_granted=settings.device.FOREGROUND_PERMISSION_GRANTED,
        background_granted=settings.device.BACKGROUND_PERMISSION_GRANTED,
        services_enabled=settings.device.SERVICES_ENABLED,
    )
    _task_manager = AsyncioTaskManager(_provider, read_timeout_ms=settings.sharing.TICK_FIX_TIMEOUT_MS)

    # Фоновая задача регистрируется до любого старта трансляции
    handler = BackgroundLocationHandler(_flag_store, ensure_store)
    register_background_task(_task_manager, handler)

    _producer = LocationProducer(_store, _flag_store, _provider, _task_manager)

    # Справочник автобусов не обязателен для трансляции
    try:
        await init_db()
        _catalog = VehicleCatalog(BusServiceRepository(get_db(), settings.database.BUS_SERVICES_TABLE))
    except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        _catalog = None
        await log_error(f"Справочник автобусов недоступен: {e}")

    await log_info("Location Sharing Service инициализирован", type_msg=TypeMsg.INFO)


async def close_dependencies() -> None:
    """Закрытие всех ресурсов."""
    global _producer, _catalog

    from src.common.logger import log_info
    from src.common.constants import TypeMsg
    from src.infra.database import close_db
    from src.infra.realtime_store import close_store

    if _producer:
        await _producer.teardown()
        _producer = None

    if _task_manager:
        await _task_manager.shutdown()

    await close_store()
    await log_info("Realtime-хранилище отключено", type_msg=TypeMsg.DEBUG)

    if _catalog:
        await close_db()
        _catalog = None


async def get_producer() -> "LocationProducer":
    """Получение экземпляра LocationProducer."""
    if _producer is None:
        raise RuntimeError("LocationProducer не инициализирован")
    return _producer


async def get_provider() -> PushLocationProvider:
    """Получение провайдера координат устройства."""
    if _provider is None:
        raise RuntimeError("PushLocationProvider не инициализирован")
    return _provider


async def get_task_manager() -> AsyncioTaskManager:
    """Получение менеджера фоновых задач."""
    if _task_manager is None:
        raise RuntimeError("AsyncioTaskManager не инициализирован")
    return _task_manager


async def get_catalog() -> Optional["VehicleCatalog"]:
    """Справочник автобусов или None, если БД недоступна."""
    return _catalog


async def get_store() -> RedisRealtimeStore:
    """Получение realtime-хранилища."""
    if _store is None:
        raise RuntimeError("Realtime-хранилище не инициализировано")
    return _store

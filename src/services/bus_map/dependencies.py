# src/services/bus_map/dependencies.py
"""
Зависимости Bus Map Service.
"""

from __future__ import annotations

from typing import Optional

from src.infra.device import PushLocationProvider
from src.infra.realtime_store import RedisRealtimeStore


_store: Optional[RedisRealtimeStore] = None
_provider: Optional[PushLocationProvider] = None
_consumer: Optional["BusMapConsumer"] = None


async def init_dependencies() -> None:
    """Подключает хранилище и запускает подписку карты."""
    global _store, _provider, _consumer

    from src.common.logger import log_info
    from src.common.constants import TypeMsg
    from src.config import settings
    from src.core.tracking import BusMapConsumer
    from src.infra.realtime_store import get_store, init_store

    await init_store()
    _store = get_store()

    # Устройство наблюдателя: координаты для центрирования на себе
    _provider = PushLocationProvider(
        foreground_granted=settings.device.FOREGROUND_PERMISSION_GRANTED,
        services_enabled=settings.device.SERVICES_ENABLED,
    )

    _consumer = BusMapConsumer(_store, location_provider=_provider)
    await _consumer.start()

    await log_info("Bus Map Service инициализирован", type_msg=TypeMsg.INFO)


async def close_dependencies() -> None:
    """Останавливает подписку и закрывает хранилище."""
    global _consumer, _provider

    from src.infra.realtime_store import close_store

    if _consumer:
        await _consumer.stop()
        _consumer = None
    _provider = None

    await close_store()


async def get_consumer() -> "BusMapConsumer":
    """Получение экземпляра BusMapConsumer."""
    if _consumer is None:
        raise RuntimeError("BusMapConsumer не инициализирован")
    return _consumer


async def get_provider() -> PushLocationProvider:
    """Получение провайдера координат наблюдателя."""
    if _provider is None:
        raise RuntimeError("PushLocationProvider не инициализирован")
    return _provider


async def get_store() -> RedisRealtimeStore:
    """Получение realtime-хранилища."""
    if _store is None:
        raise RuntimeError("Realtime-хранилище не инициализировано")
    return _store

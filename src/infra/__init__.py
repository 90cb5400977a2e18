# src/infra/__init__.py
"""
Инфраструктурный слой.
Realtime-хранилище (Redis), хранилище флагов, PostgreSQL, адаптеры устройства.
"""

from src.infra.database import DatabaseManager, get_db
from src.infra.realtime_store import RealtimeStore, RedisRealtimeStore, get_store
from src.infra.flag_store import FlagStore, FileFlagStore, get_flag_store
from src.infra.device import (
    LocationProvider,
    PushLocationProvider,
    TaskManager,
    AsyncioTaskManager,
    ContinuousUpdateOptions,
)

__all__ = [
    "DatabaseManager",
    "get_db",
    "RealtimeStore",
    "RedisRealtimeStore",
    "get_store",
    "FlagStore",
    "FileFlagStore",
    "get_flag_store",
    "LocationProvider",
    "PushLocationProvider",
    "TaskManager",
    "AsyncioTaskManager",
    "ContinuousUpdateOptions",
]

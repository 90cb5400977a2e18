# src/core/sharing/__init__.py
"""
Домен трансляции местоположения (устройство-производитель).
"""

from src.core.sharing.session import BusSession
from src.core.sharing.sampling import (
    RetryPolicy,
    build_bus_record,
    compute_update_interval,
    is_transient_error,
    with_retries,
)
from src.core.sharing.producer import LocationProducer
from src.core.sharing.background import (
    BackgroundInvocationResult,
    BackgroundLocationHandler,
    register_background_task,
)

__all__ = [
    "BusSession",
    "RetryPolicy",
    "build_bus_record",
    "compute_update_interval",
    "is_transient_error",
    "with_retries",
    "LocationProducer",
    "BackgroundInvocationResult",
    "BackgroundLocationHandler",
    "register_background_task",
]

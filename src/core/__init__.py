# src/core/__init__.py
"""
Доменный слой (Core Domain).
Трансляция местоположения, карта автобусов и справочник автобусов.
"""

from src.core.sharing import LocationProducer, BackgroundLocationHandler
from src.core.tracking import BusMapConsumer
from src.core.catalog import VehicleCatalog

__all__ = [
    "LocationProducer",
    "BackgroundLocationHandler",
    "BusMapConsumer",
    "VehicleCatalog",
]

# src/core/catalog/__init__.py
"""
Справочник автобусов.
"""

from src.core.catalog.repository import BusServiceRepository
from src.core.catalog.service import VehicleCatalog

__all__ = [
    "BusServiceRepository",
    "VehicleCatalog",
]

# src/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели.
"""

from src.shared.models.bus import (
    BusRecord,
    ActiveBus,
    PositionFix,
    Identity,
    BusOption,
    ShareResult,
)
from src.shared.models.map import (
    BusCluster,
    MarkerStyle,
    MapMarker,
    MapBounds,
    CameraTarget,
    CleanupStats,
    MapSnapshot,
)
from src.shared.models.common import (
    ErrorResponse,
    HealthStatus,
)

__all__ = [
    # Bus
    "BusRecord",
    "ActiveBus",
    "PositionFix",
    "Identity",
    "BusOption",
    "ShareResult",
    # Map
    "BusCluster",
    "MarkerStyle",
    "MapMarker",
    "MapBounds",
    "CameraTarget",
    "CleanupStats",
    "MapSnapshot",
    # Common
    "ErrorResponse",
    "HealthStatus",
]

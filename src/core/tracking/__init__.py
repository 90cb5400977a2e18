# src/core/tracking/__init__.py
"""
Домен карты автобусов (устройство-наблюдатель).
"""

from src.core.tracking.filters import (
    build_markers,
    cluster_buses,
    compute_camera,
    filter_recent_buses,
    find_stale_keys,
    marker_style,
    should_cluster,
)
from src.core.tracking.consumer import BusMapConsumer

__all__ = [
    "build_markers",
    "cluster_buses",
    "compute_camera",
    "filter_recent_buses",
    "find_stale_keys",
    "marker_style",
    "should_cluster",
    "BusMapConsumer",
]

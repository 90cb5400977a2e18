# src/core/tracking/filters.py
"""
Обработка снимка коллекции автобусов на стороне карты.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import ValidationError

from src.common.constants import DeviceType
from src.shared.keys import is_valid_coordinates
from src.shared.models import (
    ActiveBus,
    BusCluster,
    CameraTarget,
    MapBounds,
    MapMarker,
    MarkerStyle,
)

STALE_WINDOW_MS = 180_000
STALE_MARKER_AGE_MS = 60_000
CLUSTERING_MIN_BUSES = 20
CLUSTER_THRESHOLD_DEG = 0.01

GPS_TRACKER_COLOR = "#00AA00"
STUDENT_COLOR = "#FF0000"
STALE_COLOR = "#888888"

SINGLE_BUS_ZOOM = 14
MULTI_BUS_ZOOM = 12

_DEVICE_TYPES = {device_type.value for device_type in DeviceType}


def _timestamp(value: dict[str, Any]) -> float:
    ts = value.get("timestamp")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not math.isfinite(ts):
        return 0
    return ts


def _normalize(key: str, value: dict[str, Any]) -> dict[str, Any]:
    """Приводит запись другого источника (например, GPS-трекера) к BusRecord."""
    record = {**value, "name": key, "timestamp": int(_timestamp(value))}
    for field in ("accuracy", "speed", "heading"):
        number = record.get(field)
        if isinstance(number, bool) or not isinstance(number, (int, float)) or not math.isfinite(number) or number < 0:
            record[field] = 0.0
    if record.get("deviceType") not in _DEVICE_TYPES:
        record.pop("deviceType", None)
    if not isinstance(record.get("sharedBy"), str):
        record.pop("sharedBy", None)
    return record


def filter_recent_buses(
    data: dict[str, Any] | None,
    now_ms: int,
    stale_window_ms: int = STALE_WINDOW_MS,
) -> list[ActiveBus]:
    """
    Актуальные автобусы из снимка коллекции.

    Запись актуальна, если timestamp >= now - stale_window_ms и координаты
    конечны и в диапазоне. Ключ записи становится полем name.
    Отсутствующий timestamp считается равным 0.
    """
    if not data:
        return []

    cutoff = now_ms - stale_window_ms
    buses: list[ActiveBus] = []
    for key, value in data.items():
        if not isinstance(value, dict):
            continue
        if _timestamp(value) < cutoff:
            continue
        if not is_valid_coordinates(value.get("latitude"), value.get("longitude")):
            continue
        try:
            buses.append(ActiveBus.model_validate(_normalize(key, value)))
        except ValidationError:
            continue
    return buses


def find_stale_keys(
    data: dict[str, Any] | None,
    now_ms: int,
    stale_window_ms: int = STALE_WINDOW_MS,
) -> list[str]:
    """Ключи записей старше окна актуальности (для очистки)."""
    if not data:
        return []
    cutoff = now_ms - stale_window_ms
    return [
        key for key, value in data.items()
        if _timestamp(value if isinstance(value, dict) else {}) < cutoff
    ]


def should_cluster(buses: list[ActiveBus], min_buses: int = CLUSTERING_MIN_BUSES) -> bool:
    return len(buses) > min_buses


def cluster_buses(buses: list[ActiveBus], threshold: float = CLUSTER_THRESHOLD_DEG) -> list[BusCluster]:
    """
    Жадная группировка по евклидову расстоянию в градусах.

    Первый ещё не сгруппированный автобус становится опорным, к нему
    присоединяются все остальные ближе threshold. Результат зависит
    от порядка входа. Сумма размеров кластеров равна числу автобусов.
    """
    clusters: list[BusCluster] = []
    for bus in buses:
        for cluster in clusters:
            distance = math.hypot(bus.latitude - cluster.latitude, bus.longitude - cluster.longitude)
            if distance < threshold:
                cluster.members.append(bus)
                break
        else:
            clusters.append(
                BusCluster(
                    latitude=bus.latitude,
                    longitude=bus.longitude,
                    representative=bus,
                    members=[bus],
                )
            )
    return clusters


def marker_style(bus: ActiveBus, now_ms: int, stale_age_ms: int = STALE_MARKER_AGE_MS) -> MarkerStyle:
    """Цвет и иконка маркера: GPS-трекер зелёный, студент красный, старые серые."""
    is_tracker = bus.device_type == DeviceType.GPS_TRACKER
    icon = "bus" if is_tracker else "map-marker"
    stale = bool(bus.timestamp) and now_ms - bus.timestamp > stale_age_ms
    if stale:
        color = STALE_COLOR
    else:
        color = GPS_TRACKER_COLOR if is_tracker else STUDENT_COLOR
    return MarkerStyle(color=color, icon=icon, stale=stale)


def _bus_marker(bus: ActiveBus, now_ms: int, stale_age_ms: int) -> MapMarker:
    return MapMarker(
        kind="bus",
        latitude=bus.latitude,
        longitude=bus.longitude,
        label=bus.name,
        style=marker_style(bus, now_ms, stale_age_ms),
    )


def build_markers(
    buses: list[ActiveBus],
    now_ms: int,
    *,
    min_buses: int = CLUSTERING_MIN_BUSES,
    threshold: float = CLUSTER_THRESHOLD_DEG,
    stale_age_ms: int = STALE_MARKER_AGE_MS,
) -> tuple[list[MapMarker], bool]:
    """
    Маркеры для отрисовки и флаг кластеризации.

    Кластер из одного автобуса рисуется обычным маркером,
    больший кластер рисуется бейджем с числом автобусов.
    """
    if not should_cluster(buses, min_buses):
        return [_bus_marker(bus, now_ms, stale_age_ms) for bus in buses], False

    markers: list[MapMarker] = []
    for cluster in cluster_buses(buses, threshold):
        if cluster.count == 1:
            markers.append(_bus_marker(cluster.representative, now_ms, stale_age_ms))
        else:
            markers.append(
                MapMarker(
                    kind="cluster",
                    latitude=cluster.latitude,
                    longitude=cluster.longitude,
                    label=str(cluster.count),
                    count=cluster.count,
                )
            )
    return markers, True


def compute_camera(buses: list[ActiveBus]) -> CameraTarget | None:
    """
    Куда навести камеру, чтобы показать автобусы.

    Нет автобусов - None, один - его точка, несколько - центр
    ограничивающего прямоугольника.
    """
    if not buses:
        return None
    if len(buses) == 1:
        return CameraTarget(latitude=buses[0].latitude, longitude=buses[0].longitude, zoom=SINGLE_BUS_ZOOM)

    lats = [bus.latitude for bus in buses]
    lngs = [bus.longitude for bus in buses]
    bounds = MapBounds(
        min_latitude=min(lats),
        max_latitude=max(lats),
        min_longitude=min(lngs),
        max_longitude=max(lngs),
    )
    return CameraTarget(
        latitude=(bounds.min_latitude + bounds.max_latitude) / 2,
        longitude=(bounds.min_longitude + bounds.max_longitude) / 2,
        zoom=MULTI_BUS_ZOOM,
        bounds=bounds,
    )

# src/shared/models/map.py
"""
Модели представления карты автобусов.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.common.constants import ConnectionStatus
from src.shared.models.bus import ActiveBus


class BusCluster(BaseModel):
    """
    Группа близко расположенных автобусов.

    Координаты кластера совпадают с координатами первого (опорного) автобуса.
    """

    latitude: float
    longitude: float
    representative: ActiveBus
    members: list[ActiveBus] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.members)


class MarkerStyle(BaseModel):
    """Стиль маркера автобуса."""

    color: str
    icon: str
    stale: bool = False


class MapMarker(BaseModel):
    """Маркер для отрисовки: одиночный автобус или бейдж кластера."""

    kind: str  # "bus" | "cluster"
    latitude: float
    longitude: float
    label: str
    count: int = 1
    style: MarkerStyle | None = None


class MapBounds(BaseModel):
    """Ограничивающий прямоугольник."""

    min_latitude: float
    max_latitude: float
    min_longitude: float
    max_longitude: float


class CameraTarget(BaseModel):
    """Куда переместить камеру карты."""

    latitude: float
    longitude: float
    zoom: int = 14
    bounds: MapBounds | None = None


class CleanupStats(BaseModel):
    """Статистика очистки устаревших записей."""

    last_cleanup: datetime | None = None
    deleted_count: int = 0
    failed_count: int = 0
    runs: int = 0


class MapSnapshot(BaseModel):
    """Текущее состояние карты на устройстве-наблюдателе."""

    status: ConnectionStatus
    buses: list[ActiveBus] = Field(default_factory=list)
    markers: list[MapMarker] = Field(default_factory=list)
    clustered: bool = False
    last_updated: datetime | None = None
    retry_count: int = 0
    cleanup: CleanupStats = Field(default_factory=CleanupStats)
    user_location: CameraTarget | None = None
    alert: str | None = None

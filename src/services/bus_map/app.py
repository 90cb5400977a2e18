# src/services/bus_map/app.py
"""
FastAPI приложение Bus Map Service.

Endpoints:
- GET  /api/v1/buses - активные автобусы
- GET  /api/v1/buses/markers - маркеры для отрисовки (с кластерами)
- GET  /api/v1/map/status - состояние подписки и очистки
- POST /api/v1/map/refresh - переподключиться с нуля
- POST /api/v1/map/cleanup - ручная очистка устаревших записей
- GET  /api/v1/map/center - куда навести камеру
- POST /api/v1/device/location - координаты наблюдателя
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, HTTPException, Query, status
from pydantic import BaseModel

from src.common.constants import ConnectionStatus, TypeMsg
from src.common.localization import get_text
from src.common.logger import log_info
from src.config import settings
from src.shared.keys import is_valid_coordinates
from src.shared.models import ActiveBus, CameraTarget, CleanupStats, MapMarker, PositionFix
from src.shared.models.common import ErrorResponse, HealthStatus


# === MODELS ===

class MarkersResponse(BaseModel):
    """Маркеры карты."""
    clustered: bool
    bus_count: int
    markers: list[MapMarker]


class MapStatusResponse(BaseModel):
    """Состояние карты."""
    status: ConnectionStatus
    bus_count: int
    retry_count: int
    last_updated: str | None = None
    cleanup: CleanupStats
    alert: str | None = None


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Жизненный цикл приложения."""
    await log_info("Bus Map Service запускается...", type_msg=TypeMsg.INFO)

    from src.services.bus_map.dependencies import init_dependencies, close_dependencies
    await init_dependencies()

    yield

    await close_dependencies()
    await log_info("Bus Map Service остановлен", type_msg=TypeMsg.INFO)


# === APP ===

app = FastAPI(
    title="Bus Map Service",
    description="Карта активных автобусов в реальном времени.",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# === HEALTH CHECK ===

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    from src.services.bus_map.dependencies import get_consumer, get_store

    deps = {}

    try:
        store = await get_store()
        deps["redis"] = "healthy" if await store.health_check() else "unhealthy"
    except Exception:
        deps["redis"] = "unhealthy"

    try:
        consumer = await get_consumer()
        deps["subscription"] = consumer.status.value
    except Exception:
        deps["subscription"] = ConnectionStatus.DISCONNECTED.value

    healthy = deps["redis"] == "healthy" and deps["subscription"] == ConnectionStatus.CONNECTED.value
    return HealthStatus(
        service="bus_map",
        status="healthy" if healthy else "degraded",
        version=settings.system.VERSION,
        dependencies=deps,
    )


# === BUSES ===

@app.get("/api/v1/buses", response_model=list[ActiveBus], tags=["Buses"], summary="Активные автобусы")
async def list_buses() -> list[ActiveBus]:
    """Автобусы, обновлявшиеся за последние 3 минуты."""
    from src.services.bus_map.dependencies import get_consumer

    consumer = await get_consumer()
    return consumer.buses


@app.get("/api/v1/buses/markers", response_model=MarkersResponse, tags=["Buses"], summary="Маркеры карты")
async def list_markers() -> MarkersResponse:
    """Маркеры автобусов; при большом числе автобусов близкие объединяются."""
    from src.services.bus_map.dependencies import get_consumer

    consumer = await get_consumer()
    snapshot = consumer.snapshot()
    return MarkersResponse(
        clustered=snapshot.clustered,
        bus_count=len(snapshot.buses),
        markers=snapshot.markers,
    )


# === MAP ===

@app.get("/api/v1/map/status", response_model=MapStatusResponse, tags=["Map"], summary="Состояние карты")
async def map_status() -> MapStatusResponse:
    """Статус подписки, счётчик повторов и статистика очистки."""
    from src.services.bus_map.dependencies import get_consumer

    consumer = await get_consumer()
    snapshot = consumer.snapshot()
    return MapStatusResponse(
        status=snapshot.status,
        bus_count=len(snapshot.buses),
        retry_count=snapshot.retry_count,
        last_updated=snapshot.last_updated.isoformat() if snapshot.last_updated else None,
        cleanup=snapshot.cleanup,
        alert=snapshot.alert,
    )


@app.post("/api/v1/map/refresh", tags=["Map"], summary="Обновить данные")
async def refresh_map() -> dict[str, Any]:
    """Переподключение к коллекции автобусов с нуля."""
    from src.services.bus_map.dependencies import get_consumer

    consumer = await get_consumer()
    await consumer.refresh()
    return {"status": consumer.status.value}


@app.post("/api/v1/map/cleanup", response_model=CleanupStats, tags=["Map"], summary="Очистка")
async def cleanup_map() -> CleanupStats:
    """Удалить записи автобусов, не обновлявшиеся дольше 3 минут."""
    from src.services.bus_map.dependencies import get_consumer

    consumer = await get_consumer()
    stats = await consumer.manual_cleanup()
    if stats is None:
        # Очистка уже идёт или хранилище недоступно
        return consumer.cleanup_stats
    return stats


@app.get(
    "/api/v1/map/center",
    response_model=CameraTarget,
    responses={
        404: {"model": ErrorResponse, "description": "Нет автобусов"},
        503: {"model": ErrorResponse, "description": "Местоположение наблюдателя недоступно"},
    },
    tags=["Map"],
    summary="Центр карты",
)
async def map_center(
    target: str = Query(default="buses", pattern="^(buses|user|default)$"),
) -> CameraTarget:
    """Точка для камеры: по автобусам, по самому наблюдателю или центр по умолчанию."""
    from src.services.bus_map.dependencies import get_consumer

    if target == "default":
        return CameraTarget(
            latitude=settings.domain.MAP_CENTER_LATITUDE,
            longitude=settings.domain.MAP_CENTER_LONGITUDE,
            zoom=settings.domain.MAP_ZOOM_LEVEL,
        )

    consumer = await get_consumer()

    if target == "user":
        camera = await consumer.center_on_user()
        if camera is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=ErrorResponse(
                    error_code="user_location_unavailable",
                    message=consumer.snapshot().alert or "",
                ).model_dump(),
            )
        return camera

    camera = consumer.center_on_buses()
    if camera is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(error_code="no_buses", message=consumer.snapshot().alert or "").model_dump(),
        )
    return camera


# === DEVICE ===

@app.post(
    "/api/v1/device/location",
    responses={422: {"model": ErrorResponse, "description": "Недопустимые координаты"}},
    tags=["Device"],
    summary="Координаты наблюдателя",
)
async def push_viewer_location(fix: PositionFix) -> dict[str, Any]:
    """Координаты устройства наблюдателя для кнопки «моё местоположение»."""
    from src.services.bus_map.dependencies import get_provider

    if not is_valid_coordinates(fix.latitude, fix.longitude):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=ErrorResponse(
                error_code="invalid_coordinates",
                message=get_text("INVALID_COORDINATES", settings.domain.DEFAULT_LANGUAGE),
            ).model_dump(),
        )

    provider = await get_provider()
    await provider.push(fix)
    return {"status": "accepted"}

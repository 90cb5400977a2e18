# src/services/location_sharing/app.py
"""
FastAPI приложение Location Sharing Service.

Экран трансляции на устройстве студента: выбор автобуса,
старт/стоп трансляции, приём координат и состояния устройства.

Endpoints:
- GET  /api/v1/sharing/buses - список автобусов для выбора
- POST /api/v1/sharing/start - начать трансляцию
- POST /api/v1/sharing/stop - остановить трансляцию
- PUT  /api/v1/sharing/bus - сменить выбранный автобус
- GET  /api/v1/sharing/status - состояние трансляции
- POST /api/v1/device/location - координаты от устройства
- PUT  /api/v1/device/state - разрешения и службы геолокации
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncGenerator

from fastapi import FastAPI, Header, HTTPException, status
from pydantic import BaseModel, Field

from src.common.constants import ShareStatus, TypeMsg
from src.common.localization import get_text
from src.common.logger import log_error, log_info
from src.config import settings
from src.shared.keys import is_valid_coordinates
from src.shared.models import BusOption, Identity, PositionFix, ShareResult
from src.shared.models.common import ErrorResponse, HealthStatus


# === MODELS ===

class StartSharingRequest(BaseModel):
    """Запрос на старт трансляции."""
    bus_label: str | None = None


class ChangeBusRequest(BaseModel):
    """Смена выбранного автобуса."""
    bus_label: str | None = None


class DeviceLocation(BaseModel):
    """Координаты, присланные устройством."""
    latitude: float
    longitude: float
    accuracy: float | None = Field(default=None, ge=0)
    speed: float | None = None  # м/с
    heading: float | None = None
    timestamp: int | None = None  # epoch ms


class DeviceState(BaseModel):
    """Состояние разрешений и GPS устройства."""
    foreground_permission: bool | None = None
    background_permission: bool | None = None
    services_enabled: bool | None = None
    gps_available: bool | None = None


# Коды ошибок, для которых ответ не 400
_ERROR_STATUS = {
    "not_authenticated": status.HTTP_401_UNAUTHORIZED,
    "permission_denied": status.HTTP_403_FORBIDDEN,
    "background_permission_denied": status.HTTP_403_FORBIDDEN,
    "bus_change_not_allowed": status.HTTP_409_CONFLICT,
    "location_timeout": status.HTTP_504_GATEWAY_TIMEOUT,
    "location_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "services_disabled": status.HTTP_503_SERVICE_UNAVAILABLE,
    "sharing_failed": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# === AUTH DEPENDENCY ===

def get_identity(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
    x_user_name: Annotated[str | None, Header(alias="X-User-Name")] = None,
    x_user_email: Annotated[str | None, Header(alias="X-User-Email")] = None,
) -> Identity | None:
    """
    Пользователь из заголовков шлюза аутентификации.

    Без X-User-Id пользователь считается неаутентифицированным.
    """
    if not x_user_id:
        return None
    return Identity(uid=x_user_id, display_name=x_user_name, email=x_user_email)


def _raise_for_result(result: ShareResult) -> ShareResult:
    """Переводит неуспешный результат в HTTP-ошибку."""
    if result.status == ShareStatus.BUSY:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=ErrorResponse.from_result(result, default_code="busy").model_dump(),
        )
    if result.status == ShareStatus.FAILED:
        error = ErrorResponse.from_result(result)
        raise HTTPException(
            status_code=_ERROR_STATUS.get(error.error_code, status.HTTP_400_BAD_REQUEST),
            detail=error.model_dump(),
        )
    return result


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Жизненный цикл приложения."""
    await log_info("Location Sharing Service запускается...", type_msg=TypeMsg.INFO)

    from src.services.location_sharing.dependencies import init_dependencies, close_dependencies
    await init_dependencies()

    yield

    await close_dependencies()
    await log_info("Location Sharing Service остановлен", type_msg=TypeMsg.INFO)


# === APP ===

app = FastAPI(
    title="Location Sharing Service",
    description="Трансляция местоположения автобуса с устройства студента.",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# === HEALTH CHECK ===

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    from src.services.location_sharing.dependencies import get_catalog, get_store

    deps = {}

    try:
        store = await get_store()
        deps["redis"] = "healthy" if await store.health_check() else "unhealthy"
    except Exception:
        deps["redis"] = "unhealthy"

    deps["postgres"] = "healthy" if await get_catalog() is not None else "unavailable"

    overall = "healthy" if deps["redis"] == "healthy" else "degraded"
    return HealthStatus(
        service="location_sharing",
        status=overall,
        version=settings.system.VERSION,
        dependencies=deps,
    )


# === SHARING ENDPOINTS ===

@app.get(
    "/api/v1/sharing/buses",
    response_model=list[BusOption],
    responses={503: {"model": ErrorResponse, "description": "Справочник недоступен"}},
    tags=["Sharing"],
    summary="Список автобусов",
)
async def list_buses(
    x_user_name: Annotated[str | None, Header(alias="X-User-Name")] = None,
) -> list[BusOption]:
    """Уникальные автобусы из справочника и пункт "NEED HELP!!"."""
    from src.services.location_sharing.dependencies import get_catalog

    catalog = await get_catalog()
    error = HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=ErrorResponse(
            error_code="vehicle_data_failed",
            message=get_text("VEHICLE_DATA_FAILED", settings.domain.DEFAULT_LANGUAGE),
        ).model_dump(),
    )
    if catalog is None:
        raise error

    try:
        return await catalog.get_bus_options(Identity(display_name=x_user_name))
    except Exception as e:
        await log_error(f"Ошибка загрузки списка автобусов: {e}")
        raise error


@app.post(
    "/api/v1/sharing/start",
    response_model=ShareResult,
    responses={
        401: {"model": ErrorResponse, "description": "Пользователь не аутентифицирован"},
        403: {"model": ErrorResponse, "description": "Нет разрешения на геолокацию"},
        409: {"model": ErrorResponse, "description": "Операция уже выполняется"},
    },
    tags=["Sharing"],
    summary="Начать трансляцию",
)
async def start_sharing(
    request: StartSharingRequest,
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
    x_user_name: Annotated[str | None, Header(alias="X-User-Name")] = None,
    x_user_email: Annotated[str | None, Header(alias="X-User-Email")] = None,
) -> ShareResult:
    """Начать трансляцию для выбранного автобуса."""
    from src.services.location_sharing.dependencies import get_producer

    producer = await get_producer()
    identity = get_identity(x_user_id, x_user_name, x_user_email)
    result = await producer.start_sharing(request.bus_label, identity)
    return _raise_for_result(result)


@app.post("/api/v1/sharing/stop", response_model=ShareResult, tags=["Sharing"], summary="Остановить трансляцию")
async def stop_sharing() -> ShareResult:
    """Остановить трансляцию и удалить запись автобуса."""
    from src.services.location_sharing.dependencies import get_producer

    producer = await get_producer()
    result = await producer.stop_sharing()
    return _raise_for_result(result)


@app.put("/api/v1/sharing/bus", response_model=ShareResult, tags=["Sharing"], summary="Сменить автобус")
async def change_bus(request: ChangeBusRequest) -> ShareResult:
    """Сменить выбранный автобус (запрещено во время трансляции)."""
    from src.services.location_sharing.dependencies import get_producer

    producer = await get_producer()
    result = await producer.change_bus(request.bus_label)
    return _raise_for_result(result)


@app.get("/api/v1/sharing/status", tags=["Sharing"], summary="Состояние трансляции")
async def sharing_status() -> dict[str, Any]:
    """Текущее состояние сессии трансляции."""
    from src.infra.device import describe_options
    from src.common.constants import BACKGROUND_TASK_NAME
    from src.services.location_sharing.dependencies import get_producer, get_task_manager

    producer = await get_producer()
    task_manager = await get_task_manager()

    result = producer.status()
    options = task_manager.options_for(BACKGROUND_TASK_NAME)
    result["background_task"] = {
        "defined": task_manager.is_task_defined(BACKGROUND_TASK_NAME),
        "running": await task_manager.has_started_updates(BACKGROUND_TASK_NAME),
        "options": describe_options(options) if options else None,
    }
    return result


# === DEVICE ENDPOINTS ===

@app.post(
    "/api/v1/device/location",
    responses={422: {"model": ErrorResponse, "description": "Недопустимые координаты"}},
    tags=["Device"],
    summary="Координаты устройства",
)
async def push_location(location: DeviceLocation) -> dict[str, Any]:
    """Принять координаты от устройства."""
    from src.services.location_sharing.dependencies import get_provider

    if not is_valid_coordinates(location.latitude, location.longitude):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=ErrorResponse(
                error_code="invalid_coordinates",
                message=get_text("INVALID_COORDINATES", settings.domain.DEFAULT_LANGUAGE),
            ).model_dump(),
        )

    provider = await get_provider()
    await provider.push(PositionFix(**location.model_dump()))
    return {"status": "accepted"}


@app.put("/api/v1/device/state", tags=["Device"], summary="Состояние устройства")
async def update_device_state(state: DeviceState) -> dict[str, Any]:
    """Обновить разрешения и состояние служб геолокации."""
    from src.services.location_sharing.dependencies import get_provider

    provider = await get_provider()
    provider.update_state(
        foreground_granted=state.foreground_permission,
        background_granted=state.background_permission,
        services_enabled=state.services_enabled,
        available=state.gps_available,
    )
    return {
        "foreground_permission": provider.foreground_granted,
        "background_permission": provider.background_granted,
        "services_enabled": provider.services_enabled,
        "gps_available": provider.available,
    }

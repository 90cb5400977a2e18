# src/shared/models/bus.py
"""
Модели записи об автобусе и данных устройства.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from src.common.constants import DeviceType, ShareStatus


class BusRecord(BaseModel):
    """
    Запись в realtime-хранилище по пути buses/{key}.

    Имена полей в хранилище в camelCase (deviceType, sharedBy).
    """

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: int = Field(..., ge=0)  # epoch ms, время записи на устройстве
    accuracy: float = Field(default=0.0, ge=0)
    speed: float = Field(default=0.0, ge=0)  # м/с
    heading: float = Field(default=0.0, ge=0)
    device_type: DeviceType = Field(default=DeviceType.STUDENT_SHARE, alias="deviceType")
    shared_by: str = Field(default="Student", alias="sharedBy")

    class Config:
        populate_by_name = True

    def to_store(self) -> dict:
        """Сериализует запись в формат хранилища."""
        return self.model_dump(by_alias=True, mode="json")


class ActiveBus(BusRecord):
    """Актуальная запись, отображаемая на карте (name: ключ в хранилище)."""

    name: str


class PositionFix(BaseModel):
    """Координаты, полученные от устройства."""

    latitude: float
    longitude: float
    accuracy: float | None = None
    speed: float | None = None
    heading: float | None = None
    timestamp: int | None = None  # epoch ms, когда устройство получило фикс


class Identity(BaseModel):
    """Аутентифицированный пользователь."""

    uid: str | None = None
    display_name: str | None = None
    email: str | None = None

    @property
    def sharer_name(self) -> str:
        """Имя, под которым пользователь транслирует местоположение."""
        return self.display_name or self.email or "Student"


class BusOption(BaseModel):
    """Пункт списка выбора автобуса."""

    label: str
    value: str


class ShareResult(BaseModel):
    """Результат операции трансляции для пользователя."""

    status: ShareStatus
    bus_label: str | None = None
    error_code: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status not in (ShareStatus.FAILED, ShareStatus.BUSY)

# src/shared/models/common.py
"""
Общие модели ответов API обоих сервисов.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from src.shared.models.bus import ShareResult


class ErrorResponse(BaseModel):
    """Стандартный ответ с ошибкой."""

    error_code: str
    message: str
    details: dict[str, Any] | None = None

    @classmethod
    def from_result(cls, result: ShareResult, default_code: str = "sharing_failed") -> "ErrorResponse":
        """Ответ об ошибке из неуспешного результата трансляции."""
        return cls(
            error_code=result.error_code or default_code,
            message=result.message or "",
            details={"bus_label": result.bus_label} if result.bus_label else None,
        )


class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""

    service: str
    status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
    version: str | None = None
    # location_sharing: {"redis", "postgres"}, bus_map: {"redis", "subscription"}
    dependencies: dict[str, str] = Field(default_factory=dict)

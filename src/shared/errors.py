# src/shared/errors.py
"""
Иерархия ошибок конвейера трансляции местоположения.

Каждая ошибка несёт стабильный код (для API/логов) и ключ локализации
текста, который показывается пользователю.
"""

from __future__ import annotations

import asyncio


class BusTrackerError(Exception):
    """Базовая ошибка приложения."""

    code: str = "bus_tracker_error"
    message_key: str = "SHARING_FAILED"

    def __init__(self, message: str = "", **context: object) -> None:
        super().__init__(message or self.code)
        self.context = context


class NotAuthenticatedError(BusTrackerError):
    """Нет аутентифицированного пользователя."""
    code = "not_authenticated"
    message_key = "NOT_AUTHENTICATED"


class EmptyBusLabelError(BusTrackerError):
    """Не выбран автобус или пустое имя."""
    code = "empty_bus_label"
    message_key = "EMPTY_BUS_NAME"


class BusChangeNotAllowedError(BusTrackerError):
    """Попытка сменить автобус во время трансляции."""
    code = "bus_change_not_allowed"
    message_key = "CANNOT_CHANGE_BUS"


class PermissionDeniedError(BusTrackerError):
    """Нет разрешения на доступ к геолокации."""
    code = "permission_denied"
    message_key = "PERMISSION_DENIED"

    def __init__(self, message: str = "", *, background: bool = False) -> None:
        super().__init__(message, background=background)
        self.background = background
        if background:
            self.code = "background_permission_denied"
            self.message_key = "BACKGROUND_PERMISSION_NEEDED"


class ServicesDisabledError(BusTrackerError):
    """Службы геолокации выключены."""
    code = "services_disabled"
    message_key = "SERVICES_DISABLED"


class LocationTimeoutError(BusTrackerError):
    """Не удалось получить координаты за отведённое время."""
    code = "location_timeout"
    message_key = "LOCATION_TIMEOUT"


class LocationUnavailableError(BusTrackerError):
    """GPS недоступен на устройстве."""
    code = "location_unavailable"
    message_key = "LOCATION_UNAVAILABLE"


class InvalidCoordinatesError(BusTrackerError):
    """Координаты вне допустимого диапазона."""
    code = "invalid_coordinates"
    message_key = "INVALID_COORDINATES"


class StoreWriteError(BusTrackerError):
    """Ошибка записи в realtime-хранилище."""
    code = "store_write_failed"
    message_key = "STORE_WRITE_FAILED"

    def __init__(self, message: str = "", *, transient: bool = True) -> None:
        super().__init__(message, transient=transient)
        self.transient = transient


class StoreSubscriptionError(BusTrackerError):
    """Ошибка подписки на коллекцию автобусов."""
    code = "store_subscription_failed"
    message_key = "CONNECTION_ERROR"


class StorageVerificationError(BusTrackerError):
    """Значение в хранилище флагов не прочиталось обратно."""
    code = "storage_verification_failed"
    message_key = "STORAGE_VERIFICATION_FAILED"


class TaskNotDefinedError(BusTrackerError):
    """Фоновая задача не зарегистрирована."""
    code = "task_not_defined"
    message_key = "TASK_NOT_DEFINED"


def is_transient_error(error: BaseException) -> bool:
    """
    Можно ли повторить операцию после этой ошибки.

    Повторяем сетевые сбои и таймауты; ошибки разрешений,
    валидации и прочие ошибки приложения считаются окончательными.
    """
    if isinstance(error, StoreWriteError):
        return error.transient
    if isinstance(error, BusTrackerError):
        return False
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError, OSError)):
        return True

    # redis-py поднимает собственные ConnectionError/TimeoutError
    from redis.exceptions import ConnectionError as RedisConnectionError
    from redis.exceptions import TimeoutError as RedisTimeoutError

    return isinstance(error, (RedisConnectionError, RedisTimeoutError))

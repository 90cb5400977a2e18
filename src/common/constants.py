"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class DeviceType(str, Enum):
    """Источник записи о местоположении автобуса."""
    STUDENT_SHARE = "student_share"
    GPS_TRACKER = "gps_tracker"


class SharingMode(str, Enum):
    """Режим доставки обновлений геолокации."""
    FOREGROUND = "foreground"  # таймер внутри приложения
    BACKGROUND = "background"  # фоновая задача ОС


class ShareStatus(str, Enum):
    """Результат попытки начать/остановить трансляцию."""
    STARTED = "started"
    STOPPED = "stopped"
    ALREADY_SHARING = "already_sharing"
    NOT_SHARING = "not_sharing"
    BUSY = "busy"
    SELECTED = "selected"
    FAILED = "failed"


class ConnectionStatus(str, Enum):
    """Состояние подписки на коллекцию автобусов."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    CONNECTED_WITH_WARNING = "connected_with_warning"
    REFRESHING = "refreshing"


class LocationAccuracy(str, Enum):
    """Точность запроса геолокации."""
    LOW = "low"
    BALANCED = "balanced"
    HIGH = "high"


# Ключи хранилища флагов
BUS_NAME_KEY = "BUS_NAME"
BG_CONSECUTIVE_ERRORS_KEY = "BG_CONSECUTIVE_ERRORS"

# Идентификатор фоновой задачи
BACKGROUND_TASK_NAME = "MYCUETBUS_BG_LOCATION"

# Корень коллекции в realtime-хранилище
BUSES_PATH = "buses"

# Синтетический пункт списка автобусов
NEED_HELP_LABEL = "NEED HELP!!"

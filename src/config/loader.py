"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "bus_tracker"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "all"


class DeploymentSettings(BaseModel):
    """Настройки развертывания сервисов."""
    HOST: str = "0.0.0.0"
    LOCATION_SHARING_PORT: int = 8090
    BUS_MAP_PORT: int = 8091


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = True
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5


class DomainSettings(BaseModel):
    """Настройки локализации и карты."""
    DEFAULT_LANGUAGE: str = "en"
    SUPPORTED_LANGUAGES: list[str] = Field(default_factory=lambda: ["en", "ru"])
    TIMEZONE: str = "Asia/Dhaka"
    MAP_CENTER_LATITUDE: float = 22.3569
    MAP_CENTER_LONGITUDE: float = 91.7832
    MAP_ZOOM_LEVEL: int = 10


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL (каталог автобусов)."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "bus_tracker"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 1
    DB_MAX_POOL_SIZE: int = 5
    DB_COMMAND_TIMEOUT: int = 30
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0
    BUS_SERVICES_TABLE: str = "bus_services"

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis (realtime-хранилище)."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "bus_tracker"
    REDIS_MAX_CONNECTIONS: int = 20

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class SharingSettings(BaseModel):
    """Настройки трансляции местоположения (producer)."""
    SHARING_MODE: str = "background"
    DEFAULT_UPDATE_INTERVAL_MS: int = 5000
    FAST_SPEED_THRESHOLD: float = 10.0  # м/с
    SLOW_SPEED_THRESHOLD: float = 2.0  # м/с
    FAST_INTERVAL_MS: int = 3000
    SLOW_INTERVAL_MS: int = 5000
    IDLE_INTERVAL_MS: int = 10000
    INITIAL_FIX_TIMEOUT_MS: int = 15000
    INITIAL_FIX_MAX_AGE_MS: int = 10000
    TICK_FIX_TIMEOUT_MS: int = 10000
    TICK_FIX_MAX_AGE_MS: int = 5000
    WRITE_MAX_RETRIES: int = 3
    WRITE_RETRY_BASE_DELAY: float = 2.0
    WRITE_TIMEOUT: float = 10.0
    STOP_SETTLE_TIMEOUT: float = 10.0
    CONNECTION_CHECK_TIMEOUT: float = 5.0
    STALE_TASK_STOP_DELAY: float = 0.5
    BACKGROUND_TIME_INTERVAL_MS: int = 5000
    BACKGROUND_DISTANCE_INTERVAL_M: float = 0.0
    BACKGROUND_WRITE_TIMEOUT: float = 10.0
    BACKGROUND_RETRY_BASE_DELAY: float = 1.0
    MAX_CONSECUTIVE_ERRORS: int = 5
    FLAG_STORE_PATH: str = "data/flags.json"
    NOTIFICATION_TITLE: str = "Sharing bus location"
    NOTIFICATION_COLOR: str = "#2563EB"

    @model_validator(mode="after")
    def check_speed_bands(self) -> "SharingSettings":
        """Порог «быстрого» движения должен быть выше порога «медленного»."""
        if self.FAST_SPEED_THRESHOLD <= self.SLOW_SPEED_THRESHOLD:
            raise ValueError("FAST_SPEED_THRESHOLD должен быть больше SLOW_SPEED_THRESHOLD")
        return self


class TrackingSettings(BaseModel):
    """Настройки карты автобусов (consumer)."""
    STALE_WINDOW_MS: int = 180000
    STALE_MARKER_AGE_MS: int = 60000
    CLEANUP_INTERVAL_SECONDS: float = 60.0
    CLEANUP_JITTER_SECONDS: float = 5.0
    CLUSTERING_MIN_BUSES: int = 20
    CLUSTER_THRESHOLD_DEG: float = 0.01
    SUBSCRIPTION_MAX_RETRIES: int = 3
    SUBSCRIPTION_RETRY_BASE_DELAY: float = 2.0
    USER_FIX_TIMEOUT_MS: int = 10000
    USER_FIX_MAX_AGE_MS: int = 10000


class DeviceSettings(BaseModel):
    """Начальное состояние устройства (разрешения, службы геолокации)."""
    FOREGROUND_PERMISSION_GRANTED: bool = True
    BACKGROUND_PERMISSION_GRANTED: bool = True
    SERVICES_ENABLED: bool = True


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    domain: DomainSettings = Field(default_factory=DomainSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    sharing: SharingSettings = Field(default_factory=SharingSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    device: DeviceSettings = Field(default_factory=DeviceSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты переопределяются из переменных окружения.
        """
        config_data = load_config_json()

        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        sharing_defaults = SharingSettings()
        tracking_defaults = TrackingSettings()

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "bus_tracker"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                ENVIRONMENT=data.get("ENVIRONMENT", "development"),
                COMPONENT_MODE=os.getenv("COMPONENT_MODE", data.get("COMPONENT_MODE", "all")),
            ),
            deployment=DeploymentSettings(
                HOST=data.get("HOST", "0.0.0.0"),
                LOCATION_SHARING_PORT=int(os.getenv("LOCATION_SHARING_PORT", data.get("LOCATION_SHARING_PORT", 8090))),
                BUS_MAP_PORT=int(os.getenv("BUS_MAP_PORT", data.get("BUS_MAP_PORT", 8091))),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", True),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=data.get("LOG_BACKUP_COUNT", 5),
            ),
            domain=DomainSettings(
                DEFAULT_LANGUAGE=data.get("DEFAULT_LANGUAGE", "en"),
                SUPPORTED_LANGUAGES=data.get("SUPPORTED_LANGUAGES", ["en", "ru"]),
                TIMEZONE=data.get("TIMEZONE", "Asia/Dhaka"),
                MAP_CENTER_LATITUDE=data.get("MAP_CENTER_LATITUDE", 22.3569),
                MAP_CENTER_LONGITUDE=data.get("MAP_CENTER_LONGITUDE", 91.7832),
                MAP_ZOOM_LEVEL=data.get("MAP_ZOOM_LEVEL", 10),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "bus_tracker")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 1),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 5),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 30),
                DB_RETRY_ATTEMPTS=data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=data.get("DB_RETRY_DELAY", 1.0),
                BUS_SERVICES_TABLE=data.get("BUS_SERVICES_TABLE", "bus_services"),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", data.get("REDIS_PORT", 6379))),
                REDIS_DB=data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "bus_tracker"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 20),
            ),
            # Секции с большим числом параметров: берём из JSON только известные ключи
            sharing=SharingSettings(**{
                name: data.get(name, getattr(sharing_defaults, name))
                for name in SharingSettings.model_fields
            }),
            tracking=TrackingSettings(**{
                name: data.get(name, getattr(tracking_defaults, name))
                for name in TrackingSettings.model_fields
            }),
            device=DeviceSettings(
                FOREGROUND_PERMISSION_GRANTED=data.get("FOREGROUND_PERMISSION_GRANTED", True),
                BACKGROUND_PERMISSION_GRANTED=data.get("BACKGROUND_PERMISSION_GRANTED", True),
                SERVICES_ENABLED=data.get("SERVICES_ENABLED", True),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()

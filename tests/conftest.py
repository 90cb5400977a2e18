# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from src.config.loader import SharingSettings, TrackingSettings
from src.infra.device import ContinuousUpdateOptions, TaskHandler, TaskManager
from src.infra.flag_store import FileFlagStore
from src.infra.realtime_store import ErrorCallback, RealtimeStore, Unsubscribe, ValueCallback
from src.shared.models import PositionFix


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture(scope="session")
def lang_dict_path(project_root: Path) -> Path:
    """Путь к файлу локализации."""
    return project_root / "config" / "lang_dict.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "PROJECT_NAME": "bus_tracker_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "COMPONENT_MODE": "bus_map",
        "HOST": "127.0.0.1",
        "LOCATION_SHARING_PORT": 9090,
        "BUS_MAP_PORT": 9091,
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "colored",
        "DEFAULT_LANGUAGE": "ru",
        "SUPPORTED_LANGUAGES": ["en", "ru"],
        "TIMEZONE": "Asia/Dhaka",
        "MAP_CENTER_LATITUDE": 22.46,
        "MAP_CENTER_LONGITUDE": 91.97,
        "MAP_ZOOM_LEVEL": 11,
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "bus_tracker_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "DB_MIN_POOL_SIZE": 1,
        "DB_MAX_POOL_SIZE": 2,
        "BUS_SERVICES_TABLE": "bus_services",
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_PASSWORD": "",
        "REDIS_NAMESPACE": "bus_test",
        "REDIS_MAX_CONNECTIONS": 5,
        "SHARING_MODE": "foreground",
        "FAST_INTERVAL_MS": 2000,
        "WRITE_MAX_RETRIES": 4,
        "STALE_WINDOW_MS": 120000,
        "CLUSTERING_MIN_BUSES": 10,
        "BACKGROUND_PERMISSION_GRANTED": False,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


@pytest.fixture
def sharing_config() -> SharingSettings:
    """Настройки трансляции без реальных пауз."""
    return SharingSettings(
        SHARING_MODE="background",
        STOP_SETTLE_TIMEOUT=1.0,
        CONNECTION_CHECK_TIMEOUT=1.0,
        STALE_TASK_STOP_DELAY=0.0,
        INITIAL_FIX_TIMEOUT_MS=200,
        TICK_FIX_TIMEOUT_MS=200,
        BACKGROUND_WRITE_TIMEOUT=1.0,
    )


@pytest.fixture
def tracking_config() -> TrackingSettings:
    """Настройки карты по умолчанию."""
    return TrackingSettings()


# =============================================================================
# ФЕЙКИ ИНФРАСТРУКТУРЫ
# =============================================================================

class FakeRealtimeStore(RealtimeStore):
    """
    Realtime-хранилище в памяти.

    fail_writes: сколько следующих вызовов set() завершится ошибкой write_error.
    """

    def __init__(self) -> None:
        self.data: dict[str, dict[str, Any]] = {}
        self.set_calls: list[tuple[str, dict[str, Any]]] = []
        self.remove_calls: list[str] = []
        self.fail_writes = 0
        self.write_error: Exception = ConnectionError("network down")
        self.fail_removes: set[str] = set()
        self.fail_get = False
        self.fail_subscribe = False
        self._subscribers: list[tuple[ValueCallback, ErrorCallback | None]] = []

    @staticmethod
    def _key(path: str) -> str:
        return path.split("/", 1)[1]

    def snapshot(self) -> dict[str, Any] | None:
        return {key: dict(value) for key, value in self.data.items()} or None

    async def _notify(self) -> None:
        for callback, _ in list(self._subscribers):
            await callback(self.snapshot())

    async def set(self, path: str, value: dict[str, Any]) -> None:
        self.set_calls.append((path, value))
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise self.write_error
        self.data[self._key(path)] = dict(value)
        await self._notify()

    async def remove(self, path: str) -> None:
        self.remove_calls.append(path)
        key = self._key(path)
        if key in self.fail_removes:
            raise ConnectionError(f"cannot remove {key}")
        self.data.pop(key, None)
        await self._notify()

    async def get(self, path: str) -> Any:
        if self.fail_get:
            raise ConnectionError("store unreachable")
        if "/" in path:
            return self.data.get(self._key(path))
        return self.snapshot()

    async def on_value(
        self,
        path: str,
        callback: ValueCallback,
        error_callback: ErrorCallback | None = None,
    ) -> Unsubscribe:
        if self.fail_subscribe:
            raise ConnectionError("subscribe failed")
        entry = (callback, error_callback)
        self._subscribers.append(entry)
        await callback(self.snapshot())

        async def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def emit_error(self, error: Exception) -> None:
        """Имитирует обрыв всех подписок: после ошибки подписка закрыта."""
        subscribers, self._subscribers = self._subscribers, []
        for _, error_callback in subscribers:
            if error_callback is not None:
                await error_callback(error)


class FakeLocationProvider:
    """Провайдер координат с фиксированным ответом."""

    def __init__(self, fix: PositionFix | None = None) -> None:
        self.fix = fix or PositionFix(latitude=22.4606, longitude=91.9714, accuracy=5.0, speed=0.0, heading=90.0)
        self.foreground = True
        self.background = True
        self.services = True
        self.error: Exception | None = None
        self.calls = 0

    async def request_foreground_permission(self) -> bool:
        return self.foreground

    async def request_background_permission(self) -> bool:
        return self.background

    async def has_services_enabled(self) -> bool:
        return self.services

    async def get_current_position(self, accuracy: Any = None, timeout_ms: int = 0, max_age_ms: int = 0) -> PositionFix:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.fix


class FakeTaskManager(TaskManager):
    """Регистрация фоновых задач без реального запуска."""

    def __init__(self) -> None:
        self.handlers: dict[str, TaskHandler] = {}
        self.started: dict[str, ContinuousUpdateOptions] = {}
        self.start_calls = 0
        self.stop_calls = 0
        self.start_error: Exception | None = None

    def define_task(self, task_id: str, handler: TaskHandler) -> None:
        self.handlers[task_id] = handler

    def is_task_defined(self, task_id: str) -> bool:
        return task_id in self.handlers

    async def start_continuous_updates(self, task_id: str, options: ContinuousUpdateOptions) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.started[task_id] = options

    async def stop_continuous_updates(self, task_id: str) -> None:
        self.stop_calls += 1
        self.started.pop(task_id, None)

    async def has_started_updates(self, task_id: str) -> bool:
        return task_id in self.started

    def options_for(self, task_id: str) -> ContinuousUpdateOptions | None:
        return self.started.get(task_id)


@pytest.fixture
def fake_store() -> FakeRealtimeStore:
    """Realtime-хранилище в памяти."""
    return FakeRealtimeStore()


@pytest.fixture
def fake_provider() -> FakeLocationProvider:
    """Провайдер координат с фиксированным ответом."""
    return FakeLocationProvider()


@pytest.fixture
def fake_task_manager() -> FakeTaskManager:
    """Менеджер фоновых задач без запуска."""
    return FakeTaskManager()


@pytest.fixture
def flag_store(tmp_path: Path) -> FileFlagStore:
    """Хранилище флагов во временной директории."""
    return FileFlagStore(tmp_path / "flags.json")


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Мгновенная пауза, запоминающая запрошенные задержки."""
    async def _sleep(delay: float) -> None:
        await asyncio.sleep(0)

    return AsyncMock(side_effect=_sleep)


@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=None)
    return db

# src/infra/flag_store.py
"""
Постоянное хранилище флагов устройства (ключ → строка).

Хранит выбранный автобус и счётчик ошибок фоновой задачи.
Переживает перезапуск процесса: каждая операция читает файл заново.
"""

from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path

from src.common.logger import log_error, log_info
from src.common.constants import TypeMsg


class FlagStore(ABC):
    """Асинхронное строковое key-value хранилище."""

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        ...


class FileFlagStore(FlagStore):
    """
    Хранилище флагов в JSON-файле.

    Запись атомарна: данные пишутся во временный файл,
    который затем заменяет основной.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError:
            # Повреждённый файл считаем пустым, следующая запись его перезапишет
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self._path)

    async def get_item(self, key: str) -> str | None:
        async with self._lock:
            return self._read().get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            data = self._read()
            data[key] = str(value)
            try:
                self._write(data)
            except OSError as e:
                await log_error(f"Не удалось сохранить флаг {key}: {e}")
                raise

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            data = self._read()
            if key not in data:
                return
            del data[key]
            self._write(data)


# Глобальный экземпляр
_flag_store: FileFlagStore | None = None


def get_flag_store() -> FileFlagStore:
    """
    Возвращает глобальное хранилище флагов.

    Путь берётся из настроек (относительно корня проекта).
    """
    global _flag_store
    if _flag_store is None:
        from src.config import settings
        from src.config.loader import get_project_root

        path = Path(settings.sharing.FLAG_STORE_PATH)
        if not path.is_absolute():
            path = get_project_root() / path
        _flag_store = FileFlagStore(path)
    return _flag_store


async def init_flag_store() -> None:
    """Создаёт хранилище флагов и логирует его расположение."""
    store = get_flag_store()
    await log_info(f"Хранилище флагов: {store.path}", type_msg=TypeMsg.INFO)

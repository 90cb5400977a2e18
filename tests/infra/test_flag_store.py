# tests/infra/test_flag_store.py
"""
Тесты для файлового хранилища флагов.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.infra.flag_store import FileFlagStore


class TestFileFlagStore:
    """Тесты для FileFlagStore."""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        """Отсутствующий файл читается как пустое хранилище."""
        store = FileFlagStore(tmp_path / "flags.json")
        assert await store.get_item("BUS_NAME") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, flag_store: FileFlagStore) -> None:
        """Значение читается обратно."""
        await flag_store.set_item("BUS_NAME", "Bus 1")
        assert await flag_store.get_item("BUS_NAME") == "Bus 1"

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path: Path) -> None:
        """Значение переживает перезапуск процесса."""
        path = tmp_path / "nested" / "flags.json"
        await FileFlagStore(path).set_item("BUS_NAME", "Bus 9")

        assert await FileFlagStore(path).get_item("BUS_NAME") == "Bus 9"
        assert json.loads(path.read_text(encoding="utf-8")) == {"BUS_NAME": "Bus 9"}

    @pytest.mark.asyncio
    async def test_remove(self, flag_store: FileFlagStore) -> None:
        """Удаление ключа, в том числе отсутствующего."""
        await flag_store.set_item("BUS_NAME", "Bus 1")
        await flag_store.set_item("BG_CONSECUTIVE_ERRORS", "2")

        await flag_store.remove_item("BUS_NAME")
        await flag_store.remove_item("UNKNOWN")

        assert await flag_store.get_item("BUS_NAME") is None
        assert await flag_store.get_item("BG_CONSECUTIVE_ERRORS") == "2"

    @pytest.mark.asyncio
    async def test_values_stored_as_strings(self, flag_store: FileFlagStore) -> None:
        """Значения приводятся к строке."""
        await flag_store.set_item("BG_CONSECUTIVE_ERRORS", 3)
        assert await flag_store.get_item("BG_CONSECUTIVE_ERRORS") == "3"

    @pytest.mark.asyncio
    async def test_corrupted_file_treated_as_empty(self, tmp_path: Path) -> None:
        """Повреждённый файл не ломает чтение и перезаписывается."""
        path = tmp_path / "flags.json"
        path.write_text("{not json", encoding="utf-8")
        store = FileFlagStore(path)

        assert await store.get_item("BUS_NAME") is None
        await store.set_item("BUS_NAME", "Bus 2")
        assert await store.get_item("BUS_NAME") == "Bus 2"

    @pytest.mark.asyncio
    async def test_no_temp_file_left(self, flag_store: FileFlagStore) -> None:
        """Временный файл заменяет основной."""
        await flag_store.set_item("BUS_NAME", "Bus 1")

        files = sorted(p.name for p in flag_store.path.parent.iterdir())
        assert files == ["flags.json"]

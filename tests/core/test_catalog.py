# tests/core/test_catalog.py
"""
Тесты для справочника автобусов.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.core.catalog import BusServiceRepository, VehicleCatalog
from src.shared.models import Identity


class TestBusServiceRepository:
    """Тесты чтения справочника из БД."""

    @pytest.mark.asyncio
    async def test_list_vehicle_types(self, mock_db: AsyncMock) -> None:
        """Значения читаются в порядке id."""
        mock_db.fetch.return_value = [{"vehicle_type": "Bus 1"}, {"vehicle_type": None}]
        repo = BusServiceRepository(mock_db, "bus_services")

        assert await repo.list_vehicle_types() == ["Bus 1", None]
        mock_db.fetch.assert_awaited_once_with("SELECT vehicle_type FROM bus_services ORDER BY id")

    @pytest.mark.asyncio
    async def test_errors_propagate(self, mock_db: AsyncMock) -> None:
        """Ошибка БД пробрасывается вызывающему."""
        mock_db.fetch.side_effect = ConnectionRefusedError("db down")
        repo = BusServiceRepository(mock_db)

        with pytest.raises(ConnectionRefusedError):
            await repo.list_vehicle_types()


class TestVehicleCatalog:
    """Тесты списка выбора автобуса."""

    @pytest.fixture
    def repo(self) -> AsyncMock:
        repo = AsyncMock()
        repo.list_vehicle_types = AsyncMock(return_value=["Bus 2", "Bus 1", "Bus 2", "", None, "Bus 3"])
        return repo

    @pytest.mark.asyncio
    async def test_unique_in_first_seen_order(self, repo: AsyncMock) -> None:
        """Дубликаты и пустые значения отбрасываются."""
        options = await VehicleCatalog(repo).get_bus_options(Identity(display_name="Rahim"))

        assert [option.label for option in options] == ["Bus 2", "Bus 1", "Bus 3", "NEED HELP!!"]

    @pytest.mark.asyncio
    async def test_need_help_includes_user_name(self, repo: AsyncMock) -> None:
        """Пункт помощи уникален для пользователя."""
        options = await VehicleCatalog(repo).get_bus_options(Identity(display_name="Rahim"))

        assert options[-1].value == "NEED HELP!! Rahim"

    @pytest.mark.asyncio
    async def test_need_help_without_name(self, repo: AsyncMock) -> None:
        """Без имени используется Student."""
        repo.list_vehicle_types.return_value = []

        options = await VehicleCatalog(repo).get_bus_options(None)

        assert len(options) == 1
        assert options[0].value == "NEED HELP!! Student"

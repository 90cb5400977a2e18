# src/core/catalog/repository.py
"""
Репозиторий справочника автобусов (таблица bus_services).
"""

from __future__ import annotations

from src.common.logger import log_error
from src.infra.database import DatabaseManager


class BusServiceRepository:
    """Чтение справочника автобусов."""

    def __init__(self, db: DatabaseManager, table: str = "bus_services") -> None:
        """
        Args:
            db: Менеджер базы данных
            table: Имя таблицы справочника
        """
        self._db = db
        self._table = table

    async def list_vehicle_types(self) -> list[str | None]:
        """
        Значения vehicle_type в порядке добавления.

        Дубликаты и пустые значения не отбрасываются.
        """
        try:
            rows = await self._db.fetch(f"SELECT vehicle_type FROM {self._table} ORDER BY id")
        except Exception as e:
            await log_error(f"Ошибка чтения справочника автобусов: {e}")
            raise
        return [row["vehicle_type"] for row in rows]

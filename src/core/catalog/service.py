# src/core/catalog/service.py
"""
Список автобусов для выбора на экране трансляции.
"""

from __future__ import annotations

from src.common.constants import NEED_HELP_LABEL, TypeMsg
from src.common.logger import log_info
from src.core.catalog.repository import BusServiceRepository
from src.shared.models import BusOption, Identity


class VehicleCatalog:
    """
    Источник пунктов списка выбора автобуса.
    """

    def __init__(self, repository: BusServiceRepository) -> None:
        self._repo = repository

    async def get_bus_options(self, identity: Identity | None = None) -> list[BusOption]:
        """
        Уникальные названия автобусов и пункт "NEED HELP!!".

        Порядок соответствует первому появлению в справочнике.
        Пункт помощи всегда последний, его значение включает имя
        пользователя, чтобы запросы разных студентов не совпадали.
        """
        seen: set[str] = set()
        options: list[BusOption] = []
        for vehicle_type in await self._repo.list_vehicle_types():
            if not vehicle_type or vehicle_type in seen:
                continue
            seen.add(vehicle_type)
            options.append(BusOption(label=vehicle_type, value=vehicle_type))

        display_name = identity.display_name if identity and identity.display_name else "Student"
        options.append(BusOption(label=NEED_HELP_LABEL, value=f"{NEED_HELP_LABEL} {display_name}"))

        await log_info(f"Справочник автобусов: {len(options) - 1} вариантов", type_msg=TypeMsg.DEBUG)
        return options

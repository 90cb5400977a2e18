# src/services/__init__.py
"""
Сервисы приложения.

Каждый сервис - отдельное FastAPI-приложение со своим портом.
Общие данные: Redis (коллекция buses/ и канал изменений), PostgreSQL (справочник автобусов).

Сервисы:
- location_sharing: трансляция местоположения с устройства студента
- bus_map: карта активных автобусов, очистка устаревших записей
"""

__all__: list[str] = []

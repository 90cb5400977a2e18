# src/services/bus_map/__init__.py
"""
Bus Map Service: карта активных автобусов.

Обеспечивает:
- Подписку на коллекцию автобусов с повторным подключением
- Фильтрацию устаревших записей и кластеризацию маркеров
- Периодическую очистку хранилища
"""

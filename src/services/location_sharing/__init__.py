# src/services/location_sharing/__init__.py
"""
Location Sharing Service: трансляция местоположения автобуса.

Обеспечивает:
- Выбор автобуса из справочника
- Старт/стоп трансляции с откатом при ошибке
- Приём координат устройства (HTTP push)
- Фоновую задачу записи координат
"""

# src/shared/__init__.py
"""
Общий код между сервисами.

Модули:
- models: Pydantic-модели записей, карты и ответов API
- errors: иерархия ошибок конвейера
- keys: ключи realtime-хранилища и проверка координат
"""

__all__: list[str] = []

# src/config/__init__.py
"""
Настройки Bus Tracker из config/config.json и переменных окружения.
"""

from src.config.loader import Settings, get_config_path, get_settings, settings

__all__ = ["Settings", "get_config_path", "get_settings", "settings"]

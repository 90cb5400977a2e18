"""
Общие утилиты: логгер, перечисления и тексты для пользователя.
"""

from src.common.logger import get_logger, setup_logging, log_info, log_error, log_warning, log_debug
from src.common.constants import ConnectionStatus, ShareStatus, SharingMode, TypeMsg
from src.common.localization import get_text

__all__ = [
    "get_logger",
    "setup_logging",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "ConnectionStatus",
    "ShareStatus",
    "SharingMode",
    "TypeMsg",
    "get_text",
]

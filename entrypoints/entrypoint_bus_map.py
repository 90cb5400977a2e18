#!/usr/bin/env python3
"""
Entrypoint для Bus Map Service.

Запуск:
    python entrypoint_bus_map.py

Порт по умолчанию: 8091
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings


def main() -> None:
    """Запустить Bus Map Service."""
    port = settings.deployment.BUS_MAP_PORT

    uvicorn.run(
        "src.services.bus_map.app:app",
        host=settings.deployment.HOST,
        port=port,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Entrypoint для Location Sharing Service.

Запуск:
    python entrypoint_location_sharing.py

Порт по умолчанию: 8090
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings


def main() -> None:
    """Запустить Location Sharing Service."""
    port = settings.deployment.LOCATION_SHARING_PORT

    uvicorn.run(
        "src.services.location_sharing.app:app",
        host=settings.deployment.HOST,
        port=port,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
# main.py
"""
Главная точка входа Bus Tracker.
Запускает сервис трансляции, сервис карты или оба в зависимости от аргументов.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


COMPONENTS = ("location_sharing", "bus_map", "all")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def _serve(app_path: str, port: int, name: str) -> None:
    """Запускает FastAPI приложение через uvicorn до отмены."""
    import uvicorn

    await log_info(f"Запуск {name} на порту {port}...", type_msg=TypeMsg.INFO)

    config = uvicorn.Config(
        app_path,
        host=settings.deployment.HOST,
        port=port,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info(f"{name}: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_location_sharing() -> None:
    """Запускает Location Sharing Service (устройство студента)."""
    await _serve(
        "src.services.location_sharing.app:app",
        settings.deployment.LOCATION_SHARING_PORT,
        "Location Sharing Service",
    )


async def run_bus_map() -> None:
    """Запускает Bus Map Service (карта автобусов)."""
    await _serve(
        "src.services.bus_map.app:app",
        settings.deployment.BUS_MAP_PORT,
        "Bus Map Service",
    )


def interactive_mode_selection() -> str:
    """Интерактивный выбор компонента в консоли."""
    mode_map = {
        "1": "location_sharing",
        "2": "bus_map",
        "3": "all",
    }

    print("\nКомпоненты Bus Tracker:")
    print("  1. location_sharing - трансляция местоположения")
    print("  2. bus_map          - карта автобусов")
    print("  3. all              - оба сервиса")

    while True:
        choice = input("\nВыберите компонент (номер или название): ").strip().lower()
        if choice in mode_map:
            return mode_map[choice]
        if choice in COMPONENTS:
            return choice
        print("❌ Неверный выбор. Попробуйте снова.")


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: location_sharing, bus_map или all.
              Если None, берётся из COMPONENT_MODE или выбирается интерактивно.
    """
    global _running_tasks

    setup_logging()
    setup_signal_handlers()

    if mode is None:
        component_mode = settings.system.COMPONENT_MODE
        if component_mode in COMPONENTS:
            mode = component_mode
            await log_info(f"🐳 Запуск компонента '{mode}' из COMPONENT_MODE", type_msg=TypeMsg.INFO)
        else:
            mode = interactive_mode_selection()

    await log_info(
        f"Bus Tracker v{settings.system.VERSION} - запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    try:
        if mode == "location_sharing":
            await run_location_sharing()
        elif mode == "bus_map":
            await run_bus_map()
        elif mode == "all":
            _running_tasks = [
                asyncio.create_task(run_location_sharing()),
                asyncio.create_task(run_bus_map()),
            ]
            try:
                await asyncio.gather(*_running_tasks, return_exceptions=True)
            except asyncio.CancelledError:
                await log_info("Отмена всех сервисов...", type_msg=TypeMsg.INFO)
                for task in _running_tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*_running_tasks, return_exceptions=True)
                raise
        else:
            await log_error(f"Неизвестный режим: {mode}")

    except KeyboardInterrupt:
        await log_info("Получен сигнал остановки (Ctrl+C)", type_msg=TypeMsg.INFO)
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}")
        raise
    finally:
        if _running_tasks:
            for task in _running_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*_running_tasks, return_exceptions=True)
            _running_tasks.clear()
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print(f"""
Bus Tracker v{settings.system.VERSION} - местоположение автобусов в реальном времени

Использование:
    python main.py [mode]

Компоненты:
    location_sharing       - Location Sharing Service (:{settings.deployment.LOCATION_SHARING_PORT})
    bus_map                - Bus Map Service (:{settings.deployment.BUS_MAP_PORT})
    all                    - оба сервиса

Примеры:
    python main.py                       # COMPONENT_MODE или интерактивный выбор
    python main.py bus_map               # Только карта
    python main.py all                   # Оба сервиса
    """)


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in COMPONENTS:
            mode = arg
        else:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass

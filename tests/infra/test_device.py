# tests/infra/test_device.py
"""
Тесты для адаптеров устройства: координаты и фоновые задачи.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.infra.device import (
    AsyncioTaskManager,
    ContinuousUpdateOptions,
    PushLocationProvider,
    describe_options,
)
from src.shared.errors import LocationTimeoutError, LocationUnavailableError, TaskNotDefinedError
from src.shared.models import PositionFix


FIX = PositionFix(latitude=22.46, longitude=91.97, speed=3.0)


class FakeClock:
    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class TestPushLocationProvider:
    """Тесты провайдера координат, присылаемых устройством."""

    @pytest.mark.asyncio
    async def test_fresh_fix_returned_immediately(self) -> None:
        """Фикс моложе max_age отдаётся без ожидания."""
        clock = FakeClock()
        provider = PushLocationProvider(clock=clock)
        await provider.push(FIX)
        clock.now += 1000

        fix = await provider.get_current_position(timeout_ms=10, max_age_ms=5000)

        assert fix.latitude == 22.46
        assert fix.timestamp == 1_000_000

    @pytest.mark.asyncio
    async def test_waits_for_next_push(self) -> None:
        """Старый фикс: ожидается следующий push."""
        clock = FakeClock()
        provider = PushLocationProvider(clock=clock)
        await provider.push(FIX)
        clock.now += 60_000

        waiter = asyncio.create_task(provider.get_current_position(timeout_ms=1000, max_age_ms=5000))
        await asyncio.sleep(0)
        await provider.push(PositionFix(latitude=22.5, longitude=91.9))

        fix = await waiter
        assert fix.latitude == 22.5

    @pytest.mark.asyncio
    async def test_timeout_without_push(self) -> None:
        """Нет координат за timeout_ms."""
        provider = PushLocationProvider()

        with pytest.raises(LocationTimeoutError):
            await provider.get_current_position(timeout_ms=20)

    @pytest.mark.asyncio
    async def test_unavailable_gps(self) -> None:
        """GPS выключен на устройстве."""
        provider = PushLocationProvider()
        provider.update_state(available=False)

        with pytest.raises(LocationUnavailableError):
            await provider.get_current_position(timeout_ms=20)

    @pytest.mark.asyncio
    async def test_permissions_follow_state(self) -> None:
        """Разрешения и службы берутся из последнего состояния устройства."""
        provider = PushLocationProvider(background_granted=False)
        assert await provider.request_foreground_permission() is True
        assert await provider.request_background_permission() is False

        provider.update_state(services_enabled=False, background_granted=True)

        assert await provider.has_services_enabled() is False
        assert await provider.request_background_permission() is True


class TestAsyncioTaskManager:
    """Тесты фоновой доставки координат."""

    @pytest.mark.asyncio
    async def test_start_requires_defined_task(self) -> None:
        manager = AsyncioTaskManager(PushLocationProvider())

        with pytest.raises(TaskNotDefinedError):
            await manager.start_continuous_updates("UNKNOWN", ContinuousUpdateOptions())

    @pytest.mark.asyncio
    async def test_handler_receives_locations(self) -> None:
        """Обработчик вызывается с пачкой координат."""
        provider = PushLocationProvider()
        await provider.push(FIX)
        manager = AsyncioTaskManager(provider, read_timeout_ms=50)
        handler = AsyncMock()
        manager.define_task("BG", handler)

        await manager.start_continuous_updates("BG", ContinuousUpdateOptions(time_interval_ms=60_000))
        await asyncio.sleep(0.01)

        assert await manager.has_started_updates("BG")
        locations, error = handler.await_args.args
        assert locations[0].latitude == 22.46
        assert error is None

        await manager.stop_continuous_updates("BG")
        assert not await manager.has_started_updates("BG")
        assert manager.options_for("BG") is None

    @pytest.mark.asyncio
    async def test_handler_receives_errors(self) -> None:
        """Ошибка геолокации передаётся обработчику."""
        provider = PushLocationProvider()
        provider.update_state(available=False)
        manager = AsyncioTaskManager(provider, read_timeout_ms=50)
        handler = AsyncMock()
        manager.define_task("BG", handler)

        await manager.start_continuous_updates("BG", ContinuousUpdateOptions(time_interval_ms=60_000))
        await asyncio.sleep(0.01)
        await manager.shutdown()

        locations, error = handler.await_args.args
        assert locations is None
        assert isinstance(error, LocationUnavailableError)

    @pytest.mark.asyncio
    async def test_failing_handler_keeps_task_alive(self) -> None:
        """Исключение обработчика не останавливает задачу."""
        provider = PushLocationProvider()
        await provider.push(FIX)
        manager = AsyncioTaskManager(provider)
        manager.define_task("BG", AsyncMock(side_effect=RuntimeError("boom")))

        await manager.start_continuous_updates("BG", ContinuousUpdateOptions(time_interval_ms=60_000))
        await asyncio.sleep(0.01)

        assert await manager.has_started_updates("BG")
        await manager.shutdown()

    def test_describe_options(self) -> None:
        options = ContinuousUpdateOptions(notification_body="Sharing for Bus 1")

        described = describe_options(options)

        assert described["accuracy"] == "high"
        assert described["notification"]["body"] == "Sharing for Bus 1"

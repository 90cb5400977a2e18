# tests/core/test_tracking_consumer.py
"""
Тесты для карты автобусов: подписка, повторы, очистка, камера.
"""

from __future__ import annotations

import asyncio

import pytest

from src.common.constants import ConnectionStatus
from src.common.localization import get_text
from src.core.tracking.consumer import BusMapConsumer


NOW = 200_000


def record(lat: float, lng: float, timestamp: int = NOW, **extra) -> dict:
    return {"latitude": lat, "longitude": lng, "timestamp": timestamp, **extra}


async def settle(consumer: BusMapConsumer, expected: ConnectionStatus, rounds: int = 50) -> None:
    """Даёт фоновым задачам повторов отработать."""
    for _ in range(rounds):
        if consumer.status == expected:
            return
        await asyncio.sleep(0)


@pytest.fixture
def consumer(fake_store, fake_provider, tracking_config, no_sleep) -> BusMapConsumer:
    """Карта с фиксированными часами и без случайного разброса."""
    return BusMapConsumer(
        fake_store,
        clock=lambda: NOW,
        location_provider=fake_provider,
        config=tracking_config,
        lang="en",
        sleep=no_sleep,
        jitter=lambda: 0.0,
    )


class TestSubscription:
    """Тесты подписки на коллекцию."""

    @pytest.mark.asyncio
    async def test_initial_snapshot_connects(self, consumer: BusMapConsumer, fake_store) -> None:
        """Первый снимок переводит карту в connected."""
        fake_store.data["Bus 1"] = record(22.46, 91.97)
        fake_store.data["Old"] = record(22.40, 91.90, timestamp=0)

        assert consumer.status == ConnectionStatus.DISCONNECTED
        await consumer.start(with_cleanup=False)

        assert consumer.status == ConnectionStatus.CONNECTED
        assert [bus.name for bus in consumer.buses] == ["Bus 1"]
        await consumer.stop()

    @pytest.mark.asyncio
    async def test_updates_follow_store_changes(self, consumer: BusMapConsumer, fake_store) -> None:
        """Запись и удаление в хранилище отражаются на карте."""
        await consumer.start(with_cleanup=False)

        await fake_store.set("buses/Bus 2", record(22.3, 91.8))
        assert [bus.name for bus in consumer.buses] == ["Bus 2"]

        await fake_store.remove("buses/Bus 2")
        assert consumer.buses == []
        await consumer.stop()

    @pytest.mark.asyncio
    async def test_error_then_successful_retry(self, consumer: BusMapConsumer, fake_store, no_sleep) -> None:
        """После обрыва подписка восстанавливается через 2 с."""
        await consumer.start(with_cleanup=False)

        await fake_store.emit_error(ConnectionError("reset"))
        assert consumer.status == ConnectionStatus.ERROR

        await settle(consumer, ConnectionStatus.CONNECTED)

        assert consumer.status == ConnectionStatus.CONNECTED
        assert consumer.retry_count == 0
        assert no_sleep.await_args_list[0].args[0] == 2.0
        assert fake_store.subscriber_count == 1
        await consumer.stop()

    @pytest.mark.asyncio
    async def test_retries_capped_then_warning(self, consumer: BusMapConsumer, fake_store, no_sleep) -> None:
        """После трёх неудачных повторов карта ждёт ручного обновления."""
        fake_store.fail_subscribe = True

        await consumer.start(with_cleanup=False)
        await settle(consumer, ConnectionStatus.CONNECTED_WITH_WARNING)

        assert consumer.status == ConnectionStatus.CONNECTED_WITH_WARNING
        assert consumer.retry_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [2.0, 4.0, 8.0]
        assert consumer.snapshot().alert == get_text("CONNECTION_ERROR", "en")

    @pytest.mark.asyncio
    async def test_refresh_resets_retries(self, consumer: BusMapConsumer, fake_store) -> None:
        """Ручное обновление сбрасывает счётчик и переподключается."""
        fake_store.fail_subscribe = True
        await consumer.start(with_cleanup=False)
        await settle(consumer, ConnectionStatus.CONNECTED_WITH_WARNING)

        fake_store.fail_subscribe = False
        fake_store.data["Bus 1"] = record(22.46, 91.97)
        await consumer.refresh()

        assert consumer.status == ConnectionStatus.CONNECTED
        assert consumer.retry_count == 0
        assert consumer.snapshot().alert is None
        assert len(consumer.buses) == 1
        await consumer.stop()

    @pytest.mark.asyncio
    async def test_refresh_replaces_subscription(self, consumer: BusMapConsumer, fake_store) -> None:
        """После обновления остаётся одна подписка."""
        await consumer.start(with_cleanup=False)
        await consumer.refresh()

        assert fake_store.subscriber_count == 1
        await consumer.stop()
        assert fake_store.subscriber_count == 0
        assert consumer.status == ConnectionStatus.DISCONNECTED


class TestCleanup:
    """Тесты очистки устаревших записей."""

    @pytest.mark.asyncio
    async def test_cleanup_deletes_stale_records(self, consumer: BusMapConsumer, fake_store) -> None:
        """Запись с timestamp=0 удаляется на t=200000 мс."""
        fake_store.data["Old"] = record(22.4, 91.9, timestamp=0)
        fake_store.data["Fresh"] = record(22.5, 91.8)

        stats = await consumer.run_cleanup()

        assert stats.deleted_count == 1
        assert stats.failed_count == 0
        assert stats.runs == 1
        assert list(fake_store.data) == ["Fresh"]

    @pytest.mark.asyncio
    async def test_cleanup_continues_after_failed_delete(self, consumer: BusMapConsumer, fake_store) -> None:
        """Ошибка одного удаления не мешает остальным."""
        fake_store.data["Old 1"] = record(1.0, 1.0, timestamp=0)
        fake_store.data["Old 2"] = record(2.0, 2.0, timestamp=10)
        fake_store.fail_removes.add("Old 1")

        stats = await consumer.run_cleanup()

        assert stats.deleted_count == 1
        assert stats.failed_count == 1
        assert "Old 2" not in fake_store.data

    @pytest.mark.asyncio
    async def test_cleanup_not_reentrant(self, consumer: BusMapConsumer, fake_store) -> None:
        """Пока идёт очистка, второй запуск пропускается."""
        consumer._cleanup_in_progress = True

        assert await consumer.run_cleanup() is None

    @pytest.mark.asyncio
    async def test_cleanup_read_failure(self, consumer: BusMapConsumer, fake_store) -> None:
        """Недоступное хранилище: очистка не падает."""
        fake_store.fail_get = True

        assert await consumer.manual_cleanup() is None
        assert consumer.cleanup_stats.runs == 0

    @pytest.mark.asyncio
    async def test_periodic_cleanup_loop(self, consumer: BusMapConsumer, fake_store, no_sleep) -> None:
        """Периодическая очистка раз в 60 с плюс разброс."""
        fake_store.data["Old"] = record(1.0, 1.0, timestamp=0)

        await consumer.start()
        for _ in range(10):
            await asyncio.sleep(0)
        await consumer.stop()

        assert "Old" not in fake_store.data
        assert consumer.cleanup_stats.runs >= 1
        assert no_sleep.await_args_list[0].args[0] == 60.0


class TestCameraAndSnapshot:
    """Тесты камеры и снимка карты."""

    @pytest.mark.asyncio
    async def test_center_on_buses_without_buses(self, consumer: BusMapConsumer) -> None:
        """Нет автобусов: предупреждение вместо камеры."""
        await consumer.start(with_cleanup=False)

        assert consumer.center_on_buses() is None
        assert consumer.snapshot().alert == get_text("NO_BUSES", "en")
        await consumer.stop()

    @pytest.mark.asyncio
    async def test_center_on_buses(self, consumer: BusMapConsumer, fake_store) -> None:
        """Камера по прямоугольнику автобусов."""
        fake_store.data["a"] = record(22.0, 91.0)
        fake_store.data["b"] = record(23.0, 92.0)
        await consumer.start(with_cleanup=False)

        camera = consumer.center_on_buses()

        assert camera.latitude == pytest.approx(22.5)
        assert camera.zoom == 12
        await consumer.stop()

    @pytest.mark.asyncio
    async def test_center_on_user(self, consumer: BusMapConsumer) -> None:
        """Местоположение наблюдателя попадает в снимок."""
        camera = await consumer.center_on_user()

        assert camera is not None
        assert camera.zoom == 14
        assert consumer.snapshot().user_location == camera

        consumer.clear_user_location()
        assert consumer.snapshot().user_location is None

    @pytest.mark.asyncio
    async def test_center_on_user_permission_denied(self, consumer: BusMapConsumer, fake_provider) -> None:
        """Без разрешения камера не двигается."""
        fake_provider.foreground = False

        assert await consumer.center_on_user() is None
        assert consumer.snapshot().alert == get_text("PERMISSION_DENIED", "en")

    @pytest.mark.asyncio
    async def test_center_on_user_without_provider(self, fake_store, tracking_config) -> None:
        """Без источника координат показывается предупреждение."""
        consumer = BusMapConsumer(fake_store, clock=lambda: NOW, config=tracking_config, lang="en")

        assert await consumer.center_on_user() is None
        assert consumer.snapshot().alert is not None

    @pytest.mark.asyncio
    async def test_snapshot_markers(self, consumer: BusMapConsumer, fake_store) -> None:
        """Маркеры пересчитываются из актуальных автобусов."""
        fake_store.data["Tracker"] = record(22.0, 91.0, deviceType="gps_tracker")
        fake_store.data["Student"] = record(22.1, 91.1, timestamp=NOW - 90_000)
        await consumer.start(with_cleanup=False)

        snapshot = consumer.snapshot()

        assert snapshot.status == ConnectionStatus.CONNECTED
        assert not snapshot.clustered
        styles = {marker.label: marker.style for marker in snapshot.markers}
        assert styles["Tracker"].color == "#00AA00"
        assert styles["Student"].stale
        assert snapshot.last_updated is not None
        await consumer.stop()

# tests/core/test_sharing_background.py
"""
Тесты для обработчика фоновой задачи геолокации.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from src.common.constants import BACKGROUND_TASK_NAME, BG_CONSECUTIVE_ERRORS_KEY, BUS_NAME_KEY
from src.core.sharing.background import (
    BACKGROUND_SHARER,
    BackgroundLocationHandler,
    register_background_task,
)
from src.shared.errors import LocationUnavailableError
from src.shared.models import PositionFix


FIX = PositionFix(latitude=22.4606, longitude=91.9714, accuracy=8.0, speed=4.0, heading=45.0)


@pytest.fixture
def handler(flag_store, fake_store, sharing_config, no_sleep) -> BackgroundLocationHandler:
    """Обработчик, получающий хранилище через фабрику."""
    return BackgroundLocationHandler(
        flag_store,
        AsyncMock(return_value=fake_store),
        config=sharing_config,
        sleep=no_sleep,
    )


class TestBackgroundLocationHandler:
    """Тесты записи координат из фоновой задачи."""

    @pytest.mark.asyncio
    async def test_writes_first_location(self, handler, flag_store, fake_store) -> None:
        """Пишется первая координата пачки с sharedBy=Background."""
        await flag_store.set_item(BUS_NAME_KEY, "Bus 1")
        other = PositionFix(latitude=0.0, longitude=0.0)

        result = await handler([FIX, other], None)

        assert result.written
        assert fake_store.data["Bus 1"]["sharedBy"] == BACKGROUND_SHARER
        assert fake_store.data["Bus 1"]["latitude"] == 22.4606
        assert await flag_store.get_item(BG_CONSECUTIVE_ERRORS_KEY) == "0"

    @pytest.mark.asyncio
    async def test_store_obtained_on_every_call(self, flag_store, fake_store, sharing_config, no_sleep) -> None:
        """Подключение восстанавливается при каждом вызове."""
        factory = AsyncMock(return_value=fake_store)
        handler = BackgroundLocationHandler(flag_store, factory, config=sharing_config, sleep=no_sleep)
        await flag_store.set_item(BUS_NAME_KEY, "Bus 1")

        await handler([FIX], None)
        await handler([FIX], None)

        assert factory.await_count == 2

    @pytest.mark.asyncio
    async def test_skips_without_bus_label(self, handler, fake_store) -> None:
        """Без выбранного автобуса ничего не пишется."""
        result = await handler([FIX], None)

        assert not result.written
        assert result.skipped_reason == "no_bus_label"
        assert fake_store.set_calls == []

    @pytest.mark.asyncio
    async def test_skips_empty_batch(self, handler) -> None:
        """Пустая пачка координат."""
        result = await handler([], None)
        assert result.skipped_reason == "no_locations"

        result = await handler(None, None)
        assert result.skipped_reason == "no_locations"

    @pytest.mark.asyncio
    async def test_invalid_coordinates_not_written(self, handler, flag_store, fake_store) -> None:
        """Координаты вне диапазона отбрасываются."""
        await flag_store.set_item(BUS_NAME_KEY, "Bus 1")

        result = await handler([PositionFix(latitude=10.0, longitude=200.0)], None)

        assert result.skipped_reason == "invalid_coordinates"
        assert fake_store.set_calls == []

    @pytest.mark.asyncio
    async def test_task_error_counts_consecutive_errors(self, handler, flag_store) -> None:
        """Ошибки задачи накапливаются в хранилище флагов."""
        await handler(None, LocationUnavailableError())
        result = await handler(None, LocationUnavailableError())

        assert result.error is not None
        assert result.consecutive_errors == 2
        assert await handler.consecutive_errors() == 2

    @pytest.mark.asyncio
    async def test_success_resets_error_counter(self, handler, flag_store) -> None:
        """Успешная запись обнуляет счётчик."""
        await flag_store.set_item(BUS_NAME_KEY, "Bus 1")
        await handler(None, LocationUnavailableError())

        await handler([FIX], None)

        assert await handler.consecutive_errors() == 0

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, handler, flag_store, fake_store, no_sleep) -> None:
        """Две сетевые ошибки и успешная третья попытка с паузами 1 с и 2 с."""
        await flag_store.set_item(BUS_NAME_KEY, "Bus 1")
        fake_store.fail_writes = 2

        result = await handler([FIX], None)

        assert result.written
        assert len(fake_store.set_calls) == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_reported(self, handler, flag_store, fake_store) -> None:
        """После исчерпания повторов ошибка считается, задача не снимается."""
        await flag_store.set_item(BUS_NAME_KEY, "Bus 1")
        fake_store.fail_writes = 10

        result = await handler([FIX], None)

        assert not result.written
        assert result.consecutive_errors == 1
        assert len(fake_store.set_calls) == 4

    @pytest.mark.asyncio
    async def test_store_factory_failure(self, flag_store, sharing_config, no_sleep) -> None:
        """Недоступное хранилище считается ошибкой вызова."""
        factory = AsyncMock(side_effect=ConnectionError("redis down"))
        handler = BackgroundLocationHandler(flag_store, factory, config=sharing_config, sleep=no_sleep)
        await flag_store.set_item(BUS_NAME_KEY, "Bus 1")

        result = await handler([FIX], None)

        assert not result.written
        assert "redis down" in result.error

    @pytest.mark.asyncio
    async def test_corrupted_counter_treated_as_zero(self, handler, flag_store) -> None:
        """Нечисловой счётчик начинается заново."""
        await flag_store.set_item(BG_CONSECUTIVE_ERRORS_KEY, "abc")

        assert await handler.consecutive_errors() == 0

    @pytest.mark.asyncio
    async def test_warns_at_consecutive_error_threshold(self, handler, flag_store) -> None:
        """Начиная с пятой ошибки подряд каждая ошибка даёт предупреждение."""
        with patch("src.core.sharing.background.log_warning", new_callable=AsyncMock) as warning:
            for _ in range(4):
                await handler(None, LocationUnavailableError())
            assert warning.await_count == 0

            result = await handler(None, LocationUnavailableError())
            assert result.consecutive_errors == 5
            assert warning.await_count == 1
            assert "5 ошибок подряд" in warning.await_args.args[0]

            await handler(None, LocationUnavailableError())
            assert warning.await_count == 2

        assert await flag_store.get_item(BG_CONSECUTIVE_ERRORS_KEY) == "6"


def test_register_background_task(fake_task_manager, handler) -> None:
    """Обработчик регистрируется под идентификатором задачи."""
    register_background_task(fake_task_manager, handler)

    assert fake_task_manager.is_task_defined(BACKGROUND_TASK_NAME)
    assert fake_task_manager.handlers[BACKGROUND_TASK_NAME] is handler

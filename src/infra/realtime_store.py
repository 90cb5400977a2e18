# src/infra/realtime_store.py
"""
Realtime-хранилище записей об автобусах на базе Redis.

Путь вида "buses/{key}" хранится как JSON в ключе "{namespace}:buses:{key}".
Каждая запись и удаление публикуются в канал "{namespace}:changes:buses",
подписчики коллекции получают полный снимок после каждого изменения.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.common.logger import get_logger, log_error, log_info, log_warning
from src.common.constants import TypeMsg
from src.shared.errors import StoreSubscriptionError, StoreWriteError, is_transient_error

logger = get_logger("realtime_store")

ValueCallback = Callable[[Any], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]


class RealtimeStore(ABC):
    """
    Иерархическое хранилище с подпиской на изменения.

    Поддерживает два уровня пути: коллекция ("buses") и запись ("buses/{key}").
    """

    @abstractmethod
    async def set(self, path: str, value: dict[str, Any]) -> None:
        """Полностью заменяет значение по пути."""

    @abstractmethod
    async def remove(self, path: str) -> None:
        """Удаляет значение. Удаление отсутствующего пути не ошибка."""

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Читает значение по пути. Пустая коллекция возвращает None."""

    @abstractmethod
    async def on_value(
        self,
        path: str,
        callback: ValueCallback,
        error_callback: ErrorCallback | None = None,
    ) -> Unsubscribe:
        """
        Подписывается на значение по пути.

        callback вызывается сразу с текущим снимком и затем после
        каждого изменения. Возвращает корутину-функцию отписки.
        """

    async def health_check(self) -> bool:
        return True


class RedisRealtimeStore(RealtimeStore):
    """
    Реализация RealtimeStore поверх Redis (Singleton).

    Коллекция читается через SCAN + MGET, изменения доставляются
    через Pub/Sub.
    """

    _instance: RedisRealtimeStore | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisRealtimeStore:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Инициализация (вызывается только один раз благодаря Singleton)."""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "bus_tracker"
        self._listeners: set[asyncio.Task] = set()

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Realtime-хранилище не инициализировано. Вызовите connect() сначала.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def attach(self, client: redis.Redis, namespace: str = "bus_tracker") -> None:
        """Использует готовый клиент Redis (тесты, общий пул)."""
        self._client = client
        self._namespace = namespace

    # =========================================================================
    # КЛЮЧИ
    # =========================================================================

    @staticmethod
    def _split(path: str) -> tuple[str, str | None]:
        """Разбивает путь на корень коллекции и ключ записи."""
        parts = path.strip("/").split("/", 1)
        if len(parts) == 1:
            return parts[0], None
        return parts[0], parts[1]

    def _make_key(self, root: str, child: str) -> str:
        """Добавляет namespace к ключу записи."""
        return f"{self._namespace}:{root}:{child}"

    def _collection_pattern(self, root: str) -> str:
        return f"{self._namespace}:{root}:*"

    def _channel(self, root: str) -> str:
        """Канал уведомлений об изменениях коллекции."""
        return f"{self._namespace}:changes:{root}"

    def _record_path(self, path: str) -> tuple[str, str]:
        root, child = self._split(path)
        if not child:
            raise ValueError(f"Путь записи должен иметь вид '<коллекция>/<ключ>': {path!r}")
        return root, child

    # =========================================================================
    # ПОДКЛЮЧЕНИЕ
    # =========================================================================

    async def connect(
        self,
        url: str | None = None,
        max_connections: int = 20,
        namespace: str | None = None,
    ) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis (если None, берётся из конфига)
            max_connections: Максимальное количество соединений
            namespace: Префикс ключей
        """
        if self._client is not None:
            return

        if url is None:
            from src.config import settings
            url = settings.redis.url
            max_connections = settings.redis.REDIS_MAX_CONNECTIONS
            namespace = namespace or settings.redis.REDIS_NAMESPACE

        if namespace:
            self._namespace = namespace

        await log_info("Подключение к realtime-хранилищу (Redis)...", type_msg=TypeMsg.INFO)

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )

        # Проверяем подключение
        await self._client.ping()

        await log_info("Подключение к realtime-хранилищу установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Останавливает подписки и закрывает соединение."""
        for task in list(self._listeners):
            task.cancel()
        if self._listeners:
            await asyncio.gather(*self._listeners, return_exceptions=True)
        self._listeners.clear()

        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с realtime-хранилищем закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # ЗАПИСЬ И ЧТЕНИЕ
    # =========================================================================

    async def set(self, path: str, value: dict[str, Any]) -> None:
        root, child = self._record_path(path)
        payload = json.dumps(value, ensure_ascii=False)
        change = json.dumps({"op": "set", "key": child})

        try:
            pipe = self.client.pipeline()
            pipe.set(self._make_key(root, child), payload)
            pipe.publish(self._channel(root), change)
            await pipe.execute()
        except RedisError as e:
            raise StoreWriteError(f"Не удалось записать {path}: {e}", transient=is_transient_error(e)) from e

    async def remove(self, path: str) -> None:
        root, child = self._record_path(path)
        change = json.dumps({"op": "remove", "key": child})

        try:
            pipe = self.client.pipeline()
            pipe.delete(self._make_key(root, child))
            pipe.publish(self._channel(root), change)
            await pipe.execute()
        except RedisError as e:
            raise StoreWriteError(f"Не удалось удалить {path}: {e}", transient=is_transient_error(e)) from e

    async def get(self, path: str) -> Any:
        root, child = self._split(path)
        if child:
            raw = await self.client.get(self._make_key(root, child))
            return json.loads(raw) if raw is not None else None
        return await self._get_collection(root)

    async def _get_collection(self, root: str) -> dict[str, Any] | None:
        """Снимок всей коллекции: {ключ: запись}."""
        keys = [key async for key in self.client.scan_iter(match=self._collection_pattern(root))]
        if not keys:
            return None

        prefix = f"{self._namespace}:{root}:"
        values = await self.client.mget(keys)
        snapshot: dict[str, Any] = {}
        for key, raw in zip(keys, values):
            if raw is None:
                # Ключ удалён между SCAN и MGET
                continue
            try:
                snapshot[key[len(prefix):]] = json.loads(raw)
            except json.JSONDecodeError:
                await log_warning(f"Повреждённая запись {key} пропущена")
        return snapshot or None

    # =========================================================================
    # ПОДПИСКА
    # =========================================================================

    async def on_value(
        self,
        path: str,
        callback: ValueCallback,
        error_callback: ErrorCallback | None = None,
    ) -> Unsubscribe:
        root, _ = self._split(path)
        pubsub = self.client.pubsub()
        try:
            await pubsub.subscribe(self._channel(root))
        except RedisError as e:
            await pubsub.aclose()
            raise StoreSubscriptionError(f"Не удалось подписаться на {path}: {e}") from e

        task = asyncio.create_task(self._listen(path, pubsub, callback, error_callback))
        self._listeners.add(task)
        task.add_done_callback(self._listeners.discard)

        async def unsubscribe() -> None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        return unsubscribe

    async def _listen(
        self,
        path: str,
        pubsub: Any,
        callback: ValueCallback,
        error_callback: ErrorCallback | None,
    ) -> None:
        """Доставляет начальный снимок и снимки после каждого изменения."""
        try:
            await self._deliver(path, callback)
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                await self._deliver(path, callback)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await log_error(f"Подписка на {path} прервана: {e}")
            if error_callback is not None:
                await error_callback(StoreSubscriptionError(str(e)))
        finally:
            try:
                await pubsub.unsubscribe()
                await pubsub.aclose()
            except RedisError as e:
                await log_warning(f"Ошибка закрытия подписки {path}: {e}")

    async def _deliver(self, path: str, callback: ValueCallback) -> None:
        snapshot = await self.get(path)
        try:
            await callback(snapshot)
        except Exception as e:
            # Ошибка обработчика не должна рвать подписку
            await log_error(f"Ошибка обработчика снимка {path}: {e}", exc_info=True)

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        """
        Проверяет здоровье подключения к Redis.

        Returns:
            True если подключение работает
        """
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


def get_store() -> RedisRealtimeStore:
    """Возвращает глобальный экземпляр realtime-хранилища."""
    return RedisRealtimeStore()


async def init_store() -> None:
    """
    Инициализирует подключение к realtime-хранилищу.
    Использует настройки из конфигурации.
    """
    from src.config import settings

    store = get_store()
    await store.connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Realtime-хранилище подключено: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )


async def close_store() -> None:
    """Закрывает подключение к realtime-хранилищу."""
    store = get_store()
    await store.disconnect()
    await log_info("Realtime-хранилище отключено", type_msg=TypeMsg.INFO)


async def ensure_store() -> RedisRealtimeStore:
    """
    Возвращает подключённое хранилище.

    Повторно использует существующий клиент, подключается только при его отсутствии.
    """
    store = get_store()
    if not store.is_connected:
        await init_store()
    return store

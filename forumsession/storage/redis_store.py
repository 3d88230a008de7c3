from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from typing import Callable, List, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from forumsession.logging import get_logger
from forumsession.storage.errors import StorageUnavailable
from forumsession.storage.models import StorageChange

logger = get_logger(__name__)

ChangeListener = Callable[[StorageChange], None]


class RedisStorageArea:
    """Shared key/value store backed by Redis.

    Values are read and written synchronously through a blocking client so the
    store keeps the same contract as the in-memory origin. Change notifications
    are published on ``{namespace}:changes`` and consumed by an asyncio
    listener task; each area tags its messages with a source id and ignores
    its own.
    """

    DEFAULT_SOCKET_TIMEOUT = 5.0

    def __init__(
        self,
        redis_url: str,
        *,
        namespace: str = "forumsession",
        socket_timeout: float = DEFAULT_SOCKET_TIMEOUT,
        client: Optional[Redis] = None,
        async_client: Optional[aioredis.Redis] = None,
    ) -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self.source_id = uuid.uuid4().hex
        self.channel = f"{namespace}:changes"
        self._client = client or Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._async_client = async_client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
        )
        self._listeners: List[ChangeListener] = []
        self._pubsub = None
        self._listener_task: asyncio.Task | None = None

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(self._key(key))
        except RedisError as exc:
            raise StorageUnavailable(str(exc), detail={"operation": "get", "key": key}) from exc

    def set(self, key: str, value: str) -> None:
        try:
            old = self._client.set(self._key(key), value, get=True)
        except RedisError as exc:
            raise StorageUnavailable(str(exc), detail={"operation": "set", "key": key}) from exc
        if old != value:
            self._publish(key, old, value)

    def delete(self, key: str) -> None:
        try:
            old = self._client.getdel(self._key(key))
        except RedisError as exc:
            raise StorageUnavailable(
                str(exc), detail={"operation": "delete", "key": key}
            ) from exc
        if old is not None:
            self._publish(key, old, None)

    def _publish(self, key: str, old: Optional[str], new: Optional[str]) -> None:
        payload = json.dumps(
            {"source": self.source_id, "key": key, "old_value": old, "new_value": new}
        )
        try:
            self._client.publish(self.channel, payload)
        except RedisError as exc:
            # The value itself was written; only other pages miss the nudge.
            logger.warning("storage_change_publish_failed", key=key, error=str(exc))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> None:
        """Start listening for change notifications from other pages."""
        if self._listener_task is not None:
            return
        self._pubsub = self._async_client.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._listener_task = asyncio.create_task(self._listen())
        logger.info("storage_listener_started", channel=self.channel)

    async def _listen(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                self.handle_message(message.get("data"))
        except asyncio.CancelledError:
            raise
        except RedisError as exc:
            logger.error("storage_listener_failed", channel=self.channel, error=str(exc))

    def handle_message(self, raw: Optional[str]) -> None:
        """Decode one pub/sub payload and deliver it to local listeners."""
        try:
            payload = json.loads(raw or "")
        except (json.JSONDecodeError, TypeError):
            logger.warning("storage_change_malformed", channel=self.channel)
            return
        if not isinstance(payload, dict) or payload.get("source") == self.source_id:
            return
        key = payload.get("key")
        if not isinstance(key, str):
            return
        change = StorageChange(key, payload.get("old_value"), payload.get("new_value"))
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as exc:
                logger.error("storage_listener_failed", key=key, error=str(exc))

    async def close(self) -> None:
        """Stop the listener and close both Redis connections."""
        self._listeners.clear()
        if self._listener_task is not None:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        await self._async_client.aclose()
        self._client.close()

"""Redis-backed rendezvous channel.

Layout for a calls collection ``C`` and key prefix ``P``:

- ``P C/<id>``             hash, one JSON-encoded value per top-level field
- ``P C/<id>:changes``     pub/sub channel notified after every record write
- ``P C/<id>/<name>``      stream holding the append-only subcollection

Record writes are single ``MULTI`` transactions, so each is atomic. Write-once
fields use ``HSETNX``. Stream ids assigned by ``XADD`` double as entry
identities.
"""

import asyncio
import inspect
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from redis import asyncio as aioredis
from redis.asyncio import ConnectionPool
from redis.exceptions import RedisError

from src.negotiation.channel.base import (
    ChannelEntry,
    EntriesCallback,
    ErrorCallback,
    RecordCallback,
    RecordData,
    RendezvousChannel,
)
from src.negotiation.errors import ChannelError
from src.negotiation.subscription import Subscription

logger = logging.getLogger(__name__)

# Marks a record as existing even when it has no fields yet
CREATED_FIELD = "__created_at"


def encode_record(data: RecordData) -> dict[str, str]:
    """Encode top-level record fields for HSET."""
    return {key: json.dumps(value) for key, value in data.items()}


def decode_record(raw: dict[str, str]) -> RecordData:
    """Decode an HGETALL reply, dropping bookkeeping fields."""
    try:
        return {key: json.loads(value) for key, value in raw.items() if key != CREATED_FIELD}
    except json.JSONDecodeError as e:
        raise ChannelError(f"Corrupt record data: {e}") from e


class RedisChannel(RendezvousChannel):
    """Rendezvous channel on Redis hashes, pub/sub and streams."""

    def __init__(
        self,
        redis_url: str,
        collection: str,
        db: int = 0,
        key_prefix: str = "rendezvous:",
        connection_pool_size: int = 10,
        poll_interval_ms: int = 1000,
    ) -> None:
        """Initialize channel.

        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379")
            collection: Calls collection path records are stored under
            db: Redis database number (0-15)
            key_prefix: Prefix for every key written by this channel
            connection_pool_size: Redis connection pool size
            poll_interval_ms: Blocking timeout for watch loops
        """
        self.redis_url = redis_url
        self.collection = collection.strip("/")
        self.db = db
        self.key_prefix = key_prefix
        self.connection_pool_size = connection_pool_size
        self.poll_interval_ms = poll_interval_ms

        self._pool: Any = None
        self._redis: Any = None
        self._connected = False
        self._watch_tasks: set[asyncio.Task[None]] = set()

    async def connect(self) -> None:
        """Establish Redis connection pool.

        This method is idempotent - safe to call multiple times.

        Raises:
            ChannelError: If Redis connection fails
        """
        if self._connected:
            return

        try:
            self._pool = ConnectionPool.from_url(
                self.redis_url,
                db=self.db,
                max_connections=self.connection_pool_size,
                decode_responses=True,
            )
            self._redis = aioredis.Redis(connection_pool=self._pool)

            await self._redis.ping()
            self._connected = True
            logger.info(
                f"Connected to Redis at {self.redis_url} (db={self.db}, "
                f"collection={self.collection})"
            )
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise ChannelError(f"Redis connection failed: {e}") from e

    async def disconnect(self) -> None:
        """Cancel watches and close the connection pool.

        This method is idempotent - safe to call multiple times.
        """
        for task in list(self._watch_tasks):
            task.cancel()
        if self._watch_tasks:
            await asyncio.gather(*self._watch_tasks, return_exceptions=True)
        self._watch_tasks.clear()

        if not self._connected:
            return

        try:
            if self._redis:
                await self._redis.aclose()
            if self._pool:
                await self._pool.disconnect()
            self._connected = False
            logger.info("Disconnected from Redis")
        except (RedisError, OSError) as e:
            logger.warning(f"Error during Redis disconnect: {e}")

    async def close(self) -> None:
        await self.disconnect()

    async def health_check(self) -> bool:
        """Check if Redis connection is healthy.

        Returns:
            True if Redis is reachable and responsive, False otherwise
        """
        if not self._connected or not self._redis:
            return False

        try:
            await self._redis.ping()
            return True
        except (RedisError, OSError) as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

    def record_key(self, record_id: str) -> str:
        return f"{self.key_prefix}{self.collection}/{record_id}"

    def changes_channel(self, record_id: str) -> str:
        return f"{self.record_key(record_id)}:changes"

    def subcollection_key(self, record_id: str, name: str) -> str:
        return f"{self.record_key(record_id)}/{name}"

    async def create_record(self, data: RecordData) -> str:
        record_id = uuid.uuid4().hex
        await self._write(record_id, data, merge=False)
        logger.debug("Created record", extra={"record_id": record_id})
        return record_id

    async def get_record(self, record_id: str) -> RecordData | None:
        redis = self._require_connection()
        try:
            raw = await redis.hgetall(self.record_key(record_id))
        except RedisError as e:
            raise ChannelError(f"Failed to read record {record_id}: {e}") from e
        if not raw:
            return None
        return decode_record(raw)

    async def set_record(self, record_id: str, data: RecordData, merge: bool = False) -> None:
        await self._write(record_id, data, merge=merge)

    async def set_field_if_absent(self, record_id: str, field: str, value: Any) -> bool:
        redis = self._require_connection()
        key = self.record_key(record_id)
        try:
            async with redis.pipeline(transaction=True) as pipe:
                pipe.hsetnx(key, field, json.dumps(value))
                pipe.hsetnx(key, CREATED_FIELD, str(time.time()))
                written, _ = await pipe.execute()
            if written:
                await redis.publish(self.changes_channel(record_id), "1")
        except RedisError as e:
            raise ChannelError(f"Failed to write {field} of record {record_id}: {e}") from e
        return bool(written)

    async def append_to_subcollection(
        self, record_id: str, name: str, entry: dict[str, Any]
    ) -> str:
        redis = self._require_connection()
        try:
            entry_id: str = await redis.xadd(
                self.subcollection_key(record_id, name), {"data": json.dumps(entry)}
            )
        except RedisError as e:
            raise ChannelError(f"Failed to append to {name} of {record_id}: {e}") from e
        return entry_id

    def watch_record(
        self,
        record_id: str,
        callback: RecordCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        return self._spawn_watch(
            lambda sub: self._record_loop(record_id, callback, sub),
            on_error,
            f"record:{record_id}",
        )

    def watch_subcollection(
        self,
        record_id: str,
        name: str,
        callback: EntriesCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        return self._spawn_watch(
            lambda sub: self._subcollection_loop(record_id, name, callback, sub),
            on_error,
            f"subcollection:{record_id}/{name}",
        )

    async def _write(self, record_id: str, data: RecordData, merge: bool) -> None:
        redis = self._require_connection()
        key = self.record_key(record_id)
        fields = encode_record(data)
        try:
            async with redis.pipeline(transaction=True) as pipe:
                if not merge:
                    pipe.delete(key)
                    fields[CREATED_FIELD] = str(time.time())
                else:
                    pipe.hsetnx(key, CREATED_FIELD, str(time.time()))
                if fields:
                    pipe.hset(key, mapping=fields)
                pipe.publish(self.changes_channel(record_id), "1")
                await pipe.execute()
        except RedisError as e:
            raise ChannelError(f"Failed to write record {record_id}: {e}") from e

    def _spawn_watch(
        self,
        loop_factory: Callable[[Subscription], Awaitable[None]],
        on_error: ErrorCallback | None,
        name: str,
    ) -> Subscription:
        self._require_connection()

        def stop() -> None:
            if task is not asyncio.current_task():
                task.cancel()

        subscription = Subscription(stop)

        async def run() -> None:
            try:
                await loop_factory(subscription)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Watch failed", extra={"watch": name})
                if subscription.active and on_error is not None:
                    on_error(e if isinstance(e, ChannelError) else ChannelError(str(e)))

        task = asyncio.create_task(run(), name=f"rendezvous-watch:{name}")
        self._watch_tasks.add(task)
        task.add_done_callback(self._watch_tasks.discard)
        return subscription

    async def _record_loop(
        self, record_id: str, callback: RecordCallback, subscription: Subscription
    ) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self.changes_channel(record_id))
            # Snapshot after subscribing so no write can fall between the two
            await _invoke(callback, await self.get_record(record_id), subscription)
            while subscription.active:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self.poll_interval_ms / 1000,
                )
                if message is None:
                    continue
                await _invoke(callback, await self.get_record(record_id), subscription)
        finally:
            await pubsub.aclose()

    async def _subcollection_loop(
        self,
        record_id: str,
        name: str,
        callback: EntriesCallback,
        subscription: Subscription,
    ) -> None:
        key = self.subcollection_key(record_id, name)
        last_id = "0"
        first = True
        while subscription.active:
            reply = await self._redis.xread({key: last_id}, block=self.poll_interval_ms)
            batch: list[ChannelEntry] = []
            for _stream, messages in reply or []:
                for entry_id, fields in messages:
                    batch.append(ChannelEntry(entry_id=entry_id, data=json.loads(fields["data"])))
                    last_id = entry_id
            if batch or first:
                await _invoke(callback, batch, subscription)
            first = False

    def _require_connection(self) -> Any:
        if not self._connected or not self._redis:
            raise ChannelError("Redis not connected. Call connect() first.")
        return self._redis


async def _invoke(callback: Callable[[Any], Any], value: Any, subscription: Subscription) -> None:
    if not subscription.active:
        return
    result = callback(value)
    if inspect.isawaitable(result):
        await result

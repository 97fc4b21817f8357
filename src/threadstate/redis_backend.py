"""Redis backend for checkpoint storage."""

from __future__ import annotations

import asyncio
import re
import time
from datetime import timedelta
from typing import Any, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from .checkpoint import Checkpoint, CheckpointStore, HealthStatus, from_epoch
from .exceptions import StoreConnectionError, StoreError
from .ids import validate_checkpoint_id, validate_positive, validate_thread_id
from .serializer import deserialize_state, serialize_state
from .utils.config import StoreConfig
from .utils.logging import get_logger

logger = get_logger(__name__)

# Minimum lifetime of a thread's sequence counter once it is no longer
# persistent; it outlives the thread's index so sequences never restart under
# a put that is still in flight.
SEQUENCE_RETENTION_SECONDS = 7 * 24 * 3600

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisCheckpointStore(CheckpointStore):
    """Redis-based checkpoint storage.

    Each thread maps to:

    - ``cp:{thread}:<id>``: one serialized blob per checkpoint, with its own
      Redis expiry
    - ``index:{thread}``: sorted set of checkpoint ids scored by sequence
    - ``age:{thread}``: sorted set of checkpoint ids scored by the epoch ms
      age-based cleanup measures from
    - ``seq:{thread}``: counter the sequence numbers come from; it survives
      thread deletes so sequences only ever increase

    The thread id is wrapped in a hash tag so all of a thread's keys share a
    cluster slot. ``put`` writes the blob before the index, so an interrupted
    write leaves the checkpoint invisible until ``put`` is retried. Index
    entries whose blob is missing are skipped by reads and pruned lazily.
    """

    backend_name = "redis"

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        client: Optional[redis.Redis] = None,
        namespace: tuple[str, ...] | list[str] = (),
        clock: Callable[[], float] = time.time,
    ):
        """Initialize Redis store.

        Args:
            config: Connection settings (defaults read from the environment)
            client: Pre-built client; when given, the store never closes it
            namespace: Key segments inserted after the configured key prefix
            clock: Returns the current epoch time in seconds
        """
        self.config = config or StoreConfig()
        self.namespace = tuple(namespace)
        self._clock = clock
        self._client = client
        self._owns_client = client is None
        self.key_prefix = self.config.key_prefix + "".join(f"{ns}:" for ns in self.namespace)

    def _get_client(self) -> redis.Redis:
        """Get or create the Redis client and its connection pool."""
        if self._client is None:
            kwargs = self.config.redis_kwargs()
            if self.config.url:
                pool = redis.ConnectionPool.from_url(self.config.url, **kwargs)
            else:
                if self.config.tls:
                    kwargs["connection_class"] = redis.SSLConnection
                pool = redis.ConnectionPool(**kwargs)
            self._client = redis.Redis(connection_pool=pool)
            self._owns_client = True
            logger.debug("Created Redis connection pool (max_connections=%d)", self.config.pool_size)
        return self._client

    async def _reset_client(self) -> None:
        """Drop an owned client so the next call reconnects."""
        if self._client is None or not self._owns_client:
            return
        client, self._client = self._client, None
        try:
            await client.aclose()
        except RedisError as e:
            logger.debug("Error closing Redis client: %s", e)

    async def close(self) -> None:
        """Close the connection pool if this store created it."""
        await self._reset_client()

    def _blob_key(self, thread_id: str, checkpoint_id: str) -> str:
        return f"{self.key_prefix}cp:{{{thread_id}}}:{checkpoint_id}"

    def _index_key(self, thread_id: str) -> str:
        return f"{self.key_prefix}index:{{{thread_id}}}"

    def _age_key(self, thread_id: str) -> str:
        return f"{self.key_prefix}age:{{{thread_id}}}"

    def _seq_key(self, thread_id: str) -> str:
        return f"{self.key_prefix}seq:{{{thread_id}}}"

    def _index_keys(self, thread_id: str) -> list[str]:
        return [self._index_key(thread_id), self._age_key(thread_id)]

    def _now(self):
        return from_epoch(self._clock())

    @staticmethod
    def _wrap(operation: str, error: RedisError) -> StoreError:
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            return StoreConnectionError(operation, str(error))
        return StoreError(operation, str(error))

    @staticmethod
    def _decode(raw: Any) -> Checkpoint:
        return Checkpoint.from_record(deserialize_state(raw))

    async def put(
        self,
        thread_id: str,
        checkpoint_id: str,
        checkpoint: Checkpoint,
        ttl_seconds: Optional[int] = None,
    ) -> Checkpoint:
        """Save a checkpoint."""
        validate_thread_id(thread_id)
        validate_checkpoint_id(checkpoint_id)
        if ttl_seconds is not None:
            validate_positive(ttl_seconds, "ttl_seconds", integer=True)
        ttl = ttl_seconds or None

        client = self._get_client()
        try:
            sequence = await client.incr(self._seq_key(thread_id))
            now = self._now()
            stored = checkpoint.model_copy(update={
                "id": checkpoint_id,
                "thread_id": thread_id,
                "created_at": now,
                "sequence": sequence,
                "ttl_seconds": ttl,
                "expires_at": now + timedelta(seconds=ttl) if ttl else None,
                "refreshed_at": None,
            })
            payload = serialize_state(stored.to_record())

            # Blob first: a crash before the index update leaves it unreachable.
            await client.set(self._blob_key(thread_id, checkpoint_id), payload, ex=ttl)

            current_ttl = await client.ttl(self._index_key(thread_id))
            async with client.pipeline(transaction=True) as pipe:
                pipe.zadd(self._index_key(thread_id), {checkpoint_id: sequence})
                pipe.zadd(self._age_key(thread_id), {checkpoint_id: now.timestamp() * 1000})
                seq_key = self._seq_key(thread_id)
                if ttl is None:
                    for key in self._index_keys(thread_id) + [seq_key]:
                        pipe.persist(key)
                elif current_ttl != -1:
                    # Keep thread keys alive as long as their longest-lived entry.
                    for key in self._index_keys(thread_id):
                        pipe.expire(key, max(ttl, current_ttl))
                    pipe.expire(seq_key, max(ttl, current_ttl, SEQUENCE_RETENTION_SECONDS))
                await pipe.execute()
        except RedisError as e:
            raise self._wrap("put", e) from e

        logger.debug(
            "Saved checkpoint %s for thread %s (sequence=%d, ttl=%s)",
            checkpoint_id, thread_id, sequence, ttl,
        )
        return stored

    async def _scan_newest(
        self,
        thread_id: str,
        want: int,
        below: Optional[int] = None,
    ) -> list[Checkpoint]:
        """Collect up to ``want`` live checkpoints, newest first.

        ``below`` restricts the scan to sequences strictly lower than it.
        """
        client = self._get_client()
        index_key = self._index_key(thread_id)
        upper = "+inf" if below is None else f"({below}"
        now = self._now()
        live: list[Checkpoint] = []
        dangling: list[str] = []
        start = 0

        while len(live) < want:
            batch = [
                _text(i)
                for i in await client.zrevrangebyscore(index_key, upper, "-inf", start=start, num=want)
            ]
            if not batch:
                break
            blobs = await client.mget([self._blob_key(thread_id, i) for i in batch])
            for cp_id, raw in zip(batch, blobs):
                if raw is None:
                    dangling.append(cp_id)
                    continue
                cp = self._decode(raw)
                if not cp.is_expired(now):
                    live.append(cp)
                    if len(live) == want:
                        break
            start += len(batch)

        if dangling:
            await self._prune(thread_id, dangling)
        return live

    async def _prune(self, thread_id: str, checkpoint_ids: list[str]) -> None:
        """Drop index entries whose blob is missing.

        The blobs are watched and re-read first, so an entry re-written by a
        concurrent put is left alone.
        """
        blob_keys = [self._blob_key(thread_id, i) for i in checkpoint_ids]
        try:
            async with self._get_client().pipeline(transaction=True) as pipe:
                await pipe.watch(*blob_keys)
                blobs = await pipe.mget(blob_keys)
                missing = [cp_id for cp_id, raw in zip(checkpoint_ids, blobs) if raw is None]
                if not missing:
                    return
                pipe.multi()
                pipe.zrem(self._index_key(thread_id), *missing)
                pipe.zrem(self._age_key(thread_id), *missing)
                await pipe.execute()
        except WatchError:
            logger.debug("Skipped pruning thread %s: checkpoints changed concurrently", thread_id)
            return
        logger.debug("Pruned %d dangling index entries for thread %s", len(missing), thread_id)

    async def get(
        self,
        thread_id: str,
        checkpoint_id: Optional[str] = None,
    ) -> Optional[Checkpoint]:
        """Load a checkpoint, or the latest one when no id is given."""
        validate_thread_id(thread_id)
        if checkpoint_id is not None:
            validate_checkpoint_id(checkpoint_id)

        try:
            if checkpoint_id is None:
                newest = await self._scan_newest(thread_id, 1)
                return newest[0] if newest else None

            async with self._get_client().pipeline(transaction=False) as pipe:
                pipe.zscore(self._index_key(thread_id), checkpoint_id)
                pipe.get(self._blob_key(thread_id, checkpoint_id))
                score, raw = await pipe.execute()
        except RedisError as e:
            raise self._wrap("get", e) from e

        if score is None or raw is None:
            return None
        cp = self._decode(raw)
        return None if cp.is_expired(self._now()) else cp

    async def delete(self, thread_id: str) -> bool:
        """Delete all checkpoints for a thread."""
        validate_thread_id(thread_id)
        client = self._get_client()
        try:
            ids = [_text(i) for i in await client.zrange(self._index_key(thread_id), 0, -1)]
            live = 0
            if ids:
                now = self._now()
                blobs = await client.mget([self._blob_key(thread_id, i) for i in ids])
                live = sum(1 for raw in blobs if raw is not None and not self._decode(raw).is_expired(now))
            # A single DEL is atomic, so readers never see a half-deleted thread.
            # The sequence counter survives it so a put already past INCR
            # cannot end up ahead of later puts.
            keys = [self._blob_key(thread_id, i) for i in ids] + self._index_keys(thread_id)
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(*keys)
                pipe.expire(self._seq_key(thread_id), SEQUENCE_RETENTION_SECONDS)
                await pipe.execute()
        except RedisError as e:
            raise self._wrap("delete", e) from e

        if not live:
            return False
        logger.info("Deleted thread %s with %d checkpoints", thread_id, live)
        return True

    async def delete_checkpoint(self, thread_id: str, checkpoint_id: str) -> bool:
        """Delete one checkpoint: its blob and both index entries, atomically."""
        validate_thread_id(thread_id)
        validate_checkpoint_id(checkpoint_id)
        try:
            async with self._get_client().pipeline(transaction=True) as pipe:
                pipe.get(self._blob_key(thread_id, checkpoint_id))
                pipe.delete(self._blob_key(thread_id, checkpoint_id))
                pipe.zrem(self._index_key(thread_id), checkpoint_id)
                pipe.zrem(self._age_key(thread_id), checkpoint_id)
                raw, _, indexed, _ = await pipe.execute()
        except RedisError as e:
            raise self._wrap("delete_checkpoint", e) from e

        # A blob with no index entry was never visible to readers
        if raw is None or not indexed or self._decode(raw).is_expired(self._now()):
            return False
        logger.info("Deleted checkpoint %s for thread %s", checkpoint_id, thread_id)
        return True

    async def list_threads(self) -> list[str]:
        """List threads in this store's namespace that hold live checkpoints."""
        head = f"{self.key_prefix}index:{{"
        pattern = _GLOB_SPECIAL.sub(r"\\\1", head) + "*}"
        client = self._get_client()
        threads = []
        try:
            async for key in client.scan_iter(match=pattern, count=100):
                thread_id = _text(key)[len(head):-1]
                if await self._scan_newest(thread_id, 1):
                    threads.append(thread_id)
        except RedisError as e:
            raise self._wrap("list_threads", e) from e
        return sorted(threads)

    async def expire_older_than(self, thread_id: str, max_age_ms: float) -> int:
        """Remove checkpoints older than the cutoff."""
        validate_thread_id(thread_id)
        validate_positive(max_age_ms, "max_age_ms", allow_zero=True)
        client = self._get_client()
        cutoff_ms = self._now().timestamp() * 1000 - max_age_ms

        try:
            old = [
                _text(i)
                for i in await client.zrangebyscore(self._age_key(thread_id), "-inf", f"({cutoff_ms}")
            ]
            if not old:
                return 0
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(*[self._blob_key(thread_id, i) for i in old])
                pipe.zrem(self._index_key(thread_id), *old)
                pipe.zrem(self._age_key(thread_id), *old)
                await pipe.execute()
        except RedisError as e:
            raise self._wrap("expire_older_than", e) from e

        logger.info(
            "Cleaned up %d expired checkpoints for thread %s (max_age_ms=%s)",
            len(old), thread_id, max_age_ms,
        )
        return len(old)

    async def extend_ttl(self, thread_id: str, new_ttl_seconds: int) -> int:
        """Reset TTL on every live checkpoint in a thread."""
        validate_thread_id(thread_id)
        validate_positive(new_ttl_seconds, "new_ttl_seconds", integer=True)
        ttl = new_ttl_seconds
        client = self._get_client()
        now = self._now()

        try:
            ids = [_text(i) for i in await client.zrange(self._index_key(thread_id), 0, -1)]
            if not ids:
                return 0
            blobs = await client.mget([self._blob_key(thread_id, i) for i in ids])

            updated = 0
            async with client.pipeline(transaction=True) as pipe:
                for cp_id, raw in zip(ids, blobs):
                    if raw is None:
                        continue
                    cp = self._decode(raw)
                    if cp.is_expired(now):
                        continue
                    refreshed = cp.model_copy(update={
                        "ttl_seconds": ttl,
                        "expires_at": now + timedelta(seconds=ttl),
                        "refreshed_at": now,
                    })
                    # xx: never resurrect a blob deleted concurrently
                    pipe.set(
                        self._blob_key(thread_id, cp_id),
                        serialize_state(refreshed.to_record()),
                        ex=ttl,
                        xx=True,
                    )
                    pipe.zadd(self._age_key(thread_id), {cp_id: now.timestamp() * 1000})
                    updated += 1
                if updated:
                    for key in self._index_keys(thread_id):
                        pipe.expire(key, ttl)
                    pipe.expire(self._seq_key(thread_id), max(ttl, SEQUENCE_RETENTION_SECONDS))
                    await pipe.execute()
        except RedisError as e:
            raise self._wrap("extend_ttl", e) from e

        if updated:
            logger.info(
                "Extended TTL for %d checkpoints in thread %s to %ss",
                updated, thread_id, ttl,
            )
        return updated

    async def health_check(self) -> HealthStatus:
        """Ping Redis and report latency; a timeout counts as unhealthy."""
        timeout = self.config.health_timeout_seconds
        start = time.perf_counter()
        try:
            client = self._get_client()
            pong = await asyncio.wait_for(client.ping(), timeout=timeout)
            latency_ms = (time.perf_counter() - start) * 1000
        except (RedisError, OSError, ValueError, asyncio.TimeoutError) as e:
            latency_ms = (time.perf_counter() - start) * 1000
            await self._reset_client()
            return HealthStatus(
                healthy=False,
                latency_ms=latency_ms,
                error=str(e) or type(e).__name__,
                backend="redis",
            )

        version = None
        try:
            info = await asyncio.wait_for(client.info("server"), timeout=timeout)
            version = info.get("redis_version")
        except (RedisError, OSError, asyncio.TimeoutError):
            pass

        return HealthStatus(
            healthy=bool(pong),
            latency_ms=latency_ms,
            error=None if pong else f"Unexpected response: {pong!r}",
            backend="redis",
            version=str(version) if version is not None else None,
        )

    async def list(
        self,
        thread_id: str,
        limit: Optional[int] = None,
        before: Optional[str] = None,
    ) -> list[str]:
        """List live checkpoint ids, oldest first."""
        validate_thread_id(thread_id)
        cap = self.effective_limit(limit)
        below = None
        if before is not None:
            cursor = await self.get(thread_id, before)
            below = cursor.sequence if cursor is not None else None
        try:
            newest = await self._scan_newest(thread_id, cap, below)
        except RedisError as e:
            raise self._wrap("list", e) from e
        return [cp.id for cp in reversed(newest)]

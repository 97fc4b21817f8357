"""In-memory checkpoint storage."""

from __future__ import annotations

import threading
import time
import weakref
from datetime import timedelta
from typing import Callable, Optional

from .checkpoint import Checkpoint, CheckpointStore, HealthStatus, from_epoch
from .ids import validate_checkpoint_id, validate_positive, validate_thread_id
from .utils.logging import get_logger

logger = get_logger(__name__)


class MemoryCheckpointStore(CheckpointStore):
    """In-process checkpoint storage.

    Nothing survives a restart. Mutations on one thread are serialized by a
    per-thread lock; different threads never contend. TTL is modelled with
    an ``expires_at`` per entry that reads filter on, and
    ``expire_older_than`` does the physical removal.
    """

    backend_name = "memory"

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        max_checkpoints: Optional[int] = None,
        namespace: tuple[str, ...] | list[str] = (),
    ):
        """Initialize memory store.

        Args:
            clock: Returns the current epoch time in seconds
            max_checkpoints: Per-thread bound; oldest entries are evicted past it
            namespace: Segments prefixed to every thread id
        """
        if max_checkpoints is not None:
            validate_positive(max_checkpoints, "max_checkpoints", integer=True)
        self._clock = clock
        self.max_checkpoints = max_checkpoints
        self.namespace = tuple(namespace)
        # thread key -> {checkpoint id -> checkpoint}, kept in sequence order
        self._threads: dict[str, dict[str, Checkpoint]] = {}
        self._sequences: dict[str, int] = {}
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._registry_lock = threading.Lock()

    def _key(self, thread_id: str) -> str:
        validate_thread_id(thread_id)
        if self.namespace:
            return ":".join(self.namespace + (thread_id,))
        return thread_id

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def _live(self, key: str) -> list[Checkpoint]:
        now = from_epoch(self._clock())
        entries = self._threads.get(key, {})
        return [cp for cp in entries.values() if not cp.is_expired(now)]

    def _drop_if_empty(self, key: str) -> None:
        # The sequence counter is kept so a re-created thread continues from it
        if not self._threads.get(key):
            self._threads.pop(key, None)

    async def put(
        self,
        thread_id: str,
        checkpoint_id: str,
        checkpoint: Checkpoint,
        ttl_seconds: Optional[int] = None,
    ) -> Checkpoint:
        """Save a checkpoint."""
        key = self._key(thread_id)
        validate_checkpoint_id(checkpoint_id)
        if ttl_seconds is not None:
            validate_positive(ttl_seconds, "ttl_seconds", integer=True)

        with self._lock_for(key):
            now = from_epoch(self._clock())
            sequence = self._sequences.get(key, 0) + 1
            stored = checkpoint.model_copy(update={
                "id": checkpoint_id,
                "thread_id": thread_id,
                "created_at": now,
                "sequence": sequence,
                "ttl_seconds": ttl_seconds,
                "expires_at": now + timedelta(seconds=ttl_seconds) if ttl_seconds else None,
                "refreshed_at": None,
            })

            entries = self._threads.setdefault(key, {})
            # Re-insert so dict order follows sequence
            entries.pop(checkpoint_id, None)
            entries[checkpoint_id] = stored
            self._sequences[key] = sequence

            if self.max_checkpoints is not None:
                while len(entries) > self.max_checkpoints:
                    evicted = next(iter(entries))
                    del entries[evicted]
                    logger.debug("Evicted checkpoint %s from thread %s", evicted, thread_id)

        logger.debug(
            "Saved checkpoint %s for thread %s (sequence=%d)",
            checkpoint_id, thread_id, sequence,
        )
        return stored

    async def get(
        self,
        thread_id: str,
        checkpoint_id: Optional[str] = None,
    ) -> Optional[Checkpoint]:
        """Load a checkpoint, or the latest one when no id is given."""
        key = self._key(thread_id)
        if checkpoint_id is not None:
            validate_checkpoint_id(checkpoint_id)

        with self._lock_for(key):
            live = self._live(key)

        if checkpoint_id is None:
            return live[-1] if live else None
        for cp in live:
            if cp.id == checkpoint_id:
                return cp
        return None

    async def delete(self, thread_id: str) -> bool:
        """Delete all checkpoints for a thread."""
        key = self._key(thread_id)
        with self._lock_for(key):
            live = self._live(key)
            self._threads.pop(key, None)

        # Expired leftovers are removed too, but a thread with no live
        # checkpoints reports as absent.
        if not live:
            return False
        logger.info("Deleted thread %s with %d checkpoints", thread_id, len(live))
        return True

    async def delete_checkpoint(self, thread_id: str, checkpoint_id: str) -> bool:
        """Delete one checkpoint from a thread."""
        key = self._key(thread_id)
        validate_checkpoint_id(checkpoint_id)

        with self._lock_for(key):
            cp = self._threads.get(key, {}).pop(checkpoint_id, None)
            self._drop_if_empty(key)

        if cp is None or cp.is_expired(from_epoch(self._clock())):
            return False
        logger.info("Deleted checkpoint %s for thread %s", checkpoint_id, thread_id)
        return True

    async def list_threads(self) -> list[str]:
        """List threads that hold live checkpoints."""
        prefix = "".join(f"{ns}:" for ns in self.namespace)
        threads = []
        for key in list(self._threads):
            with self._lock_for(key):
                if self._live(key):
                    threads.append(key[len(prefix):])
        return sorted(threads)

    async def expire_older_than(self, thread_id: str, max_age_ms: float) -> int:
        """Remove checkpoints older than the cutoff, and any TTL-expired ones."""
        key = self._key(thread_id)
        validate_positive(max_age_ms, "max_age_ms", allow_zero=True)

        with self._lock_for(key):
            now = from_epoch(self._clock())
            cutoff = now - timedelta(milliseconds=max_age_ms)
            entries = self._threads.get(key)
            if not entries:
                return 0

            removed = 0
            for cp_id, cp in list(entries.items()):
                if cp.age_reference < cutoff:
                    del entries[cp_id]
                    removed += 1
                elif cp.is_expired(now):
                    del entries[cp_id]
            self._drop_if_empty(key)

        if removed:
            logger.info(
                "Cleaned up %d expired checkpoints for thread %s (max_age_ms=%s)",
                removed, thread_id, max_age_ms,
            )
        return removed

    async def extend_ttl(self, thread_id: str, new_ttl_seconds: int) -> int:
        """Reset TTL on every live checkpoint in a thread."""
        key = self._key(thread_id)
        validate_positive(new_ttl_seconds, "new_ttl_seconds", integer=True)

        with self._lock_for(key):
            now = from_epoch(self._clock())
            entries = self._threads.get(key, {})
            updated = 0
            for cp_id, cp in entries.items():
                if cp.is_expired(now):
                    continue
                entries[cp_id] = cp.model_copy(update={
                    "ttl_seconds": new_ttl_seconds,
                    "expires_at": now + timedelta(seconds=new_ttl_seconds),
                    "refreshed_at": now,
                })
                updated += 1

        if updated:
            logger.info(
                "Extended TTL for %d checkpoints in thread %s to %ss",
                updated, thread_id, new_ttl_seconds,
            )
        return updated

    async def health_check(self) -> HealthStatus:
        """The in-process store is always reachable."""
        start = time.perf_counter()
        with self._registry_lock:
            pass
        return HealthStatus(
            healthy=True,
            latency_ms=(time.perf_counter() - start) * 1000,
            backend="memory",
        )

    async def clear(self) -> int:
        """Clear all checkpoints.

        Returns:
            Number of checkpoints deleted
        """
        with self._registry_lock:
            count = sum(len(entries) for entries in self._threads.values())
            self._threads.clear()
            self._sequences.clear()
        return count

    async def list(
        self,
        thread_id: str,
        limit: Optional[int] = None,
        before: Optional[str] = None,
    ) -> list[str]:
        """List live checkpoint ids, oldest first."""
        key = self._key(thread_id)
        cap = self.effective_limit(limit)
        if before is not None:
            validate_checkpoint_id(before)

        with self._lock_for(key):
            live = self._live(key)

        if before is not None:
            ids = [cp.id for cp in live]
            if before in ids:
                live = live[:ids.index(before)]
        return [cp.id for cp in live[-cap:]]

"""High-level checkpoint management."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

from .checkpoint import Checkpoint, CheckpointStore, HealthStatus, ThreadMetadata
from .exceptions import CheckpointError, SerializationError, ValidationError
from .ids import validate_checkpoint_id, validate_thread_id
from .serializer import StateSerializer
from .utils.logging import get_logger, safe_log

logger = get_logger(__name__)

# Default page size for list_checkpoints(); the store enforces its own hard cap.
DEFAULT_LIST_LIMIT = 10

CheckpointDescriptor = Union[str, Mapping[str, Any]]


class CheckpointManager:
    """Manager for saving, loading, and maintaining checkpoints.

    Wraps exactly one CheckpointStore, chosen at construction, and adds
    serialization, metadata aggregation and default limits. Ids are always
    supplied by the caller.
    """

    def __init__(
        self,
        store: CheckpointStore,
        default_ttl_seconds: Optional[int] = None,
        fallback_reason: Optional[str] = None,
    ):
        """Initialize checkpoint manager.

        Args:
            store: Storage backend
            default_ttl_seconds: TTL applied when save_checkpoint gets none
            fallback_reason: Why the durable store was not used, if it was
                requested and failed its health check
        """
        self.store = store
        self.default_ttl_seconds = default_ttl_seconds or None
        self.fallback_reason = fallback_reason

    @property
    def degraded(self) -> bool:
        """True when running on the fallback store."""
        return self.fallback_reason is not None

    async def save_checkpoint(
        self,
        thread_id: str,
        descriptor: CheckpointDescriptor,
        state: Any,
        metadata: Optional[Mapping[str, Any]] = None,
        ttl_seconds: Optional[int] = None,
    ) -> Checkpoint:
        """Serialize state and save it as a checkpoint.

        Args:
            thread_id: Thread ID
            descriptor: Checkpoint id, or a mapping with an ``"id"`` key
            state: State to persist
            metadata: Optional metadata, kept in insertion order
            ttl_seconds: TTL override; defaults to ``default_ttl_seconds``

        Returns:
            The stored checkpoint

        Raises:
            ValidationError: If ids are malformed
            SerializationError: If state or metadata cannot be encoded
            StoreError: If the backend write fails
        """
        validate_thread_id(thread_id)
        checkpoint_id = self._descriptor_id(descriptor)
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds

        try:
            payload = StateSerializer.serialize(state)
            # Round-trip rejects unencodable metadata before any I/O and detaches it from the caller
            meta = StateSerializer.deserialize(StateSerializer.serialize(dict(metadata or {})))
        except SerializationError as e:
            safe_log(logger, logging.ERROR, "Failed to serialize checkpoint %s for thread %s: %s",
                     checkpoint_id, thread_id, e)
            raise

        checkpoint = Checkpoint(
            id=checkpoint_id,
            thread_id=thread_id,
            state=payload,
            metadata=meta,
        )
        stored = await self._call("save", thread_id, self.store.put(thread_id, checkpoint_id, checkpoint, ttl))

        logger.info("Saved checkpoint %s for thread %s", checkpoint_id, thread_id)
        return stored

    async def load_checkpoint(
        self,
        thread_id: str,
        checkpoint_id: Optional[str] = None,
    ) -> Optional[Checkpoint]:
        """Load a checkpoint, or the latest one when no id is given.

        Returns:
            Checkpoint or None if the thread has no such live checkpoint
        """
        checkpoint = await self._call("load", thread_id, self.store.get(thread_id, checkpoint_id))
        if checkpoint is None:
            logger.debug("No checkpoint %s found for thread %s", checkpoint_id or "(latest)", thread_id)
        return checkpoint

    async def load_state(
        self,
        thread_id: str,
        checkpoint_id: Optional[str] = None,
    ) -> Optional[Any]:
        """Load and decode the state of a checkpoint.

        Raises:
            SerializationError: If the stored state cannot be decoded
        """
        checkpoint = await self.load_checkpoint(thread_id, checkpoint_id)
        if checkpoint is None:
            return None
        try:
            return StateSerializer.deserialize(checkpoint.state)
        except SerializationError as e:
            safe_log(logger, logging.ERROR, "Failed to decode checkpoint %s for thread %s: %s",
                     checkpoint.id, thread_id, e)
            raise

    async def list_checkpoints(
        self,
        thread_id: str,
        limit: int = DEFAULT_LIST_LIMIT,
        before: Optional[str] = None,
    ) -> list[str]:
        """List checkpoint ids, oldest first; the last element is the latest.

        Pass the first id of a page as ``before`` to fetch the page preceding it.
        """
        return await self._call("list", thread_id, self.store.list(thread_id, limit, before))

    async def list_threads(self) -> list[str]:
        """List threads that currently hold live checkpoints."""
        return await self._call("list_threads", "*", self.store.list_threads())

    async def cleanup_expired(self, thread_id: str, max_age_ms: float) -> int:
        """Remove checkpoints older than ``max_age_ms``."""
        return await self._call("cleanup", thread_id, self.store.expire_older_than(thread_id, max_age_ms))

    async def extend_ttl(self, thread_id: str, ttl_seconds: int) -> int:
        """Reset the TTL of every live checkpoint in a thread."""
        return await self._call("extend_ttl", thread_id, self.store.extend_ttl(thread_id, ttl_seconds))

    async def delete_thread(self, thread_id: str) -> bool:
        """Delete a thread and all its checkpoints."""
        return await self._call("delete", thread_id, self.store.delete(thread_id))

    async def delete_checkpoint(self, thread_id: str, checkpoint_id: str) -> bool:
        """Delete a single checkpoint; the thread's other checkpoints are kept."""
        return await self._call(
            "delete_checkpoint", thread_id, self.store.delete_checkpoint(thread_id, checkpoint_id)
        )

    async def get_thread_metadata(self, thread_id: str) -> Optional[ThreadMetadata]:
        """Summarize a thread from its (capped) checkpoint list.

        Returns:
            ThreadMetadata or None if the thread has no live checkpoints
        """
        ids = await self._call("metadata", thread_id, self.store.list(thread_id))
        if not ids:
            return None

        first = await self._call("metadata", thread_id, self.store.get(thread_id, ids[0]))
        last = await self._call("metadata", thread_id, self.store.get(thread_id, ids[-1]))
        # Entries can expire between the list and the loads
        if first is None or last is None:
            return None

        return ThreadMetadata(
            thread_id=thread_id,
            checkpoint_count=len(ids),
            first_created_at=first.created_at,
            last_updated_at=last.created_at,
            last_checkpoint_id=last.id,
        )

    async def health(self) -> HealthStatus:
        """Report store health; a manager on the fallback store is unhealthy."""
        status = await self.store.health_check()
        if self.degraded:
            return status.model_copy(update={
                "healthy": False,
                "error": f"Running on {self.store.backend_name} fallback: {self.fallback_reason}",
            })
        return status

    async def close(self) -> None:
        """Release the store's resources."""
        await self.store.close()

    @staticmethod
    def _descriptor_id(descriptor: CheckpointDescriptor) -> str:
        if isinstance(descriptor, str):
            return validate_checkpoint_id(descriptor)
        if isinstance(descriptor, Mapping) and "id" in descriptor:
            return validate_checkpoint_id(descriptor["id"])
        raise ValidationError("descriptor", "expected a checkpoint id or a mapping with an 'id' key")

    async def _call(self, operation: str, thread_id: str, awaitable: Any) -> Any:
        """Await a store call, logging typed failures before re-raising."""
        try:
            return await awaitable
        except CheckpointError as e:
            safe_log(logger, logging.ERROR, "Checkpoint %s failed for thread %s: %s",
                     operation, thread_id, e)
            raise

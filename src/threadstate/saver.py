"""Checkpoint saver contract for workflow executors."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Optional

from .checkpoint import Checkpoint
from .ids import validate_thread_id
from .manager import CheckpointManager
from .utils.logging import get_logger

logger = get_logger(__name__)


class CheckpointSaver:
    """Narrow put/get/list interface an executor persists its steps through.

    Thread ids are scoped by ``namespace`` so several executors can share a
    manager without their threads colliding. A ``"ttl"`` int in the
    metadata overrides the manager's default TTL for that checkpoint.
    """

    def __init__(self, manager: CheckpointManager, namespace: Sequence[str] = ()):
        self.manager = manager
        self.namespace = tuple(namespace)

    def _full_thread_id(self, thread_id: str) -> str:
        validate_thread_id(thread_id)
        if self.namespace:
            return ":".join(self.namespace + (thread_id,))
        return thread_id

    async def put(
        self,
        thread_id: str,
        checkpoint_id: str,
        state: Any,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Save executor state under a caller-generated checkpoint id."""
        ttl = metadata.get("ttl") if metadata else None
        if isinstance(ttl, bool) or not isinstance(ttl, int):
            ttl = None

        logger.debug("Executor checkpoint %s for thread %s (ttl=%s)", checkpoint_id, thread_id, ttl)
        await self.manager.save_checkpoint(
            self._full_thread_id(thread_id),
            checkpoint_id,
            state,
            metadata=metadata,
            ttl_seconds=ttl,
        )

    async def get(self, thread_id: str, checkpoint_id: Optional[str] = None) -> Optional[Checkpoint]:
        """Load a checkpoint, or the latest one when no id is given."""
        return await self.manager.load_checkpoint(self._full_thread_id(thread_id), checkpoint_id)

    async def get_state(self, thread_id: str, checkpoint_id: Optional[str] = None) -> Optional[Any]:
        """Load and decode executor state."""
        return await self.manager.load_state(self._full_thread_id(thread_id), checkpoint_id)

    async def delete(self, thread_id: str, checkpoint_id: str) -> bool:
        """Delete one executor checkpoint."""
        logger.debug("Deleting executor checkpoint %s for thread %s", checkpoint_id, thread_id)
        return await self.manager.delete_checkpoint(self._full_thread_id(thread_id), checkpoint_id)

    async def list_threads(self) -> list[str]:
        """List this saver's threads, without the namespace."""
        prefix = "".join(f"{ns}:" for ns in self.namespace)
        threads = await self.manager.list_threads()
        return [t[len(prefix):] for t in threads if t.startswith(prefix)]

    async def list(
        self,
        thread_id: str,
        limit: Optional[int] = None,
        before: Optional[str] = None,
    ) -> list[str]:
        """List checkpoint ids, oldest first."""
        full_id = self._full_thread_id(thread_id)
        if limit is None:
            return await self.manager.list_checkpoints(full_id, before=before)
        return await self.manager.list_checkpoints(full_id, limit, before)

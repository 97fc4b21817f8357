"""Checkpoint data structures and the store contract."""

from __future__ import annotations

import base64
import binascii
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import SerializationError
from .ids import validate_positive

# Hard cap on ids returned by CheckpointStore.list()
MAX_LIST_LIMIT = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_epoch(seconds: float) -> datetime:
    """Convert an epoch timestamp (seconds) to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class Checkpoint(BaseModel):
    """A point-in-time snapshot of workflow state within a thread.

    ``state`` is opaque to the store. ``sequence`` and ``created_at`` are
    stamped by the store on ``put``; ``expires_at`` is derived from the
    TTL. ``refreshed_at`` is set when the TTL is extended and is the
    reference point for age-based cleanup.
    """
    id: str
    thread_id: str
    state: bytes = b""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    sequence: int = 0
    ttl_seconds: Optional[int] = None
    expires_at: Optional[datetime] = None
    refreshed_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        """Check whether the checkpoint's TTL has lapsed at ``now``."""
        return self.expires_at is not None and self.expires_at <= now

    @property
    def age_reference(self) -> datetime:
        """Timestamp age-based cleanup measures from."""
        return self.refreshed_at or self.created_at

    def to_record(self) -> dict[str, Any]:
        """Convert to a JSON-safe dict (state as base64)."""
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "state": base64.b64encode(self.state).decode("ascii"),
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "sequence": self.sequence,
            "ttl_seconds": self.ttl_seconds,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "refreshed_at": self.refreshed_at.isoformat() if self.refreshed_at else None,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Checkpoint":
        """Rebuild a checkpoint from a dict produced by ``to_record``.

        Raises:
            SerializationError: If the record is malformed
        """
        try:
            data = dict(record)
            data["state"] = base64.b64decode(data.get("state") or "", validate=True)
            return cls.model_validate(data)
        except (binascii.Error, TypeError, ValueError, PydanticValidationError) as e:
            raise SerializationError(f"malformed checkpoint record: {e}") from e


class ThreadMetadata(BaseModel):
    """Derived summary of a thread's live checkpoints."""
    thread_id: str
    checkpoint_count: int
    first_created_at: datetime
    last_updated_at: datetime
    last_checkpoint_id: str


class HealthStatus(BaseModel):
    """Result of a store liveness check."""
    healthy: bool
    latency_ms: float = 0.0
    error: Optional[str] = None
    backend: Literal["redis", "memory"] = "memory"
    version: Optional[str] = None


class CheckpointStore(ABC):
    """Abstract base class for checkpoint storage backends.

    Implementations order checkpoints per thread by a store-assigned
    sequence, hide expired entries from reads and serialize mutations on
    the same thread. Absent threads and checkpoints are reported as None
    or empty results, never as exceptions.
    """

    backend_name: ClassVar[Literal["redis", "memory"]]

    @abstractmethod
    async def put(
        self,
        thread_id: str,
        checkpoint_id: str,
        checkpoint: Checkpoint,
        ttl_seconds: Optional[int] = None,
    ) -> Checkpoint:
        """Store a checkpoint, overwriting any existing one with the same id.

        Args:
            thread_id: Thread ID
            checkpoint_id: Caller-generated checkpoint ID
            checkpoint: Checkpoint to store
            ttl_seconds: Optional time-to-live (None = no expiry)

        Returns:
            The stored checkpoint, with sequence and timestamps stamped
        """
        pass

    @abstractmethod
    async def get(
        self,
        thread_id: str,
        checkpoint_id: Optional[str] = None,
    ) -> Optional[Checkpoint]:
        """Load a checkpoint.

        Args:
            thread_id: Thread ID
            checkpoint_id: Checkpoint ID, or None for the latest

        Returns:
            Checkpoint or None if absent or expired
        """
        pass

    @abstractmethod
    async def list(
        self,
        thread_id: str,
        limit: Optional[int] = None,
        before: Optional[str] = None,
    ) -> list[str]:
        """List checkpoint ids for a thread, oldest first.

        At most ``min(limit, MAX_LIST_LIMIT)`` ids are returned; when the
        thread holds more, the newest ones are kept. With ``before``, only
        checkpoints older than that one are listed, which pages backwards
        from the latest. A ``before`` id that is not a live checkpoint of
        the thread is ignored.
        """
        pass

    @abstractmethod
    async def delete(self, thread_id: str) -> bool:
        """Delete a thread and all its checkpoints.

        Sequence numbers keep increasing if the thread is written again.

        Returns:
            True if anything was removed, False for an absent thread
        """
        pass

    @abstractmethod
    async def delete_checkpoint(self, thread_id: str, checkpoint_id: str) -> bool:
        """Delete a single checkpoint.

        Returns:
            True if a live checkpoint was removed
        """
        pass

    @abstractmethod
    async def list_threads(self) -> list[str]:
        """List ids of threads in this store's namespace with live checkpoints."""
        pass

    @abstractmethod
    async def expire_older_than(self, thread_id: str, max_age_ms: float) -> int:
        """Remove checkpoints older than ``now - max_age_ms``.

        Returns:
            Number of checkpoints removed
        """
        pass

    @abstractmethod
    async def extend_ttl(self, thread_id: str, new_ttl_seconds: int) -> int:
        """Reset the TTL of every live checkpoint in a thread.

        Returns:
            Number of checkpoints updated
        """
        pass

    @abstractmethod
    async def health_check(self) -> HealthStatus:
        """Check the backend and report liveness and latency."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None

    @staticmethod
    def effective_limit(limit: Optional[int]) -> int:
        """Validate a caller-supplied list limit and apply the hard cap."""
        if limit is None:
            return MAX_LIST_LIMIT
        validate_positive(limit, "limit", integer=True)
        return min(limit, MAX_LIST_LIMIT)

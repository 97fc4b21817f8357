"""threadstate - checkpoint persistence for resumable workflows.

This package provides:
- Checkpoint: Point-in-time state snapshot
- CheckpointStore: Store contract, with Redis and in-memory backends
- CheckpointManager: High-level checkpoint operations
- select_store / create_checkpoint_manager: One-time backend selection
- CheckpointSaver: put/get/list contract for workflow executors
"""

from .checkpoint import (
    MAX_LIST_LIMIT,
    Checkpoint,
    CheckpointStore,
    HealthStatus,
    ThreadMetadata,
)
from .exceptions import (
    CheckpointError,
    ConfigurationError,
    SerializationError,
    StoreConnectionError,
    StoreError,
    ValidationError,
)
from .ids import generate_checkpoint_id, generate_thread_id
from .manager import DEFAULT_LIST_LIMIT, CheckpointManager
from .memory_backend import MemoryCheckpointStore
from .redis_backend import RedisCheckpointStore
from .saver import CheckpointSaver
from .selector import create_checkpoint_manager, select_store
from .serializer import StateSerializer, deserialize_state, serialize_state
from .utils.config import StoreConfig, load_config

__version__ = "0.1.0"

__all__ = [
    # Records
    "Checkpoint",
    "ThreadMetadata",
    "HealthStatus",
    "MAX_LIST_LIMIT",
    "DEFAULT_LIST_LIMIT",
    # Stores
    "CheckpointStore",
    "MemoryCheckpointStore",
    "RedisCheckpointStore",
    # Management
    "CheckpointManager",
    "CheckpointSaver",
    "select_store",
    "create_checkpoint_manager",
    # Ids
    "generate_checkpoint_id",
    "generate_thread_id",
    # Serializer
    "StateSerializer",
    "serialize_state",
    "deserialize_state",
    # Config
    "StoreConfig",
    "load_config",
    # Errors
    "CheckpointError",
    "StoreError",
    "StoreConnectionError",
    "SerializationError",
    "ValidationError",
    "ConfigurationError",
]

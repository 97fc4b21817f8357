"""Construction-time store selection.

The backend is chosen once, when the manager is built. Switching stores
mid-session would silently lose the history written to the other one, so
a failed health check at startup pins the process to the in-memory store.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Callable, Optional

import redis.asyncio as redis

from .checkpoint import CheckpointStore
from .manager import CheckpointManager
from .memory_backend import MemoryCheckpointStore
from .redis_backend import RedisCheckpointStore
from .utils.config import StoreConfig, load_config
from .utils.logging import get_logger

logger = get_logger(__name__)


async def _select(
    prefer_durable: bool,
    namespace: Sequence[str],
    config: StoreConfig,
    client: Optional[redis.Redis],
    clock: Callable[[], float],
) -> tuple[CheckpointStore, Optional[str]]:
    """Pick a store; returns it with the fallback reason, if any."""
    if not prefer_durable:
        logger.info("Using memory checkpoint store")
        return MemoryCheckpointStore(clock=clock, namespace=namespace), None

    durable = RedisCheckpointStore(config=config, client=client, namespace=namespace, clock=clock)
    status = await durable.health_check()
    if status.healthy:
        logger.info(
            "Using Redis checkpoint store (latency: %.1fms, version: %s)",
            status.latency_ms, status.version or "unknown",
        )
        return durable, None

    await durable.close()
    reason = status.error or "health check failed"
    logger.warning(
        "Redis checkpoint store unavailable (%s); falling back to the in-memory store. "
        "Checkpoints will NOT survive a restart.",
        reason,
    )
    return MemoryCheckpointStore(clock=clock, namespace=namespace), reason


async def select_store(
    prefer_durable: bool,
    namespace: Sequence[str] = (),
    config: Optional[StoreConfig] = None,
    client: Optional[redis.Redis] = None,
    clock: Callable[[], float] = time.time,
) -> CheckpointStore:
    """Choose the checkpoint store for this process.

    With ``prefer_durable`` the Redis store is built and health-checked once; if
    the check fails a single warning is logged and the in-memory store is
    returned instead.

    Args:
        prefer_durable: Request the Redis store
        namespace: Key/thread namespace segments
        config: Connection settings (defaults read from the environment)
        client: Pre-built Redis client to use instead of a new pool
        clock: Epoch-seconds clock passed to the store

    Returns:
        The selected store
    """
    store, _ = await _select(prefer_durable, namespace, config or StoreConfig(), client, clock)
    return store


async def create_checkpoint_manager(
    config: Optional[StoreConfig] = None,
    prefer_durable: Optional[bool] = None,
    namespace: Sequence[str] = (),
    client: Optional[redis.Redis] = None,
    clock: Callable[[], float] = time.time,
) -> CheckpointManager:
    """Build the process's checkpoint manager.

    Call once at startup and pass the manager to request handlers.

    Args:
        config: Store settings; loaded from the environment when omitted
        prefer_durable: Overrides ``config.use_redis``
        namespace: Key/thread namespace segments
        client: Pre-built Redis client
        clock: Epoch-seconds clock passed to the store

    Returns:
        CheckpointManager bound to the selected store
    """
    config = config or load_config()
    if prefer_durable is None:
        prefer_durable = config.use_redis

    store, reason = await _select(prefer_durable, namespace, config, client, clock)
    return CheckpointManager(
        store,
        default_ttl_seconds=config.default_ttl_seconds,
        fallback_reason=reason,
    )

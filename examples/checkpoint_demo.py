"""
Checkpoint example demonstrating save, load, list, TTL and cleanup.

Runs against Redis when USE_REDIS=true and Redis answers; otherwise the
in-memory store is used and a warning is logged.
"""

import asyncio

from threadstate import CheckpointSaver, create_checkpoint_manager, generate_checkpoint_id


async def main():
    manager = await create_checkpoint_manager(namespace=["demo"])
    health = await manager.health()
    print(f"Store: {manager.store.backend_name} (healthy={health.healthy}, latency={health.latency_ms:.1f}ms)")

    thread_id = "user-session-123"

    # Save a few steps of a conversation
    await manager.save_checkpoint(
        thread_id,
        {"id": "cp-1"},
        {"messages": ["Hello"], "context": "initial"},
        metadata={"source": "user"},
    )
    await manager.save_checkpoint(
        thread_id,
        {"id": "cp-2"},
        {"messages": ["Hello", "How are you?"], "context": "follow-up"},
        metadata={"source": "user"},
        ttl_seconds=3600,
    )

    print("Latest state:", await manager.load_state(thread_id))
    print("cp-1 state:", await manager.load_state(thread_id, "cp-1"))
    print("Checkpoints:", await manager.list_checkpoints(thread_id))
    print("Metadata:", await manager.get_thread_metadata(thread_id))

    # Executor-facing contract, scoped to its own namespace
    saver = CheckpointSaver(manager, namespace=["workflows"])
    step_id = generate_checkpoint_id()
    await saver.put("order-42", step_id, {"node": "lookup_order"}, {"step": 1, "ttl": 600})
    print("Executor checkpoints:", await saver.list("order-42"))

    # Maintenance
    print("Extended:", await manager.extend_ttl(thread_id, 7200))
    print("Cleaned up:", await manager.cleanup_expired(thread_id, 7 * 24 * 3600 * 1000))
    print("Deleted:", await manager.delete_thread(thread_id))

    await manager.close()


if __name__ == "__main__":
    asyncio.run(main())

# worker_main.py
"""
DB queue worker for deferred command processing.

Used when the server runs with DEFERRED_MODE=queue. The server's phase 1
writes one QueueMessage row per acknowledged command:

    receiver_id = QUEUE_RECEIVER_ID     (which worker should run it)
    type        = "deferred_processing"
    payload     = {"type": ..., "interaction": <raw interaction>, "provider": <name>}

This process polls ONLY rows where receiver_id == QUEUE_RECEIVER_ID, claims
them (rows are deleted in the claiming transaction) and runs phase 2 for
each, with at most CONCURRENT_INSTANCES jobs in flight. To split load across
several workers give each one its own QUEUE_RECEIVER_ID.
"""

import asyncio
import logging

from dewey.app_context import AppContext
from dewey.config import Settings, configure_logging
from dewey.dispatch import QueueGuard, build_db_session_factory

configure_logging()
logger = logging.getLogger("dewey_worker")


async def run_worker(settings: Settings) -> None:
    # the worker only consumes; its own dispatcher is never used
    context = AppContext.from_settings(settings, dispatcher_mode="inprocess")
    guard = QueueGuard(
        build_db_session_factory(settings.database_url),
        context.orchestrator.run_deferred,
        receiver_id=settings.queue_receiver_id,
        max_concurrent=settings.concurrent_instances,
    )
    try:
        await guard.run()
    finally:
        await context.aclose()


def main() -> None:
    settings = Settings.from_env()
    if not settings.queue_receiver_id:
        raise RuntimeError("QUEUE_RECEIVER_ID env var is required for DB queue mode")
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()

# dewey/thread_router.py

import logging
from typing import Awaitable, Callable, List, Optional

from dewey.discord_transport import THREAD_NAME_LIMIT, DiscordTransport, TransportResult
from dewey.entities import DeliveryTarget

logger = logging.getLogger("dewey_bot")

FALLBACK_NOTICE = "_(Couldn't create a thread here, so I'm posting in the channel instead.)_"


def batch_thread_name(count: int) -> str:
    return f"📚 Book Synopses ({count} books)"[:THREAD_NAME_LIMIT]


def poll_thread_name(count: int) -> str:
    return f"📖 Book Synopses ({count} options)"[:THREAD_NAME_LIMIT]


class ThreadRouter:
    """
    Picks the delivery target for an invocation. Attempts are tried in order;
    the channel itself is always the last one, so routing never fails.
    """

    def __init__(self, transport: DiscordTransport):
        self.transport = transport

    async def route(
        self,
        channel_id: Optional[str],
        name: str,
        *,
        message_id: Optional[str] = None,
        use_thread: bool = True,
    ) -> DeliveryTarget:
        if not use_thread or not channel_id:
            return DeliveryTarget(channel_id=channel_id)

        attempts: List[Callable[[], Awaitable[TransportResult]]] = []
        if message_id:
            attempts.append(lambda: self.transport.create_thread_from_message(channel_id, message_id, name))
        else:
            attempts.append(lambda: self.transport.create_thread(channel_id, name))

        for attempt in attempts:
            try:
                result = await attempt()
            except Exception:
                logger.exception("Thread creation raised")
                continue
            if result.ok and result.id:
                return DeliveryTarget(channel_id=channel_id, thread_id=result.id)

        logger.info(f"Thread creation failed in channel {channel_id}, falling back to channel")
        return DeliveryTarget(channel_id=channel_id, fell_back=True)

# dewey/chunked_delivery.py

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence

from dewey.entities import GenerationResult

logger = logging.getLogger("dewey_bot")

MAX_CHUNK_LENGTH = 1900  # Discord hard limit is 2000

Poster = Callable[[str], Awaitable[bool]]
Sleeper = Callable[[float], Awaitable[None]]


def split_content(text: str, max_len: int = MAX_CHUNK_LENGTH) -> List[str]:
    """
    Split text into messages of at most max_len characters.

    Split point preference: paragraph break, line break, space, hard cut.
    A candidate before max_len / 2 is rejected so a long unbroken line never
    produces a tiny first chunk. Whitespace at each split point is trimmed;
    text that is nothing but whitespace still yields one (cut) chunk.
    """
    if max_len < 1:
        raise ValueError(f"max_len must be at least 1, got {max_len}")
    if len(text) <= max_len:
        return [text]

    chunks: List[str] = []
    remaining = text
    half = max_len / 2

    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break

        split_at = -1
        for separator in ("\n\n", "\n", " "):
            # str.rfind(sub, 0, end) only matches fully inside [0, end)
            split_at = remaining.rfind(separator, 0, max_len + len(separator))
            if split_at != -1 and split_at >= half:
                break
            split_at = -1
        if split_at == -1:
            split_at = max_len

        chunk = remaining[:split_at].strip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining[split_at:].strip()

    return chunks or [text[:max_len]]


class ChunkedDelivery:
    """
    Posts artifacts as ordered, length-bounded messages with pacing between
    posts. A failed post drops the rest of that artifact only.
    """

    def __init__(
        self,
        chunk_delay: float = 0.25,
        artifact_delay: float = 0.5,
        max_len: int = MAX_CHUNK_LENGTH,
        sleep: Sleeper = asyncio.sleep,
    ):
        if max_len < 1:
            raise ValueError(f"max_len must be at least 1, got {max_len}")
        self.chunk_delay = chunk_delay
        self.artifact_delay = artifact_delay
        self.max_len = max_len
        self._sleep = sleep

    async def deliver(self, text: str, post: Poster) -> bool:
        """Returns True when every chunk was posted."""
        chunks = split_content(text, self.max_len)
        logger.debug(f"Splitting into {len(chunks)} message(s), {len(text)} chars")

        for i, chunk in enumerate(chunks):
            ok = await post(chunk)
            if not ok:
                logger.warning(f"Post failed at chunk {i + 1}/{len(chunks)}; dropping the rest of this artifact")
                return False
            if i < len(chunks) - 1:
                await self._sleep(self.chunk_delay)
        return True

    async def deliver_batch(self, results: Sequence[GenerationResult], post: Poster) -> int:
        """
        Delivers results strictly in order. Returns how many artifacts were
        fully delivered. An error inside one artifact never stops the next.
        """
        delivered = 0
        for i, result in enumerate(results):
            logger.info(f"Sending artifact {i + 1}/{len(results)}: {result.work_item}")
            try:
                if await self.deliver(result.content, post):
                    delivered += 1
            except Exception:
                logger.exception(f"Delivery of '{result.work_item}' failed")
            if i < len(results) - 1:
                await self._sleep(self.artifact_delay)
        logger.info(f"Delivered {delivered}/{len(results)} artifacts")
        return delivered

# dewey/title_resolver.py

import logging
import re
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger("dewey_bot")

MAX_TITLE_LENGTH = 100

# A simple split is a false positive when an item reads like conversation
# rather than a title. Known to misfire on real titles containing "or"
# ("Bridge to Terabithia or..."); the LLM path then takes over.
_ALTERNATIVE_RE = re.compile(r"\bor\b", re.IGNORECASE)
_FILLER_RE = re.compile(r"\b(we|you|should|talked|about|add|any|others|thinking)\b", re.IGNORECASE)
_TRAILING_ELLIPSIS_RE = re.compile(r"[….]$")

Extractor = Callable[[str], Awaitable[List[str]]]


def simple_split(raw_text: str) -> List[str]:
    text = raw_text or ""
    if "," in text:
        parts = text.split(",")
    elif "\n" in text:
        parts = text.split("\n")
    else:
        parts = [text]
    return [p.strip() for p in parts if p.strip()]


def looks_like_titles(titles: List[str]) -> bool:
    if not titles:
        return False
    for title in titles:
        if len(title) > MAX_TITLE_LENGTH:
            return False
        if _ALTERNATIVE_RE.search(title):
            return False
        if _FILLER_RE.search(title):
            return False
        if _TRAILING_ELLIPSIS_RE.search(title):
            return False
    return True


class TitleResolver:
    """
    Turns free-form user text into an ordered list of book titles.

    Attempts run in order and the first acceptable list wins: the cheap
    comma/newline split, then LLM extraction through `extractor`.
    """

    def __init__(self, extractor: Optional[Extractor] = None):
        self.extractor = extractor

    async def resolve(self, raw_text: str) -> List[str]:
        attempts = (self._from_simple_split, self._from_extraction)
        for attempt in attempts:
            titles = await attempt(raw_text)
            if titles:
                return titles
        return []

    async def _from_simple_split(self, raw_text: str) -> List[str]:
        titles = simple_split(raw_text)
        if looks_like_titles(titles):
            logger.info(f"Using simple parse: {titles}")
            return titles
        logger.info("Simple parse rejected, using LLM extraction")
        return []

    async def _from_extraction(self, raw_text: str) -> List[str]:
        if self.extractor is None or not (raw_text or "").strip():
            return []
        titles = await self.extractor(raw_text)
        return [t.strip() for t in titles or [] if isinstance(t, str) and t.strip()]

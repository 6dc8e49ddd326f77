# dewey/book_search.py

import logging
from typing import Optional

import httpx

logger = logging.getLogger("dewey_bot")

DDG_URL = "https://api.duckduckgo.com/"


class BookSearchService:
    """
    Optional context enricher: DuckDuckGo instant answers for a book title.
    Never raises; an empty string means "no context", and generation goes on
    without it.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._client = client or httpx.AsyncClient(timeout=timeout, headers={"User-Agent": "Dewey-BookBot/1.0"})

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search_book(self, title: str) -> str:
        params = {"q": f"{title} book synopsis", "format": "json", "no_html": "1"}
        try:
            response = await self._client.get(DDG_URL, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Search error for '{title}': {e}")
            return ""

        info = ""
        abstract = data.get("AbstractText")
        if abstract:
            info += f"{abstract}\n\n"

        topics = [t.get("Text") for t in data.get("RelatedTopics") or [] if isinstance(t, dict) and t.get("Text")]
        if topics:
            info += "Additional information:\n" + "\n".join(topics[:3]) + "\n"

        return info.strip()

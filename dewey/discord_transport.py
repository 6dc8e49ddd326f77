# dewey/discord_transport.py

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from dewey.entities import EPHEMERAL_FLAG, CommandInvocation

logger = logging.getLogger("dewey_bot")

THREAD_NAME_LIMIT = 100
POLL_QUESTION_LIMIT = 300
POLL_ANSWER_LIMIT = 55
THREAD_AUTO_ARCHIVE_MINUTES = 1440
PUBLIC_THREAD = 11


class TransportResult(BaseModel):
    ok: bool
    status: Optional[int] = None
    id: Optional[str] = None
    error: Optional[str] = None


class DiscordTransport:
    """
    Outbound Discord REST calls. Failures come back as TransportResult(ok=False)
    and are logged here; nothing in this class raises for HTTP errors.
    """

    def __init__(
        self,
        bot_token: Optional[str],
        *,
        api_base: str = "https://discord.com/api/v10",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _bot_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "Authorization": f"Bot {self.bot_token}"}

    async def _post(self, url: str, body: Dict[str, Any], *, bot_auth: bool, what: str) -> TransportResult:
        if bot_auth and not self.bot_token:
            logger.error(f"DISCORD_BOT_SECRET_TOKEN not set, cannot {what}")
            return TransportResult(ok=False, error="Bot token not configured")

        headers = self._bot_headers() if bot_auth else {"Content-Type": "application/json"}
        try:
            response = await self._client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Error trying to {what}: {e}")
            return TransportResult(ok=False, error=str(e))

        if response.status_code >= 400:
            logger.error(f"Failed to {what}: {response.status_code} {response.text[:500]}")
            return TransportResult(ok=False, status=response.status_code, error=response.text[:500])

        created_id = None
        if response.content:
            try:
                created_id = response.json().get("id")
            except ValueError:
                created_id = None
        return TransportResult(ok=True, status=response.status_code, id=created_id)

    # -----------------------
    # Messages
    # -----------------------

    async def post_followup(self, invocation: CommandInvocation, content: str, ephemeral: bool = False) -> TransportResult:
        """Follow-up on the interaction webhook; lands in the invoking channel."""
        url = f"{self.api_base}/webhooks/{invocation.application_id}/{invocation.token}"
        body: Dict[str, Any] = {"content": content}
        if ephemeral:
            body["flags"] = EPHEMERAL_FLAG
        return await self._post(url, body, bot_auth=False, what="send follow-up")

    async def post_channel_message(self, channel_id: str, content: str) -> TransportResult:
        url = f"{self.api_base}/channels/{channel_id}/messages"
        return await self._post(url, {"content": content}, bot_auth=True, what=f"send to channel {channel_id}")

    async def create_poll(
        self,
        channel_id: str,
        question: str,
        answers: List[str],
        *,
        duration_hours: int = 24,
        allow_multiselect: bool = False,
    ) -> TransportResult:
        url = f"{self.api_base}/channels/{channel_id}/messages"
        body = {
            "poll": {
                "question": {"text": question[:POLL_QUESTION_LIMIT]},
                "answers": [{"poll_media": {"text": a[:POLL_ANSWER_LIMIT]}} for a in answers],
                "duration": duration_hours,
                "allow_multiselect": allow_multiselect,
            }
        }
        result = await self._post(url, body, bot_auth=True, what="create poll")
        if result.ok:
            logger.info(f"Created poll message: {result.id}")
        return result

    # -----------------------
    # Threads
    # -----------------------

    async def create_thread_from_message(self, channel_id: str, message_id: str, name: str) -> TransportResult:
        url = f"{self.api_base}/channels/{channel_id}/messages/{message_id}/threads"
        body = {"name": name[:THREAD_NAME_LIMIT], "auto_archive_duration": THREAD_AUTO_ARCHIVE_MINUTES}
        result = await self._post(url, body, bot_auth=True, what="create thread from message")
        if result.ok:
            logger.info(f"Created thread: {result.id} {name[:THREAD_NAME_LIMIT]}")
        return result

    async def create_thread(self, channel_id: str, name: str) -> TransportResult:
        url = f"{self.api_base}/channels/{channel_id}/threads"
        body = {
            "name": name[:THREAD_NAME_LIMIT],
            "type": PUBLIC_THREAD,
            "auto_archive_duration": THREAD_AUTO_ARCHIVE_MINUTES,
        }
        result = await self._post(url, body, bot_auth=True, what="create standalone thread")
        if result.ok:
            logger.info(f"Created standalone thread: {result.id} {name[:THREAD_NAME_LIMIT]}")
        return result

    # -----------------------
    # Command registration
    # -----------------------

    async def put_commands(self, application_id: str, commands: List[Dict[str, Any]], guild_id: Optional[str] = None) -> TransportResult:
        if guild_id:
            url = f"{self.api_base}/applications/{application_id}/guilds/{guild_id}/commands"
        else:
            url = f"{self.api_base}/applications/{application_id}/commands"
        if not self.bot_token:
            return TransportResult(ok=False, error="Bot token not configured")
        try:
            response = await self._client.put(url, json=commands, headers=self._bot_headers())
        except httpx.HTTPError as e:
            logger.error(f"Error registering commands: {e}")
            return TransportResult(ok=False, error=str(e))
        if response.status_code >= 400:
            logger.error(f"Error registering commands: {response.status_code} {response.text[:500]}")
            return TransportResult(ok=False, status=response.status_code, error=response.text[:500])
        return TransportResult(ok=True, status=response.status_code)

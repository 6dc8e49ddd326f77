import json

import httpx
import pytest

from dewey.book_search import BookSearchService
from dewey.commands import build_commands
from dewey.discord_transport import DiscordTransport
from dewey.interactions import parse_invocation
from tests.conftest import make_interaction


def recording_client(seen, status=200, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, json=body if body is not None else {"id": "123"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def invocation():
    return parse_invocation(make_interaction("synopsis", []))


async def test_channel_message_uses_bot_auth():
    seen = []
    transport = DiscordTransport("bot-token", client=recording_client(seen))

    result = await transport.post_channel_message("chan-1", "hello")

    assert result.ok and result.id == "123"
    assert str(seen[0].url) == "https://discord.com/api/v10/channels/chan-1/messages"
    assert seen[0].headers["Authorization"] == "Bot bot-token"
    assert json.loads(seen[0].content) == {"content": "hello"}


async def test_followup_goes_to_the_interaction_webhook(invocation):
    seen = []
    transport = DiscordTransport(None, client=recording_client(seen))

    result = await transport.post_followup(invocation, "done", ephemeral=True)

    assert result.ok
    assert str(seen[0].url) == "https://discord.com/api/v10/webhooks/app-1/tok-1"
    assert "Authorization" not in seen[0].headers
    assert json.loads(seen[0].content) == {"content": "done", "flags": 64}


async def test_http_errors_are_values():
    seen = []
    transport = DiscordTransport("bot-token", client=recording_client(seen, status=403, body={"message": "Missing Access"}))

    result = await transport.create_thread("chan-1", "Synopses")

    assert result.ok is False
    assert result.status == 403
    assert "Missing Access" in result.error


async def test_network_errors_are_values():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    transport = DiscordTransport("bot-token", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    result = await transport.post_channel_message("chan-1", "hello")

    assert result.ok is False
    assert "connection refused" in result.error


async def test_missing_bot_token_fails_fast():
    seen = []
    transport = DiscordTransport(None, client=recording_client(seen))

    result = await transport.create_thread_from_message("chan-1", "msg-1", "Synopses")

    assert result.ok is False
    assert result.error == "Bot token not configured"
    assert seen == []


async def test_poll_and_thread_bodies_are_truncated():
    seen = []
    transport = DiscordTransport("bot-token", client=recording_client(seen))

    await transport.create_poll("chan-1", "Q" * 400, ["A" * 80, "Dune"], duration_hours=48, allow_multiselect=True)
    await transport.create_thread("chan-1", "N" * 150)

    poll = json.loads(seen[0].content)["poll"]
    assert poll["question"]["text"] == "Q" * 300
    assert [a["poll_media"]["text"] for a in poll["answers"]] == ["A" * 55, "Dune"]
    assert poll["duration"] == 48
    assert poll["allow_multiselect"] is True

    thread = json.loads(seen[1].content)
    assert thread == {"name": "N" * 100, "type": 11, "auto_archive_duration": 1440}


async def test_put_commands_targets_guild_when_given():
    seen = []
    transport = DiscordTransport("bot-token", client=recording_client(seen, body=[]))

    result = await transport.put_commands("app-1", build_commands(), guild_id="guild-1")

    assert result.ok
    assert seen[0].method == "PUT"
    assert str(seen[0].url) == "https://discord.com/api/v10/applications/app-1/guilds/guild-1/commands"
    names = [c["name"] for c in json.loads(seen[0].content)]
    assert "Generate Synopses" in names
    assert "poll" in names


async def test_book_search_collects_abstract_and_topics():
    seen = []
    body = {
        "AbstractText": "Dune is a 1965 novel by Frank Herbert.",
        "RelatedTopics": [{"Text": f"Topic {i}"} for i in range(5)] + [{"Name": "group"}],
    }
    search = BookSearchService(client=recording_client(seen, body=body))

    info = await search.search_book("Dune")

    assert seen[0].url.params["q"] == "Dune book synopsis"
    assert info == (
        "Dune is a 1965 novel by Frank Herbert.\n\n"
        "Additional information:\nTopic 0\nTopic 1\nTopic 2"
    )


async def test_book_search_failure_is_empty_context():
    seen = []
    search = BookSearchService(client=recording_client(seen, status=500, body={}))

    assert await search.search_book("Dune") == ""

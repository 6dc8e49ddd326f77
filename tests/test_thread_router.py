from unittest.mock import AsyncMock

from dewey.thread_router import ThreadRouter, batch_thread_name, poll_thread_name
from tests.conftest import FakeTransport


def test_thread_names():
    assert batch_thread_name(3) == "📚 Book Synopses (3 books)"
    assert poll_thread_name(10) == "📖 Book Synopses (10 options)"


async def test_thread_on_message_when_message_id_given():
    transport = FakeTransport()
    target = await ThreadRouter(transport).route("chan-1", "Synopses", message_id="msg-1")

    assert target.is_thread
    assert target.thread_id == "thread-1"
    assert target.channel_id == "chan-1"
    assert transport.of_kind("thread_from_message") == [
        {"kind": "thread_from_message", "channel_id": "chan-1", "message_id": "msg-1", "name": "Synopses"}
    ]
    assert transport.of_kind("thread") == []


async def test_standalone_thread_without_message_id():
    transport = FakeTransport()
    target = await ThreadRouter(transport).route("chan-1", "Synopses")

    assert target.thread_id == "thread-1"
    assert len(transport.of_kind("thread")) == 1


async def test_failure_falls_back_to_channel():
    transport = FakeTransport(fail_threads=True)
    target = await ThreadRouter(transport).route("chan-1", "Synopses", message_id="msg-1")

    assert not target.is_thread
    assert target.fell_back is True
    assert target.channel_id == "chan-1"


async def test_transport_exception_falls_back_to_channel():
    transport = AsyncMock()
    transport.create_thread.side_effect = RuntimeError("socket closed")

    target = await ThreadRouter(transport).route("chan-1", "Synopses")

    assert target.fell_back is True


async def test_no_thread_requested():
    transport = AsyncMock()
    target = await ThreadRouter(transport).route("chan-1", "Synopses", use_thread=False)

    assert not target.is_thread
    assert target.fell_back is False
    transport.create_thread.assert_not_awaited()
    transport.create_thread_from_message.assert_not_awaited()

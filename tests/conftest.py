import time
from typing import Any, Dict, List, Optional

import pytest
from langchain_core.messages import AIMessage

from dewey.chunked_delivery import ChunkedDelivery
from dewey.discord_transport import TransportResult
from dewey.llm_client import BaseProvider, GeminiProvider, GenerationClient, ProviderSelection
from dewey.orchestrator import PipelineOrchestrator
from dewey.prompts import PromptBook


class FakeProvider(BaseProvider):
    """Answers from the prompt text; fails for any prompt mentioning a title in `failing`."""

    def __init__(self, name: str = "gemini", failing=(), extraction_reply: str = "[]"):
        self.name = name
        self.display_name = name.capitalize()
        self.failing = set(failing)
        self.extraction_reply = extraction_reply
        self.prompts: List[str] = []
        self.extraction_prompts: List[str] = []

    def _invoke_once(self, prompt: str, *, extraction: bool = False) -> str:
        if extraction:
            self.extraction_prompts.append(prompt)
            return self.extraction_reply
        self.prompts.append(prompt)
        for title in self.failing:
            if f'"{title}"' in prompt:
                raise RuntimeError(f"quota exceeded for {title}")
        first_line = prompt.splitlines()[0]
        return f"generated: {first_line}"


class SlowProvider(FakeProvider):
    """Blocks its worker thread for `delays[title]` seconds before answering."""

    def __init__(self, delays: Dict[str, float]):
        super().__init__()
        self.delays = delays

    def _invoke_once(self, prompt: str, *, extraction: bool = False) -> str:
        for title, delay in self.delays.items():
            if f'"{title}"' in prompt:
                time.sleep(delay)
        return super()._invoke_once(prompt, extraction=extraction)


class FakeTransport:
    """Records every outbound call in order."""

    def __init__(self, fail_threads: bool = False, fail_followups_after: Optional[int] = None, fail_poll: bool = False):
        self.fail_threads = fail_threads
        self.fail_followups_after = fail_followups_after
        self.fail_poll = fail_poll
        self.calls: List[Dict[str, Any]] = []
        self._thread_seq = 0

    def _record(self, kind: str, **kwargs) -> None:
        self.calls.append({"kind": kind, **kwargs})

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == kind]

    async def post_followup(self, invocation, content: str, ephemeral: bool = False) -> TransportResult:
        self._record("followup", content=content, ephemeral=ephemeral)
        if self.fail_followups_after is not None and len(self.of_kind("followup")) > self.fail_followups_after:
            return TransportResult(ok=False, status=429, error="rate limited")
        return TransportResult(ok=True, status=200)

    async def post_channel_message(self, channel_id: str, content: str) -> TransportResult:
        self._record("channel", channel_id=channel_id, content=content)
        return TransportResult(ok=True, status=200, id="m1")

    async def create_thread_from_message(self, channel_id: str, message_id: str, name: str) -> TransportResult:
        self._record("thread_from_message", channel_id=channel_id, message_id=message_id, name=name)
        return self._thread_result()

    async def create_thread(self, channel_id: str, name: str) -> TransportResult:
        self._record("thread", channel_id=channel_id, name=name)
        return self._thread_result()

    async def create_poll(self, channel_id, question, answers, *, duration_hours=24, allow_multiselect=False) -> TransportResult:
        self._record(
            "poll",
            channel_id=channel_id,
            question=question,
            answers=list(answers),
            duration=duration_hours,
            multiselect=allow_multiselect,
        )
        if self.fail_poll:
            return TransportResult(ok=False, status=403, error="Missing Permissions")
        return TransportResult(ok=True, status=200, id="poll-msg")

    def _thread_result(self) -> TransportResult:
        if self.fail_threads:
            return TransportResult(ok=False, status=403, error="Missing Permissions")
        self._thread_seq += 1
        return TransportResult(ok=True, status=201, id=f"thread-{self._thread_seq}")


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeSearch:
    def __init__(self, reply: str = "A desert planet and a spice."):
        self.reply = reply
        self.queries: List[str] = []

    async def search_book(self, title: str) -> str:
        self.queries.append(title)
        return self.reply


def make_interaction(
    name: str,
    options: Optional[List[Dict[str, Any]]] = None,
    *,
    guild_id: Optional[str] = "guild-1",
    channel_id: str = "chan-1",
    command_type: int = 1,
    data_extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {"name": name, "type": command_type}
    if options is not None:
        data["options"] = options
    if data_extra:
        data.update(data_extra)
    interaction = {
        "type": 2,
        "application_id": "app-1",
        "token": "tok-1",
        "channel_id": channel_id,
        "data": data,
    }
    if guild_id:
        interaction["guild_id"] = guild_id
    return interaction


def string_opt(name: str, value: str) -> Dict[str, Any]:
    return {"name": name, "type": 3, "value": value}


def bool_opt(name: str, value: bool) -> Dict[str, Any]:
    return {"name": name, "type": 5, "value": value}


def int_opt(name: str, value: int) -> Dict[str, Any]:
    return {"name": name, "type": 4, "value": value}


def message_command(content: str = "", poll_answers: Optional[List[str]] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"id": "target-1", "content": content}
    if poll_answers is not None:
        message["poll"] = {"answers": [{"poll_media": {"text": a}} for a in poll_answers]}
    return make_interaction(
        "Generate Synopses",
        command_type=3,
        data_extra={"target_id": "target-1", "resolved": {"messages": {"target-1": message}}},
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def search():
    return FakeSearch()


@pytest.fixture
def build_orchestrator(sleeper, search):
    def _build(provider: Optional[FakeProvider] = None, transport: Optional[FakeTransport] = None, **providers):
        provider = provider or FakeProvider()
        transport = transport or FakeTransport()
        all_providers = {provider.name: provider, **providers}
        generation = GenerationClient(all_providers, PromptBook.load(), timeout=5)
        selection = ProviderSelection(provider.name, list(all_providers.keys()))
        delivery = ChunkedDelivery(chunk_delay=0.25, artifact_delay=0.5, sleep=sleeper)
        return PipelineOrchestrator(generation, selection, transport, delivery, search=search)

    return _build


class FakeVertexChat:
    """Stands in for ChatVertexAI; records bound tools and every invoke."""

    def __init__(self, reply, **kwargs):
        self.reply = reply
        self.kwargs = kwargs
        self.bound_tools = None
        self.calls: List[Any] = []

    def bind_tools(self, tools):
        self.bound_tools = tools
        return self

    def invoke(self, messages):
        self.calls.append(messages)
        return AIMessage(content=self.reply)


@pytest.fixture
def make_gemini(monkeypatch):
    """Builds a real GeminiProvider over fake chats: (provider, generation_chat, extraction_chat)."""

    def _make(generation_reply: Any = "A spoiler-free synopsis.", extraction_reply: Any = '["Dune"]'):
        replies = [generation_reply, extraction_reply]
        chats: List[FakeVertexChat] = []

        def chat_factory(**kwargs):
            chat = FakeVertexChat(replies[len(chats)], **kwargs)
            chats.append(chat)
            return chat

        monkeypatch.setattr("dewey.llm_client.ChatVertexAI", chat_factory)
        provider = GeminiProvider(
            "gemini-2.5-flash",
            vertex_project="book-club",
            vertex_region="us-central1",
            extraction_model_name="gemini-2.5-flash-lite",
        )
        return provider, chats[0], chats[1]

    return _make

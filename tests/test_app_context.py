import pytest

from dewey.app_context import AppContext
from dewey.config import ConfigurationError, Settings
from dewey.dispatch import InProcessDispatcher, QueueDispatcher
from register_commands import register


async def test_context_without_providers_still_starts():
    context = AppContext.from_settings(Settings())
    try:
        assert isinstance(context.dispatcher, InProcessDispatcher)
        assert context.selection.current() == "gemini"
        assert context.selection.available() == []
    finally:
        await context.aclose()


async def test_queue_mode_uses_the_database_dispatcher(tmp_path):
    settings = Settings(
        openai_api_key="sk-test",
        default_provider="openai",
        deferred_mode="queue",
        database_url=f"sqlite:///{tmp_path / 'queue.db'}",
    )
    context = AppContext.from_settings(settings)
    try:
        assert isinstance(context.dispatcher, QueueDispatcher)
        assert context.dispatcher.receiver_id == "dewey_worker"
        assert context.selection.available() == ["openai"]
    finally:
        await context.aclose()


def test_default_provider_must_be_configured():
    with pytest.raises(ConfigurationError, match="DEFAULT_LLM_PROVIDER 'gemini' is not configured"):
        AppContext.from_settings(Settings(openai_api_key="sk-test"))


async def test_registration_needs_credentials():
    assert await register(Settings()) is False

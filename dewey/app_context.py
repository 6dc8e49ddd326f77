# dewey/app_context.py

import logging
from typing import Optional

from dewey.book_search import BookSearchService
from dewey.chunked_delivery import ChunkedDelivery
from dewey.config import ConfigurationError, Settings
from dewey.discord_transport import DiscordTransport
from dewey.dispatch import InProcessDispatcher, QueueDispatcher, build_db_session_factory
from dewey.llm_client import GenerationClient, ProviderSelection, build_providers
from dewey.orchestrator import PipelineOrchestrator
from dewey.prompts import PromptBook
from dewey.thread_router import ThreadRouter

logger = logging.getLogger("dewey_bot")


class AppContext:
    """Everything one process needs, wired once from Settings."""

    def __init__(
        self,
        settings: Settings,
        orchestrator: PipelineOrchestrator,
        dispatcher,
        transport: DiscordTransport,
        search: Optional[BookSearchService] = None,
    ):
        self.settings = settings
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.transport = transport
        self.search = search

    @property
    def selection(self) -> ProviderSelection:
        return self.orchestrator.selection

    @classmethod
    def from_settings(cls, settings: Settings, *, dispatcher_mode: Optional[str] = None) -> "AppContext":
        prompts = PromptBook.load(settings.prompts_config_path, settings.prompt_overrides)
        providers = build_providers(settings)
        if not providers:
            logger.warning("No LLM provider is configured; generation commands will report an error")

        default = settings.default_provider
        if providers and default not in providers:
            raise ConfigurationError(
                f"DEFAULT_LLM_PROVIDER '{default}' is not configured. Available providers: {', '.join(providers)}"
            )

        generation = GenerationClient(providers, prompts, timeout=settings.llm_timeout_seconds)
        selection = ProviderSelection(default, list(providers.keys()))
        transport = DiscordTransport(settings.discord_bot_token, api_base=settings.discord_api_base)
        search = BookSearchService()
        delivery = ChunkedDelivery(
            chunk_delay=settings.chunk_delay_seconds,
            artifact_delay=settings.artifact_delay_seconds,
        )
        orchestrator = PipelineOrchestrator(
            generation,
            selection,
            transport,
            delivery,
            router=ThreadRouter(transport),
            search=search,
        )

        mode = dispatcher_mode or settings.deferred_mode
        if mode == "queue":
            dispatcher = QueueDispatcher(build_db_session_factory(settings.database_url), settings.queue_receiver_id)
        else:
            dispatcher = InProcessDispatcher(orchestrator.run_deferred)

        logger.info(
            f"AppContext ready: provider={default} available={list(providers.keys())} deferred_mode={mode}"
        )
        return cls(settings, orchestrator, dispatcher, transport, search)

    async def aclose(self) -> None:
        await self.dispatcher.drain()
        await self.transport.aclose()
        if self.search is not None:
            await self.search.aclose()

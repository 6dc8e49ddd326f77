# dewey/orchestrator.py
"""
Deferred command pipeline.

Phase 1 (acknowledge) runs inside the HTTP request and must answer within
Discord's three-second window, so it only validates arguments and returns
either an immediate reply or a deferred placeholder plus a DeferredJob.

Phase 2 (run_deferred) is started by a dispatcher with that DeferredJob and
walks the states

    Received -> Acknowledged -> Resolving -> (Routing) -> Generating -> Delivering -> Done

Generation fans out in parallel and joins before any delivery starts, so
artifacts are always posted in input order. Every path ends in Done; any
uncaught error is turned into one user-visible message at this boundary.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from dewey.book_search import BookSearchService
from dewey.chunked_delivery import ChunkedDelivery, Poster
from dewey.config import ConfigurationError
from dewey.discord_transport import DiscordTransport
from dewey.entities import (
    MAX_WORK_ITEMS,
    Acknowledgment,
    CommandInvocation,
    DeferredJob,
    DeliveryTarget,
    GenerationKind,
    GenerationResult,
    PipelineRun,
    PipelineState,
)
from dewey.interactions import (
    APPLICATION_COMMAND,
    PING,
    InvalidInteraction,
    deferred,
    error_message,
    help_embed,
    message,
    message_command_content,
    parse_invocation,
    pong,
    provider_status_embed,
)
from dewey.llm_client import GenerationClient, ProviderError, ProviderSelection
from dewey.thread_router import FALLBACK_NOTICE, ThreadRouter, batch_thread_name, poll_thread_name
from dewey.title_resolver import TitleResolver

logger = logging.getLogger("dewey_bot")

GENERATE_SYNOPSES = "Generate Synopses"

SINGLE_ITEM_COMMANDS = {
    "synopsis": (GenerationKind.SYNOPSIS, "title", "Please provide a book title"),
    "discussion": (GenerationKind.DISCUSSION, "title", "Please provide a book title"),
    "content-warnings": (GenerationKind.CONTENT_WARNINGS, "title", "Please provide a book title"),
    "recommend": (GenerationKind.RECOMMENDATIONS, "based_on", "Please provide a book title or description"),
}

POLL_QUESTION = "📚 Which book should we read next?"
RECOMMENDATION_TIP = "_💡 Tip: Recommendations are AI-generated and may vary. Always check reviews!_"


def split_poll_books(raw: str) -> List[str]:
    return [t.strip() for t in (raw or "").split(",") if t.strip()]


def numbered_list(items: List[str]) -> str:
    return "\n".join(f"{i + 1}. {t}" for i, t in enumerate(items))


class PipelineOrchestrator:
    def __init__(
        self,
        generation: GenerationClient,
        selection: ProviderSelection,
        transport: DiscordTransport,
        delivery: ChunkedDelivery,
        router: Optional[ThreadRouter] = None,
        search: Optional[BookSearchService] = None,
    ):
        self.generation = generation
        self.selection = selection
        self.transport = transport
        self.delivery = delivery
        self.router = router or ThreadRouter(transport)
        self.search = search

        self._slash_phase1: Dict[str, Callable[[Dict[str, Any], CommandInvocation], Acknowledgment]] = {
            "ping": self._ack_ping,
            "help": self._ack_help,
            "provider": self._ack_provider,
            "synopsis-batch": self._ack_batch,
            "poll": self._ack_poll,
        }
        for name in SINGLE_ITEM_COMMANDS:
            self._slash_phase1[name] = self._ack_single

    # -----------------------
    # Phase 1: acknowledge
    # -----------------------

    def acknowledge(self, interaction: Dict[str, Any]) -> Acknowledgment:
        """Fast path. No network I/O happens here."""
        interaction_type = interaction.get("type")
        if interaction_type == PING:
            return Acknowledgment(response=pong())
        if interaction_type != APPLICATION_COMMAND:
            return Acknowledgment(response=message("Unknown interaction type", ephemeral=True))

        try:
            invocation = parse_invocation(interaction)
        except InvalidInteraction as e:
            logger.info(f"Rejected interaction: {e}")
            return Acknowledgment(response=error_message(str(e)))

        logger.info(f"acknowledge: command='{invocation.command}' message_command={invocation.is_message_command}")

        if invocation.is_message_command:
            if invocation.command != GENERATE_SYNOPSES:
                return Acknowledgment(response=error_message(f"Unknown message command: {invocation.command}"))
            if not message_command_content(invocation):
                return Acknowledgment(response=error_message("Could not read the message content"))
            return self._defer(interaction, invocation)

        handler = self._slash_phase1.get(invocation.command)
        if handler is None:
            return Acknowledgment(response=message(f"Unknown command: {invocation.command}", ephemeral=True))
        return handler(interaction, invocation)

    def _defer(self, interaction: Dict[str, Any], invocation: CommandInvocation, ephemeral: bool = False) -> Acknowledgment:
        job = DeferredJob(interaction=interaction, provider=self.selection.current(invocation.guild_id))
        return Acknowledgment(response=deferred(ephemeral=ephemeral), job=job)

    def _ack_ping(self, interaction, invocation) -> Acknowledgment:
        return Acknowledgment(response=message("📚 Dewey is here and ready to help with your book club!"))

    def _ack_help(self, interaction, invocation) -> Acknowledgment:
        return Acknowledgment(response=help_embed())

    def _ack_provider(self, interaction, invocation) -> Acknowledgment:
        if invocation.subcommand == "status":
            current = self.selection.current(invocation.guild_id)
            return Acknowledgment(response=provider_status_embed(current, self.selection.available()))

        if invocation.subcommand == "set":
            name = invocation.string_option("name")
            if not name:
                return Acknowledgment(response=error_message("Invalid provider name"))
            try:
                chosen = self.selection.set(name, invocation.guild_id)
            except ConfigurationError as e:
                return Acknowledgment(response=error_message(str(e)))
            return Acknowledgment(response=message(f"✅ Provider switched to **{chosen.upper()}**", ephemeral=True))

        if invocation.subcommand is None:
            return Acknowledgment(response=error_message("Invalid provider command"))
        return Acknowledgment(response=error_message("Unknown provider subcommand"))

    def _ack_single(self, interaction, invocation) -> Acknowledgment:
        _, option, missing = SINGLE_ITEM_COMMANDS[invocation.command]
        if not invocation.string_option(option).strip():
            return Acknowledgment(response=error_message(missing))
        return self._defer(interaction, invocation)

    def _ack_batch(self, interaction, invocation) -> Acknowledgment:
        if "titles" not in invocation.options:
            return Acknowledgment(response=error_message("Please provide book titles (comma-separated or freeform text)"))
        if not invocation.string_option("titles").strip():
            return Acknowledgment(response=error_message("Please provide at least one book title"))
        return self._defer(interaction, invocation)

    def _ack_poll(self, interaction, invocation) -> Acknowledgment:
        if "books" not in invocation.options:
            return Acknowledgment(response=error_message("Please provide book titles"))
        raw = invocation.string_option("books").strip()
        if not raw:
            return Acknowledgment(response=error_message("Please provide at least one book title"))
        titles = split_poll_books(raw)
        if len(titles) < 2:
            return Acknowledgment(response=error_message("Please provide at least 2 book titles for a poll"))
        if len(titles) > MAX_WORK_ITEMS:
            return Acknowledgment(response=error_message(f"Discord polls support a maximum of {MAX_WORK_ITEMS} options"))
        return self._defer(interaction, invocation, ephemeral=True)

    # -----------------------
    # Phase 2: run_deferred
    # -----------------------

    async def run_deferred(self, job: Union[DeferredJob, Dict[str, Any]]) -> Optional[PipelineRun]:
        if not isinstance(job, DeferredJob):
            job = DeferredJob(**job)

        try:
            invocation = parse_invocation(job.interaction)
        except InvalidInteraction as e:
            logger.error(f"run_deferred: dropping job with unreadable interaction: {e}")
            return None

        run = PipelineRun(invocation)
        run.advance(PipelineState.ACKNOWLEDGED)
        provider = job.provider or self.selection.current(invocation.guild_id)
        logger.info(f"run_deferred: command='{invocation.command}' provider={provider}")

        try:
            if invocation.is_message_command:
                await self._run_message_command(run, provider)
            elif invocation.command in SINGLE_ITEM_COMMANDS:
                await self._run_single(run, provider)
            elif invocation.command == "synopsis-batch":
                await self._run_batch(
                    run,
                    provider,
                    raw_text=invocation.string_option("titles"),
                    use_thread=invocation.bool_option("thread"),
                    not_found="Could not find any book titles in your input",
                )
            elif invocation.command == "poll":
                await self._run_poll(run, provider)
            else:
                await self._followup(invocation, "Unknown command")
        except Exception as e:
            logger.exception(f"Error processing deferred interaction '{invocation.command}'")
            if isinstance(e, ProviderError):
                text = f"❌ Error: {e}"
            else:
                text = "❌ Error: something went wrong while processing that command."
            try:
                await self._followup(invocation, text)
            except Exception:
                logger.exception("Could not deliver the error message")
        finally:
            run.advance(PipelineState.DONE)
            logger.info(f"run_deferred: '{invocation.command}' done via {' -> '.join(s.value for s in run.history)}")

        return run

    # --- posting helpers ---

    def _poster(self, invocation: CommandInvocation, target: Optional[DeliveryTarget] = None, ephemeral: bool = False) -> Poster:
        if target is not None and target.is_thread:
            async def post_thread(chunk: str) -> bool:
                return (await self.transport.post_channel_message(target.thread_id, chunk)).ok
            return post_thread

        async def post_followup(chunk: str) -> bool:
            return (await self.transport.post_followup(invocation, chunk, ephemeral=ephemeral)).ok
        return post_followup

    async def _followup(self, invocation: CommandInvocation, content: str, ephemeral: bool = False) -> bool:
        return await self.delivery.deliver(content, self._poster(invocation, ephemeral=ephemeral))

    # --- generation ---

    async def _generate_one(
        self,
        work_item: str,
        kind: GenerationKind,
        provider: str,
        *,
        context: Optional[str] = None,
        based_on: Optional[str] = None,
        formatter: Optional[Callable[[str, str], str]] = None,
        error_formatter: Optional[Callable[[str, str], str]] = None,
    ) -> GenerationResult:
        try:
            text = await self.generation.generate(work_item, kind, context, provider=provider, based_on=based_on)
        except Exception as e:
            logger.error(f"Error generating {kind.value} for '{work_item}': {e}")
            message_text = str(e) or "Unknown error"
            content = error_formatter(work_item, message_text) if error_formatter else f"❌ Error: {message_text}"
            return GenerationResult(work_item=work_item, content=content, success=False)
        content = formatter(work_item, text) if formatter else text
        return GenerationResult(work_item=work_item, content=content, success=True)

    async def generate_batch(self, titles: List[str], provider: str) -> List[GenerationResult]:
        """
        One synopsis per title, all in flight at once. asyncio.gather keeps
        input order, and _generate_one never raises, so the result list always
        matches the input list one to one.
        """
        results = await asyncio.gather(*[
            self._generate_one(
                title,
                GenerationKind.SYNOPSIS,
                provider,
                formatter=lambda t, text: f"## {t}\n\n{text}",
                error_formatter=lambda t, err: f"## {t}\n\n❌ Error: {err}",
            )
            for title in titles
        ])
        logger.info(f"Completed {len(results)} synopses ({sum(1 for r in results if not r.success)} failed)")
        return list(results)

    # --- single work item commands ---

    async def _run_single(self, run: PipelineRun, provider: str) -> None:
        invocation = run.invocation
        kind, option, _ = SINGLE_ITEM_COMMANDS[invocation.command]
        work_item = invocation.string_option(option).strip()

        run.advance(PipelineState.RESOLVING)
        run.work_items = [work_item]

        run.advance(PipelineState.GENERATING)
        context = None
        formatter = None
        based_on = None
        if kind == GenerationKind.DISCUSSION:
            if self.search is not None:
                context = await self.search.search_book(work_item)
            formatter = lambda t, text: f"# Discussion Questions: {t}\n\n{text}"
        elif kind == GenerationKind.RECOMMENDATIONS:
            based_on = work_item
            formatter = lambda t, text: f"# Book Recommendations\n\nBased on: **{t}**\n\n{text}\n\n{RECOMMENDATION_TIP}"

        result = await self._generate_one(
            work_item, kind, provider, context=context, based_on=based_on, formatter=formatter
        )
        run.results = [result]

        run.advance(PipelineState.DELIVERING)
        run.target = DeliveryTarget(channel_id=invocation.channel_id)
        await self.delivery.deliver(result.content, self._poster(invocation))

    # --- batch commands ---

    async def _run_message_command(self, run: PipelineRun, provider: str) -> None:
        invocation = run.invocation
        if invocation.command != GENERATE_SYNOPSES:
            await self._followup(invocation, "❌ Unknown message command")
            return
        content = message_command_content(invocation)
        if not content:
            await self._followup(invocation, "❌ Could not read the message content")
            return
        await self._run_batch(
            run,
            provider,
            raw_text=content,
            use_thread=True,
            message_id=invocation.target_message.message_id,
            not_found="Could not find any book titles in that message",
        )

    async def _resolve(self, run: PipelineRun, raw_text: str, provider: str, not_found: str) -> bool:
        run.advance(PipelineState.RESOLVING)

        async def extract(text: str) -> List[str]:
            return await self.generation.extract_titles(text, provider=provider)

        titles = await TitleResolver(extractor=extract).resolve(raw_text)
        if not titles:
            await self._followup(run.invocation, f"❌ {not_found}")
            return False
        if len(titles) > MAX_WORK_ITEMS:
            await self._followup(run.invocation, f"❌ Too many books ({len(titles)}). Maximum {MAX_WORK_ITEMS} per batch.")
            return False
        run.work_items = titles
        return True

    async def _run_batch(
        self,
        run: PipelineRun,
        provider: str,
        *,
        raw_text: str,
        use_thread: bool,
        not_found: str,
        message_id: Optional[str] = None,
    ) -> None:
        invocation = run.invocation
        if not await self._resolve(run, raw_text, provider, not_found):
            return
        titles = run.work_items

        if use_thread:
            run.advance(PipelineState.ROUTING)
            run.target = await self.router.route(
                invocation.channel_id, batch_thread_name(len(titles)), message_id=message_id
            )
        else:
            run.target = DeliveryTarget(channel_id=invocation.channel_id)

        await self._post_intro(run, "Processing synopses for:")
        await self._generate_and_deliver(run, provider)

    async def _post_intro(self, run: PipelineRun, heading: str) -> None:
        titles = run.work_items
        if run.target.is_thread:
            await self.delivery.deliver(f"{heading}\n{numbered_list(titles)}", self._poster(run.invocation, run.target))
            return
        intro = (
            f"📚 Processing {len(titles)} book(s): {', '.join(titles)}\n\n"
            "_Synopses will appear below as they complete..._"
        )
        if run.target.fell_back:
            intro = f"{intro}\n{FALLBACK_NOTICE}"
        await self._followup(run.invocation, intro)

    async def _generate_and_deliver(self, run: PipelineRun, provider: str) -> None:
        run.advance(PipelineState.GENERATING)
        run.results = await self.generate_batch(run.work_items, provider)

        run.advance(PipelineState.DELIVERING)
        await self.delivery.deliver_batch(run.results, self._poster(run.invocation, run.target))

        where = " in thread" if run.target.is_thread else ""
        await self._followup(
            run.invocation, f"✅ Synopses generated for {len(run.results)} book(s){where}.", ephemeral=True
        )

    # --- poll ---

    async def _run_poll(self, run: PipelineRun, provider: str) -> None:
        invocation = run.invocation

        run.advance(PipelineState.RESOLVING)
        titles = split_poll_books(invocation.string_option("books"))
        if len(titles) < 2 or len(titles) > MAX_WORK_ITEMS:
            await self._followup(invocation, f"❌ Please provide 2-{MAX_WORK_ITEMS} book titles")
            return
        run.work_items = titles

        if not invocation.channel_id:
            await self._followup(invocation, "❌ Could not determine channel")
            return

        instructions = invocation.string_option("instructions").strip()
        question = f"{POLL_QUESTION} {instructions}" if instructions else POLL_QUESTION
        poll = await self.transport.create_poll(
            invocation.channel_id,
            question,
            titles,
            duration_hours=invocation.int_option("duration", 24),
            allow_multiselect=invocation.bool_option("multiple"),
        )
        if not poll.ok or not poll.id:
            await self._followup(invocation, "❌ Failed to create poll. Check bot permissions.")
            return

        run.advance(PipelineState.ROUTING)
        run.target = await self.router.route(invocation.channel_id, poll_thread_name(len(titles)), message_id=poll.id)

        if run.target.is_thread:
            confirmation = f"✅ Poll created with {len(titles)} books! Generating synopses in thread..."
        else:
            confirmation = "✅ Poll created! (Could not create synopses thread)"
        await self._followup(invocation, confirmation, ephemeral=True)

        await self._post_intro(run, "Generating synopses for:")
        await self._generate_and_deliver(run, provider)

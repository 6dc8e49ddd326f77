# dewey/llm_client.py

import asyncio
import json
import logging
import re
import threading
from typing import Any, Dict, List, Optional

import yaml
from anthropic import Anthropic
from langchain_core.messages import HumanMessage
from langchain_google_vertexai import ChatVertexAI
from openai import OpenAI

from dewey.config import ConfigurationError, Settings
from dewey.entities import GenerationKind
from dewey.prompts import PromptBook, build_search_context

logger = logging.getLogger("dewey_bot")

DEFAULT_SCOPE = "global"
GENERATION_MAX_TOKENS = 1500
EXTRACTION_MAX_TOKENS = 500
GEMINI_SEARCH_TOOL = {"google_search": {}}


class ProviderError(Exception):
    """Raised when a generation provider call fails. Message is user-visible."""


def parse_title_array(raw: str) -> List[str]:
    """
    Pulls the first [...] block out of a model reply and reads it as a list of
    strings. Falls back to yaml for the near-JSON replies models sometimes
    produce (single quotes, trailing commas). Returns [] when nothing usable.
    """
    if not raw:
        return []
    match = re.search(r"\[[\s\S]*\]", raw)
    if not match:
        logger.warning(f"Could not find JSON array in response: {raw[:200]}")
        return []

    block = match.group(0)
    try:
        data = json.loads(block)
    except json.JSONDecodeError:
        try:
            data = yaml.safe_load(block)
        except yaml.YAMLError:
            logger.warning(f"Could not parse title array: {block[:200]}")
            return []

    if not isinstance(data, list):
        return []
    return [str(t).strip() for t in data if isinstance(t, (str, int, float)) and str(t).strip()]


class BaseProvider:
    """
    Capability interface every provider conforms to:

        text = provider.generate(prompt)
        titles = provider.extract_titles(prompt)

    Both are synchronous SDK calls; GenerationClient moves them off the
    event loop.
    """

    name = "base"
    display_name = "Base"

    def _invoke_once(self, prompt: str, *, extraction: bool = False) -> str:
        raise NotImplementedError

    def generate(self, prompt: str) -> str:
        try:
            return self._invoke_once(prompt)
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"{self.display_name} API error: {e}")
            raise ProviderError(f"{self.display_name} API error: {e}") from e

    def extract_titles(self, prompt: str) -> List[str]:
        try:
            raw = self._invoke_once(prompt, extraction=True)
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"{self.display_name} extract_titles error: {e}")
            raise ProviderError(f"{self.display_name} API error: {e}") from e
        return parse_title_array(raw)


class GeminiProvider(BaseProvider):
    """
    Gemini on Vertex AI.

    Under the hood: ChatVertexAI.invoke([HumanMessage(prompt)]). Generation
    runs with Google Search grounding bound to the chat; title extraction
    uses a lighter model without tools.
    """

    name = "gemini"
    display_name = "Gemini"

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        extraction_model_name: Optional[str] = None,
        timeout: float | None = None,
    ):
        self.model_name = model_name
        chat = ChatVertexAI(
            project=vertex_project,
            location=vertex_region,
            model_name=model_name,
            max_output_tokens=GENERATION_MAX_TOKENS,
            timeout=timeout,
        )
        self._chat = chat.bind_tools([GEMINI_SEARCH_TOOL])
        self._extraction_chat = ChatVertexAI(
            project=vertex_project,
            location=vertex_region,
            model_name=extraction_model_name or model_name,
            max_output_tokens=EXTRACTION_MAX_TOKENS,
            timeout=timeout,
        )

    def _invoke_once(self, prompt: str, *, extraction: bool = False) -> str:
        chat = self._extraction_chat if extraction else self._chat
        resp = chat.invoke([HumanMessage(content=prompt)])
        content = resp if isinstance(resp, str) else getattr(resp, "content", resp)
        if isinstance(content, list):
            # multi-part replies: keep text parts only
            parts = [p.get("text", "") if isinstance(p, dict) else str(p) for p in content]
            content = "".join(parts)
        text = str(content or "").strip()
        logger.debug(f"Gemini text result length: {len(text)}")
        # safety blocks and tool-only replies come back with no text part
        if not text:
            raise ProviderError("Gemini API error: No text content in Gemini response")
        return text


class OpenAIProvider(BaseProvider):
    """
    OpenAI Responses API. Generation runs with the hosted web search tool so
    the model can look the book up; extraction runs without tools.
    """

    name = "openai"
    display_name = "OpenAI"

    def __init__(self, model_name: str, *, api_key: str, timeout: float | None = None):
        self.model_name = model_name
        client_kwargs: Dict[str, Any] = {"api_key": api_key, "max_retries": 0}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        self._client = OpenAI(**client_kwargs)

    def _invoke_once(self, prompt: str, *, extraction: bool = False) -> str:
        params: Dict[str, Any] = {
            "model": self.model_name,
            "input": prompt,
            "max_output_tokens": EXTRACTION_MAX_TOKENS if extraction else GENERATION_MAX_TOKENS,
        }
        if not extraction:
            params["tools"] = [{"type": "web_search_preview"}]
        resp = self._client.responses.create(**params)
        text = getattr(resp, "output_text", "") or ""
        if not text.strip():
            raise ProviderError("OpenAI API error: No text content in OpenAI response")
        return text.strip()


class ClaudeProvider(BaseProvider):
    """Anthropic Messages API with the server-side web search tool."""

    name = "claude"
    display_name = "Claude"

    def __init__(self, model_name: str, *, api_key: str, timeout: float | None = None):
        self.model_name = model_name
        client_kwargs: Dict[str, Any] = {"api_key": api_key, "max_retries": 0}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        self._client = Anthropic(**client_kwargs)

    def _invoke_once(self, prompt: str, *, extraction: bool = False) -> str:
        params: Dict[str, Any] = {
            "model": self.model_name,
            "max_tokens": EXTRACTION_MAX_TOKENS if extraction else GENERATION_MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }
        if not extraction:
            params["tools"] = [{"type": "web_search_20250305", "name": "web_search", "max_uses": 3}]
        message = self._client.messages.create(**params)

        # replies interleave tool-use blocks with text blocks
        texts = [block.text for block in message.content if getattr(block, "type", None) == "text"]
        if not texts:
            raise ProviderError("Claude API error: No text content in Claude response")
        return "".join(texts).strip()


def build_providers(settings: Settings) -> Dict[str, BaseProvider]:
    """A provider is registered only when its credentials are configured."""
    providers: Dict[str, BaseProvider] = {}
    timeout = settings.llm_timeout_seconds

    if settings.google_cloud_project:
        try:
            providers["gemini"] = GeminiProvider(
                settings.gemini_model,
                vertex_project=settings.google_cloud_project,
                vertex_region=settings.google_cloud_region,
                extraction_model_name=settings.gemini_extraction_model,
                timeout=timeout,
            )
        except Exception as e:
            logger.warning(f"Could not initialize Vertex AI Gemini provider: {e}")

    if settings.anthropic_api_key:
        providers["claude"] = ClaudeProvider(settings.claude_model, api_key=settings.anthropic_api_key, timeout=timeout)

    if settings.openai_api_key:
        providers["openai"] = OpenAIProvider(settings.openai_model, api_key=settings.openai_api_key, timeout=timeout)

    return providers


class ProviderSelection:
    """
    Chosen provider per guild. Owned by the application context and
    snapshotted into each deferred job, so a later `provider set` never
    changes a job that was already acknowledged.
    """

    def __init__(self, default_provider: str, available: List[str]):
        self.default_provider = default_provider
        self._available = list(available)
        self._lock = threading.Lock()
        self._by_scope: Dict[str, str] = {}

    def available(self) -> List[str]:
        return list(self._available)

    def current(self, scope: Optional[str] = None) -> str:
        with self._lock:
            return self._by_scope.get(scope or DEFAULT_SCOPE, self.default_provider)

    def set(self, name: str, scope: Optional[str] = None) -> str:
        name = (name or "").strip().lower()
        if name not in self._available:
            raise ConfigurationError(f"Provider '{name}' is not configured")
        with self._lock:
            self._by_scope[scope or DEFAULT_SCOPE] = name
        logger.info(f"Provider for scope={scope or DEFAULT_SCOPE} switched to {name}")
        return name


class GenerationClient:
    """
    Builds the prompt for a work item and runs it on the named provider.
    Safe to call concurrently for distinct work items: each call only touches
    its own prompt and the provider SDK client.
    """

    def __init__(self, providers: Dict[str, BaseProvider], prompts: PromptBook, timeout: float | None = None):
        self.providers = dict(providers)
        self.prompts = prompts
        self.timeout = timeout

    def available(self) -> List[str]:
        return list(self.providers.keys())

    def get_provider(self, name: str) -> BaseProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise ProviderError(
                f"Provider '{name}' not available. Available providers: {', '.join(self.available())}"
            )
        return provider

    def build_prompt(
        self,
        work_item: str,
        kind: GenerationKind,
        context: Optional[str] = None,
        based_on: Optional[str] = None,
    ) -> str:
        variables = {"title": work_item}
        if kind == GenerationKind.RECOMMENDATIONS:
            variables["basedOn"] = based_on or f'the book "{work_item}"'
        prompt = self.prompts.build(kind.value, **variables)
        if context is not None:
            prompt = f"{prompt}\n\n{build_search_context(context)}"
        return prompt

    async def _run(self, provider: BaseProvider, fn, prompt: str):
        try:
            if self.timeout:
                return await asyncio.wait_for(asyncio.to_thread(fn, prompt), timeout=self.timeout)
            return await asyncio.to_thread(fn, prompt)
        except asyncio.TimeoutError as e:
            raise ProviderError(f"{provider.display_name} API error: timed out after {self.timeout:.0f}s") from e

    async def generate(
        self,
        work_item: str,
        kind: GenerationKind,
        context: Optional[str] = None,
        *,
        provider: str,
        based_on: Optional[str] = None,
    ) -> str:
        llm = self.get_provider(provider)
        prompt = self.build_prompt(work_item, kind, context=context, based_on=based_on)
        logger.info(f"Generating {kind.value} for '{work_item}' with {llm.name}")
        text = await self._run(llm, llm.generate, prompt)
        logger.info(f"Completed {kind.value} for '{work_item}' ({len(text)} chars)")
        return text

    async def extract_titles(self, text: str, *, provider: str) -> List[str]:
        llm = self.get_provider(provider)
        prompt = self.prompts.build_extraction(text)
        titles = await self._run(llm, llm.extract_titles, prompt)
        logger.info(f"LLM extracted titles: {titles}")
        return titles

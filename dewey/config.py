# dewey/config.py

import logging
import os
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"

logger = logging.getLogger("dewey_bot")


class ConfigurationError(RuntimeError):
    pass


def configure_logging(level: Optional[str] = None) -> None:
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'")


class Settings(BaseModel):
    """
    Process-wide configuration. Read once at start (Settings.from_env()),
    never re-read while an invocation is running.
    """

    # --- Discord ---
    discord_public_key: Optional[str] = None
    discord_bot_token: Optional[str] = None
    discord_application_id: Optional[str] = None
    discord_guild_id: Optional[str] = None
    discord_api_base: str = "https://discord.com/api/v10"

    # --- LLM providers ---
    default_provider: str = "gemini"
    google_cloud_project: Optional[str] = None
    google_cloud_region: str = "us-central1"
    gemini_model: str = "gemini-2.5-flash"
    gemini_extraction_model: str = "gemini-2.5-flash-lite"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4.1-mini"
    anthropic_api_key: Optional[str] = None
    claude_model: str = "claude-haiku-4-5-20251001"
    llm_timeout_seconds: float = 300.0

    # --- prompts ---
    prompts_config_path: Optional[str] = None
    prompt_overrides: Dict[str, str] = {}

    # --- delivery pacing ---
    chunk_delay_seconds: float = 0.25
    artifact_delay_seconds: float = 0.5

    # --- deferred work ---
    deferred_mode: str = "inprocess"
    database_url: str = "sqlite:///dewey_queue.db"
    queue_receiver_id: str = "dewey_worker"
    concurrent_instances: int = 4

    port: int = 3000

    @classmethod
    def from_env(cls) -> "Settings":
        overrides = {}
        for kind, env_name in (
            ("synopsis", "PROMPT_SYNOPSIS"),
            ("discussion", "PROMPT_DISCUSSION"),
            ("recommendations", "PROMPT_RECOMMENDATIONS"),
            ("content-warnings", "PROMPT_CONTENT_WARNINGS"),
        ):
            value = os.getenv(env_name)
            if value:
                overrides[kind] = value

        deferred_mode = os.getenv("DEFERRED_MODE", "inprocess").strip().lower()
        if deferred_mode not in ("inprocess", "queue"):
            raise ConfigurationError(f"DEFERRED_MODE must be 'inprocess' or 'queue', got '{deferred_mode}'")

        return cls(
            discord_public_key=os.getenv("DISCORD_BOT_PUBLIC_KEY"),
            discord_bot_token=os.getenv("DISCORD_BOT_SECRET_TOKEN"),
            discord_application_id=os.getenv("DISCORD_APPLICATION_ID"),
            discord_guild_id=os.getenv("DISCORD_GUILD_ID"),
            default_provider=os.getenv("DEFAULT_LLM_PROVIDER", "gemini").strip().lower(),
            google_cloud_project=os.getenv("GOOGLE_CLOUD_PROJECT"),
            google_cloud_region=os.getenv("GOOGLE_CLOUD_REGION", "us-central1"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_extraction_model=os.getenv("GEMINI_EXTRACTION_MODEL", "gemini-2.5-flash-lite"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4.1-mini"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            claude_model=os.getenv("CLAUDE_MODEL", "claude-haiku-4-5-20251001"),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 300.0),
            prompts_config_path=os.getenv("PROMPTS_CONFIG_PATH"),
            prompt_overrides=overrides,
            chunk_delay_seconds=_env_float("CHUNK_DELAY_SECONDS", 0.25),
            artifact_delay_seconds=_env_float("ARTIFACT_DELAY_SECONDS", 0.5),
            deferred_mode=deferred_mode,
            database_url=os.getenv("DATABASE_URL", "sqlite:///dewey_queue.db"),
            queue_receiver_id=os.getenv("QUEUE_RECEIVER_ID", "dewey_worker"),
            concurrent_instances=_env_int("CONCURRENT_INSTANCES", 4),
            port=_env_int("PORT", 3000),
        )

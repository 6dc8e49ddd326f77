import asyncio
import logging
import sys

from dewey.commands import build_commands
from dewey.config import Settings, configure_logging
from dewey.discord_transport import DiscordTransport

configure_logging()
logger = logging.getLogger("dewey_bot")


async def register(settings: Settings) -> bool:
    if not settings.discord_application_id or not settings.discord_bot_token:
        logger.error("DISCORD_APPLICATION_ID and DISCORD_BOT_SECRET_TOKEN are required")
        return False

    transport = DiscordTransport(settings.discord_bot_token, api_base=settings.discord_api_base)
    try:
        logger.info("Started refreshing application (/) commands.")
        result = await transport.put_commands(
            settings.discord_application_id, build_commands(), guild_id=settings.discord_guild_id
        )
    finally:
        await transport.aclose()

    if not result.ok:
        return False
    if settings.discord_guild_id:
        logger.info(f"Successfully registered commands for guild {settings.discord_guild_id}")
    else:
        logger.info("Successfully registered global commands (may take up to an hour to propagate)")
    return True


if __name__ == "__main__":
    sys.exit(0 if asyncio.run(register(Settings.from_env())) else 1)

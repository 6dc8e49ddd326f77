# dewey/interactions.py

import logging
from typing import Any, Dict, List, Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from dewey.commands import MESSAGE, SUB_COMMAND, SUB_COMMAND_GROUP
from dewey.entities import EPHEMERAL_FLAG, CommandInvocation, OptionValue, TargetMessage

logger = logging.getLogger("dewey_bot")

# InteractionType
PING = 1
APPLICATION_COMMAND = 2

# InteractionResponseType
PONG = 1
CHANNEL_MESSAGE_WITH_SOURCE = 4
DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE = 5


class InvalidInteraction(ValueError):
    pass


def verify_signature(public_key: str, signature: str, timestamp: str, raw_body: bytes) -> bool:
    try:
        VerifyKey(bytes.fromhex(public_key)).verify(timestamp.encode() + raw_body, bytes.fromhex(signature))
        return True
    except (BadSignatureError, ValueError):
        return False


# -----------------------
# Parsing
# -----------------------

def _flatten_options(options: Optional[List[Dict[str, Any]]]) -> tuple[Optional[str], Dict[str, OptionValue]]:
    subcommand = None
    values: Dict[str, OptionValue] = {}
    for opt in options or []:
        if opt.get("type") in (SUB_COMMAND, SUB_COMMAND_GROUP):
            subcommand = opt.get("name")
            _, nested = _flatten_options(opt.get("options"))
            values.update(nested)
        elif "value" in opt:
            values[opt["name"]] = opt["value"]
    return subcommand, values


def _target_message(data: Dict[str, Any]) -> Optional[TargetMessage]:
    target_id = data.get("target_id")
    if not target_id:
        return None
    message = ((data.get("resolved") or {}).get("messages") or {}).get(str(target_id))
    if not message:
        return None

    answers = []
    poll = message.get("poll")
    if poll and isinstance(poll.get("answers"), list):
        for answer in poll["answers"]:
            text = ((answer or {}).get("poll_media") or {}).get("text")
            if text:
                answers.append(text)

    return TargetMessage(
        message_id=str(target_id),
        content=message.get("content") or "",
        poll_answers=tuple(answers),
    )


def parse_invocation(interaction: Dict[str, Any]) -> CommandInvocation:
    """Builds a CommandInvocation from an APPLICATION_COMMAND interaction payload."""
    if not isinstance(interaction, dict) or not isinstance(interaction.get("data"), dict):
        raise InvalidInteraction("Interaction payload has no command data")

    data = interaction["data"]
    name = data.get("name")
    if not name:
        raise InvalidInteraction("Interaction payload has no command name")

    is_message_command = data.get("type") == MESSAGE
    subcommand, options = _flatten_options(data.get("options"))
    channel_id = (interaction.get("channel") or {}).get("id") or interaction.get("channel_id")

    return CommandInvocation(
        command=name,
        options=options,
        subcommand=subcommand,
        channel_id=str(channel_id) if channel_id else None,
        guild_id=str(interaction["guild_id"]) if interaction.get("guild_id") else None,
        application_id=str(interaction.get("application_id") or ""),
        token=str(interaction.get("token") or ""),
        is_message_command=is_message_command,
        target_message=_target_message(data) if is_message_command else None,
    )


def message_command_content(invocation: CommandInvocation) -> Optional[str]:
    """Poll answers when the target is a poll, otherwise the message text."""
    target = invocation.target_message
    if target is None:
        return None
    if target.poll_answers:
        return ", ".join(target.poll_answers)
    return target.content or None


# -----------------------
# Responses
# -----------------------

def pong() -> Dict[str, Any]:
    return {"type": PONG}


def deferred(ephemeral: bool = False) -> Dict[str, Any]:
    response: Dict[str, Any] = {"type": DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE}
    if ephemeral:
        response["data"] = {"flags": EPHEMERAL_FLAG}
    return response


def message(content: str, ephemeral: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {"content": content}
    if ephemeral:
        data["flags"] = EPHEMERAL_FLAG
    return {"type": CHANNEL_MESSAGE_WITH_SOURCE, "data": data}


def error_message(text: str) -> Dict[str, Any]:
    return message(f"❌ {text}", ephemeral=True)


def embed(embed_data: Dict[str, Any], ephemeral: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {"embeds": [embed_data]}
    if ephemeral:
        data["flags"] = EPHEMERAL_FLAG
    return {"type": CHANNEL_MESSAGE_WITH_SOURCE, "data": data}


def help_embed() -> Dict[str, Any]:
    return embed({
        "title": "📚 Dewey - Your Book Club Assistant",
        "description": (
            "Hi! I'm Dewey, your friendly neighborhood librarian bot. I use AI with real-time web "
            "search to help your book club discover and discuss great reads."
        ),
        "color": 0x5865F2,
        "fields": [
            {
                "name": "/synopsis [title]",
                "value": "Get a **spoiler-free** synopsis of any book. Perfect for deciding what to read next without ruining the story.",
            },
            {
                "name": "/discussion [title]",
                "value": "Generate thoughtful discussion questions for your book club meeting. Covers themes, characters, and deeper analysis.",
            },
            {
                "name": "/content-warnings [title]",
                "value": "Get content warnings and trigger warnings for a book before reading. Covers violence, mature themes, and more.",
            },
            {
                "name": "/recommend [based_on]",
                "value": 'Get personalized book recommendations. Try a title like "Project Hail Mary" or a description like "cozy mysteries with cats".',
            },
            {
                "name": "/poll [books]",
                "value": 'Create a book poll with auto-generated synopses thread. Comma-separated titles, optional instructions (e.g., "Vote for 3!"), duration and multi-vote.',
            },
            {
                "name": "Other Commands",
                "value": (
                    "`/ping` - Check if I'm awake\n"
                    "`/provider status` - See which AI is powering responses\n"
                    "`/synopsis-batch` - Get multiple synopses at once\n"
                    "Right-click a message > Apps > **Generate Synopses** - synopses for every book it mentions"
                ),
            },
        ],
        "footer": {"text": "Powered by Gemini, Claude & OpenAI with web search"},
    })


def provider_status_embed(current: str, available: List[str]) -> Dict[str, Any]:
    return embed(
        {
            "title": "LLM Provider Status",
            "fields": [
                {"name": "Current Provider", "value": current.upper(), "inline": True},
                {"name": "Available Providers", "value": ", ".join(available).upper() or "NONE", "inline": True},
            ],
            "color": 0x00FF00,
        },
        ephemeral=True,
    )

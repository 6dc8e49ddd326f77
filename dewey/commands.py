# dewey/commands.py
from typing import Any, Dict, List

# ApplicationCommandOptionType
SUB_COMMAND = 1
SUB_COMMAND_GROUP = 2
STRING = 3
INTEGER = 4
BOOLEAN = 5

# ApplicationCommandType
CHAT_INPUT = 1
MESSAGE = 3


def _option(name: str, description: str, option_type: int, required: bool = False, **extra) -> Dict[str, Any]:
    opt = {"name": name, "description": description, "type": option_type, "required": required}
    opt.update(extra)
    return opt


def _slash(name: str, description: str, options: List[Dict[str, Any]] | None = None) -> Dict[str, Any]:
    command: Dict[str, Any] = {"name": name, "description": description, "type": CHAT_INPUT}
    if options:
        command["options"] = options
    return command


def build_commands() -> List[Dict[str, Any]]:
    """Command set registered with Discord (slash commands plus the context-menu action)."""
    return [
        _slash("help", "Learn about Dewey and available commands"),
        _slash("ping", "Check if Dewey is awake"),
        _slash("synopsis", "Get a spoiler-free book synopsis", [
            _option("title", "The book title", STRING, required=True),
        ]),
        _slash("synopsis-batch", "Get synopses for multiple books", [
            _option("titles", "Book titles (comma-separated or freeform text)", STRING, required=True),
            _option("thread", "Create a thread for the synopses", BOOLEAN),
        ]),
        _slash("discussion", "Generate discussion questions for a book", [
            _option("title", "The book title", STRING, required=True),
        ]),
        _slash("content-warnings", "Get content warnings and trigger warnings for a book", [
            _option("title", "The book title", STRING, required=True),
        ]),
        _slash("poll", "Create a book poll with synopses thread", [
            _option("books", "Book titles (comma-separated, max 10)", STRING, required=True),
            _option("instructions", 'Extra instructions shown with the question (e.g., "Vote for 3!")', STRING),
            _option("duration", "Poll duration in hours (default: 24, max: 168)", INTEGER, min_value=1, max_value=168),
            _option("multiple", "Allow voting for multiple books (default: false)", BOOLEAN),
        ]),
        _slash("recommend", "Get book recommendations based on your favorites", [
            _option("based_on", 'Book title(s) or description (e.g., "1984" or "dystopian sci-fi")', STRING, required=True),
        ]),
        _slash("provider", "Manage LLM provider settings", [
            {"name": "status", "description": "Check current provider and available options", "type": SUB_COMMAND},
            {
                "name": "set",
                "description": "Set the LLM provider",
                "type": SUB_COMMAND,
                "options": [
                    _option("name", "Provider name", STRING, required=True, choices=[
                        {"name": "Gemini", "value": "gemini"},
                        {"name": "Claude", "value": "claude"},
                        {"name": "OpenAI", "value": "openai"},
                    ]),
                ],
            },
        ]),
        {"name": "Generate Synopses", "type": MESSAGE},
    ]

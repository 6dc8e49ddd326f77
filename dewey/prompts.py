# dewey/prompts.py

import logging
import re
from pathlib import Path
from typing import Dict, Optional

import commentjson

from dewey.config import ConfigurationError

logger = logging.getLogger("dewey_bot")


TITLE_EXTRACTION_PROMPT = """Extract book titles from the following text. The text may contain:
- Casual conversation mixed with book titles
- "or" between alternative suggestions
- Partial series names
- Typos or informal references

Return ONLY a JSON array of book titles, nothing else. Be generous - if something looks like it could be a book title, include it.
Example output: ["The Great Gatsby", "1984", "Dune"]

Text to parse:
{text}"""


SYNOPSIS_PROMPT = """Provide a SPOILER-FREE synopsis for "{title}" suitable for someone deciding whether to read the book.

IMPORTANT RULES:
- NO SPOILERS: Do not reveal plot twists, character deaths, endings, or major revelations
- Focus on: premise, setting, main character's initial situation, themes, and tone
- This is for a book club - help them decide if they want to read it, don't summarize the whole plot
- Search for current information about this book

Format:
**{title}** by [Author]

[2-3 paragraph synopsis covering the premise, setting, and themes - NO plot spoilers]"""


DISCUSSION_PROMPT = """Generate 5-6 thought-provoking discussion questions for the book "{title}".

These questions are for a book club meeting. Make them:
- Open-ended (no yes/no questions)
- Thought-provoking and encourage debate
- Cover themes, characters, plot, and author's craft
- Range from accessible to deeper analysis
- Relevant to the book's key themes and moments
- Search for information about this book to ensure accuracy

SPOILER FORMATTING: When questions reference specific plot points, character deaths, twists, or endings, wrap those details in Discord spoiler tags using ||spoiler text|| format. This allows readers who haven't finished to participate without seeing spoilers. Example: "How did ||the death of Dumbledore|| affect Harry's journey?"

Format as a numbered list with brief context for each question when helpful."""


RECOMMENDATIONS_PROMPT = """Based on {basedOn}, recommend 5 books that readers might enjoy.

For each recommendation, provide:
- Title and author
- Brief (1-2 sentence) description
- Why it's similar or would appeal to fans

Focus on quality recommendations that match the tone, themes, or style.
Format as a numbered list."""


CONTENT_WARNINGS_PROMPT = """List content warnings for "{title}" in a simple, spoiler-free format.

Search for information about this book. List ONLY the warning categories that apply - do not explain plot details or how they occur.

Categories to check: violence, death, gore, sexual content, sexual assault, domestic abuse, child abuse, suicide, self-harm, eating disorders, addiction, animal death, mental illness, trauma/PTSD, war, torture, racism, homophobia, ableism, medical trauma, grief, pregnancy loss, claustrophobia, other phobias

Format - group by severity, indent categories with spaces:

**Content Warnings: {title}**

🔴 **Major** (frequent/graphic)
    category, category

🟡 **Moderate** (present but not central)
    category, category

🟢 **Minor** (brief mentions)
    category, category

Only include severity sections that have warnings. If no major warnings exist, just say "No major content warnings - generally mild read." Keep it brief and spoiler-free."""


DEFAULT_PROMPTS: Dict[str, str] = {
    "synopsis": SYNOPSIS_PROMPT,
    "discussion": DISCUSSION_PROMPT,
    "recommendations": RECOMMENDATIONS_PROMPT,
    "content-warnings": CONTENT_WARNINGS_PROMPT,
}


def unsafe_string_format(dest_string: str, print_unused_keys_report: bool = True, **kwargs) -> str:
    """
    Replaces {key} placeholders with kwargs values. Placeholders with no
    matching kwarg are left unchanged (str.format would raise on them, and
    templates contain literal braces such as JSON examples).
    """
    missing_keys = []

    def replacer(match):
        key = match.group(1)
        if key in kwargs:
            return str(kwargs[key])
        missing_keys.append(key)
        return match.group(0)

    pattern = re.compile(r"\{(\w+)\}")
    result = pattern.sub(replacer, dest_string)
    if missing_keys and print_unused_keys_report:
        logger.info(f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}")
    return result


def build_search_context(search_results: Optional[str]) -> str:
    if not search_results or not search_results.strip():
        return "Include the author's name if known, main themes, and what makes this book notable."
    return (
        f"Here is some information I found about the book:\n{search_results}\n\n"
        "Based on this information, please provide an accurate response."
    )


def _load_prompts_file(path: str) -> Dict[str, str]:
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise ConfigurationError(f"Prompts config file not found at '{cfg_path}'.")

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    if not isinstance(data, dict):
        raise ConfigurationError(f"Prompts config at '{cfg_path}' must be an object of kind -> template")

    unknown = [k for k in data if k not in DEFAULT_PROMPTS]
    if unknown:
        raise ConfigurationError(f"Prompts config has unknown template name(s): {unknown}")

    return {k: str(v) for k, v in data.items() if v}


class PromptBook:
    """
    Resolved prompt templates: defaults <- optional JSON-with-comments file
    <- environment overrides.
    """

    def __init__(self, templates: Dict[str, str], extraction_template: str = TITLE_EXTRACTION_PROMPT):
        self.templates = dict(templates)
        self.extraction_template = extraction_template

    @classmethod
    def load(cls, config_path: Optional[str] = None, overrides: Optional[Dict[str, str]] = None) -> "PromptBook":
        templates = dict(DEFAULT_PROMPTS)
        if config_path:
            templates.update(_load_prompts_file(config_path))
            logger.info(f"Loaded prompt overrides from {config_path}")
        if overrides:
            templates.update(overrides)
        return cls(templates)

    def build(self, kind: str, **variables) -> str:
        template = self.templates.get(kind)
        if template is None:
            raise ValueError(f"Unknown prompt kind: {kind}")
        return unsafe_string_format(template, **variables)

    def build_extraction(self, text: str) -> str:
        return unsafe_string_format(self.extraction_template, text=text)

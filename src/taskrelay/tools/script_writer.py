"""
Podcast script generation tool.

The script is written by the configured LLM backend and then checked by
:func:`validate_podcast_script` so that it can be fed to text-to-speech without cleanup: every line
is ``Speaker: dialogue``, with no stage directions, markdown or preamble.
"""

import logging
import re
from typing import (
    Dict,
    Sequence,
)

from pydantic import (
    BaseModel,
    Field,
)

from taskrelay.agent.planner_interface import load_planner
from taskrelay.core.protocol import emit_file
from taskrelay.core.schema import Conversation
from taskrelay.tools import (
    ToolOptions,
    register_tool,
)

logger = logging.getLogger(__name__)

SPEAKERS = ("Sarah", "Brian")

_PARENTHETICAL = re.compile(r"\(.*\)")
_MARKDOWN = re.compile(r"[*_\[\]]")


class ScriptValidationError(ValueError):
    """Raised when a generated script is not in strict ``Speaker: dialogue`` form."""


class PodcastScriptArgs(BaseModel):
    """Arguments of ``generate_podcast_script``."""

    topic: str = Field(..., description="The main topic or theme of the podcast")
    news_data: str = Field(
        ..., description="Concatenated or summarized news articles from the web search"
    )


def validate_podcast_script(script: str, speakers: Sequence[str] = SPEAKERS) -> None:
    """
    Check that *script* is ready for TTS.

    Raises
    ------
    ScriptValidationError
        With a message pointing at the first offending line.
    """
    if not script or not script.strip():
        raise ScriptValidationError("Script is empty.")

    speaker_re = re.compile(r"^(" + "|".join(re.escape(s) for s in speakers) + r"): .")
    lines = script.strip().split("\n")

    first = lines[0].strip()
    if not speaker_re.match(first):
        raise ScriptValidationError(
            f'Script starts with invalid text (preamble). Got: "{first[:50]}..."'
        )

    for number, raw_line in enumerate(lines, start=1):
        line = raw_line.strip()
        if not line:
            continue  # blank lines are allowed for spacing
        if not speaker_re.match(line):
            raise ScriptValidationError(
                f"Invalid line {number}: Line does not start with a valid speaker "
                f'(e.g., "{speakers[0]}: "). Got: "{line[:50]}..."'
            )
        if _PARENTHETICAL.search(line) or _MARKDOWN.search(line):
            raise ScriptValidationError(
                f"Invalid line {number}: Line contains parenthetical direction or markdown. "
                f'Got: "{line[:50]}..."'
            )


def build_script_prompt(topic: str, news_data: str, speakers: Sequence[str] = SPEAKERS) -> str:
    host, guest = speakers[0], speakers[1]
    return f"""\
You are an expert podcast writer.
Your task is to write an engaging, conversational podcast script between the host "{host}" and the \
guest "{guest}", about the topic "{topic}".

Use the following recent news data as context:
---
{news_data}
---

Content Guidelines:
- The script should be 1 to 2 minutes long (approx. 200 to 250 words).
- Use a natural, dynamic back-and-forth dialogue.
- Include curiosity hooks, questions, empathetic reactions based on context.
- Reference the main points from the news data accurately.
- End with a clear takeaway or reflection.

VERY STRICT OUTPUT FORMAT
- The output MUST be ONLY the dialogue script.
- Each line of dialogue MUST start with the speaker's name and a colon, e.g., "{host}: " or \
"{guest}: ".
- Do NOT include any other text, titles, descriptions, commentary, or markdown.
- Do NOT include stage directions, sound effects, or parentheticals like (laughs) or (pauses).
- The response MUST begin with the very first line of dialogue.
"""


async def generate_podcast_script_text(topic: str, news_data: str) -> str:
    """Ask the LLM for a script and validate it."""
    conversation = Conversation()
    conversation.add_user(build_script_prompt(topic, news_data))
    response = await load_planner().generate(conversation, tools=[])
    raw_script = response.text or ""

    try:
        validate_podcast_script(raw_script)
    except ScriptValidationError as exc:
        logger.error("[SCRIPT_VALIDATION_FAILED] %s", exc)
        raise ScriptValidationError(
            f'Generated script failed validation: {exc} Raw script: "{raw_script[:200]}..."'
        ) from exc

    logger.info("[SCRIPT_VALIDATION_PASSED] Script is valid for TTS.")
    return raw_script.strip()


@register_tool("generate_podcast_script", PodcastScriptArgs)
async def generate_podcast_script(args: PodcastScriptArgs, options: ToolOptions) -> Dict[str, str]:
    """
    Takes recent news search results and writes an engaging podcast script with 2 speakers.
    """
    options.emit(f"[SCRIPT] Generating podcast for topic: {args.topic}")
    script = await generate_podcast_script_text(args.topic, args.news_data)
    emit_file(options.emit, "generate_podcast_script", "podcast_script.txt", script)
    return {"script": script}

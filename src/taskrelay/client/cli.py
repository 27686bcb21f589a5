"""CLI client for the taskrelay API."""

from __future__ import annotations

import logging
import time
from typing import (
    Optional,
    Tuple,
)

import httpx

from taskrelay.client.stream_reader import (
    StreamResult,
    run_task,
)
from taskrelay.common import (
    AnsiColors,
    colored_print,
    tag_color,
)
from taskrelay.config import settings
from taskrelay.core.schema import FileArtifact

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def print_log_line(line: str) -> None:
    """Print one log line, coloured by its tag."""
    colored_print(line, tag_color(line))


def print_file(artifact: FileArtifact) -> None:
    colored_print(
        f"📄 {artifact.filename} ({artifact.tool}, {len(artifact.content)} chars)", AnsiColors.GREEN
    )


def print_result(result: StreamResult) -> None:
    if result.files:
        colored_print("\nFiles:", AnsiColors.YELLOW)
        for artifact in result.files:
            colored_print(f"  - {artifact.filename} [{artifact.tool}]", AnsiColors.YELLOW)
    if result.final_output is None:
        colored_print("⚠️ The run ended without a final answer.", AnsiColors.RED)
        return
    if not result.completed:
        colored_print("⚠️ Tool loop limit reached; answer may be incomplete.", AnsiColors.RED)
    colored_print(f"\n🤖 {result.final_output}", AnsiColors.YELLOW)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def stream_prompt(prompt: str, max_retries: int = 5) -> Optional[StreamResult]:
    """Send *prompt* to the API, printing lines as they arrive; retry while the API starts."""
    base_url = f"http://localhost:{settings.API_PORT}"

    for attempt in range(max_retries):
        try:
            return run_task(prompt, base_url=base_url, on_log=print_log_line, on_file=print_file)
        except httpx.ConnectError:
            if attempt == max_retries - 1:
                break
            retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
            logger.info(
                "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                retry_delay,
                attempt + 1,
                max_retries,
            )
            time.sleep(retry_delay)
        except httpx.HTTPError as exc:
            logger.error("API request error: %s", exc)
            colored_print(f"Error talking to API: {exc}", AnsiColors.RED)
            return None

    colored_print(f"Failed to connect to API after {max_retries} attempts", AnsiColors.RED)
    return None


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    colored_print(
        "\n🔮 taskrelay shell - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN
    )
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        result = stream_prompt(user_msg)
        if result is not None:
            print_result(result)


if __name__ == "__main__":
    run_cli()

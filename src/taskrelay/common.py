"""Terminal colouring shared by the CLI client and the server banner."""

from enum import Enum
from typing import Any


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    GREY = "\033[90m"


TAG_COLORS = {
    "[ERROR]": AnsiColors.RED,
    "[STEP]": AnsiColors.BLUE,
    "[LOG]": AnsiColors.BLUE,
    "[PLAN]": AnsiColors.BLUE,
    "[FUNC]": AnsiColors.YELLOW,
    "[ARGS]": AnsiColors.YELLOW,
    "[DONE]": AnsiColors.GREEN,
    "[COMPLETE]": AnsiColors.GREEN,
    "[INCOMPLETE]": AnsiColors.RED,
}
"""Colour per protocol tag; lines with any other tag print in grey."""


def tag_color(line: str) -> AnsiColors:
    """Pick the colour for a protocol line from its leading tag (leading whitespace ignored)."""
    clean = line.lstrip()
    for tag, color in TAG_COLORS.items():
        if clean.startswith(tag):
            return color
    return AnsiColors.GREY


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end

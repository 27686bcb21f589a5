"""
Line protocol used on the streaming response.

Every event is one newline-terminated line that starts with a tag such as ``[LOG]`` or ``[FILE]``.
Log lines are free text, ``[FILE]`` lines carry a single-line JSON object describing a
:class:`~taskrelay.core.schema.FileArtifact`, and ``[COMPLETE]`` / ``[INCOMPLETE]`` mark the start
of the final answer (which may span the rest of the stream).

The decoding side lives in :mod:`taskrelay.client.stream_reader`.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import (
    AsyncIterator,
    Callable,
    Optional,
)

from taskrelay.core.schema import FileArtifact

logger = logging.getLogger(__name__)

Emit = Callable[[str], None]
"""Callback that appends one protocol line to the outgoing stream."""


class ProtocolTag(str, Enum):
    """Tags recognised on the stream."""

    LOG = "LOG"
    STEP = "STEP"
    FUNC = "FUNC"
    ARGS = "ARGS"
    FILE = "FILE"
    ERROR = "ERROR"
    DONE = "DONE"
    COMPLETE = "COMPLETE"
    INCOMPLETE = "INCOMPLETE"
    PLAN = "PLAN"
    SANDBOX = "SANDBOX"

    @property
    def marker(self) -> str:
        return f"[{self.value}]"


COMPLETION_TAGS = (ProtocolTag.COMPLETE, ProtocolTag.INCOMPLETE)


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------
def format_line(tag: ProtocolTag | str, message: str = "") -> str:
    """Return ``[TAG] message`` (or just ``[TAG]`` when *message* is empty)."""
    marker = tag.marker if isinstance(tag, ProtocolTag) else f"[{tag}]"
    return f"{marker} {message}" if message else marker


def file_line(artifact: FileArtifact) -> str:
    """Encode *artifact* as a ``[FILE]`` line; JSON escaping keeps it on one physical line."""
    return format_line(ProtocolTag.FILE, artifact.model_dump_json())


def completion_line(text: str, completed: bool = True, exhausted_marker: str = "INCOMPLETE") -> str:
    """
    Build the line that opens the final answer.

    Parameters
    ----------
    text:
        The final answer.  It may contain newlines; the client joins everything from this line to
        the end of the stream.
    completed:
        ``True`` when the loop reached DONE.  ``False`` for BOUND_EXHAUSTED, in which case
        *exhausted_marker* (``"INCOMPLETE"`` or ``"COMPLETE"``) selects the tag.
    """
    tag = ProtocolTag.COMPLETE if completed else ProtocolTag(exhausted_marker)
    return format_line(tag, text)


def emit_file(emit: Emit, tool: str, filename: str, content: str) -> FileArtifact:
    """Announce a file artifact on the stream and return it."""
    artifact = FileArtifact(tool=tool, filename=filename, content=content)
    emit(file_line(artifact))
    logger.debug("Emitted file %s from %s (%d chars)", filename, tool, len(content))
    return artifact


# ---------------------------------------------------------------------------
# Channel between the orchestration task and the response writer
# ---------------------------------------------------------------------------
class LineChannel:
    """
    Single-consumer queue of protocol lines.

    The producer side (:meth:`emit`) is a plain callable so it can be handed to tools as their
    ``emit`` option; the consumer side is an async iterator drained by the HTTP response.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._closed = False

    def emit(self, line: str) -> None:
        if self._closed:
            raise RuntimeError("Cannot emit on a closed channel.")
        logger.debug("emit: %s", line[:200])
        self._queue.put_nowait(line)

    __call__ = emit

    def close(self) -> None:
        """Signal end of stream; idempotent."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self._closed

    async def lines(self) -> AsyncIterator[str]:
        """Yield lines in emission order until the channel is closed."""
        while True:
            line = await self._queue.get()
            if line is None:
                break
            yield line

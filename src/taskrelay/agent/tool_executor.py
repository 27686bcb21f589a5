"""Dispatches tool calls through a :class:`~taskrelay.tools.ToolRegistry` and wraps errors."""

import inspect
import json
import logging
from typing import Any

from taskrelay.core.protocol import (
    Emit,
    ProtocolTag,
    format_line,
)
from taskrelay.core.schema import (
    ToolCall,
    ToolResult,
)
from taskrelay.tools import (
    ToolOptions,
    ToolRegistry,
)

logger = logging.getLogger(__name__)


def safe_preview(value: Any, max_chars: int = 400) -> str:
    """Stringify *value* (JSON for non-strings) and cut it to *max_chars*."""
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text[:max_chars] + "..." if len(text) > max_chars else text


def _one_line(text: str) -> str:
    return " ".join(text.splitlines())


async def execute_tool(registry: ToolRegistry, call: ToolCall, emit: Emit) -> ToolResult:
    """
    Look up ``call.name`` in *registry* and invoke it with ``call.args``.

    Parameters
    ----------
    registry:
        Tools available for this run.
    call:
        The call requested by the model.  Arguments are passed to the handler untouched.
    emit:
        Forwarded to the handler as ``options.emit``; also used for ``[ERROR]`` lines.

    Returns
    -------
    ToolResult
        The handler's return value, or an error result when the tool is unknown or fails.  This
        function does not raise for tool-level problems; the model gets a structured error it can
        reason about instead.
    """
    handler = registry.get(call.name)
    if handler is None:
        message = f"Unknown function call: {call.name}"
        logger.warning(message)
        emit(format_line(ProtocolTag.ERROR, message))
        return ToolResult(name=call.name, error=message, call_id=call.id)

    try:
        logger.debug("Executing tool '%s' with args=%s", call.name, safe_preview(call.args, 200))
        result = handler(call.args, ToolOptions(emit=emit))
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Unhandled error in tool '%s'", call.name)
        message = str(exc) or type(exc).__name__
        emit(format_line(ProtocolTag.ERROR, f"{call.name}: {_one_line(message)}"))
        return ToolResult(name=call.name, error=message, call_id=call.id)

    logger.info("Tool '%s' returned: %s", call.name, safe_preview(result, 200))
    return ToolResult(name=call.name, response=result, call_id=call.id)

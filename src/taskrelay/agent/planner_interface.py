"""
Planner interface for taskrelay.

This module is the only place that *directly* calls an LLM.  Everything else (orchestrator, tools,
streaming) stays model-agnostic and talks to a planner through one primitive:

    await planner.generate(conversation, tools) -> LLMResponse

The conversation is replayed in full on every call; planners keep no state between calls.

We support three back-ends out of the box:

1. **Gemini** via the Generative Language REST API (``httpx``).
2. **OpenAI** chat completions with function tools.
3. **Anthropic** messages with tool use.

Additional providers can be added by subclassing :class:`BasePlanner` and registering via
:func:`register_planner`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
    Type,
)

import httpx

from taskrelay.config import settings
from taskrelay.core.schema import (
    Conversation,
    LLMResponse,
    ToolCall,
    ToolDefinition,
    ToolResult,
    Turn,
)

logger = logging.getLogger(__name__)


class PlannerError(RuntimeError):
    """Raised when the LLM call itself fails (network, auth, malformed reply)."""


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PLANNER_REGISTRY: dict[str, Type["BasePlanner"]] = {}


def register_planner(name: str) -> Callable:
    """Decorator to register a planner class under *name*."""

    def wrapper(cls: Type["BasePlanner"]) -> Type["BasePlanner"]:
        _PLANNER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_planner(name: str | None = None) -> "BasePlanner":
    """
    Factory that returns an instantiated planner.

    Fallback order:
    1. *name* arg
    2. ``settings.PLANNER`` env option
    3. default: ``"gemini"``
    """

    target = name or getattr(settings, "PLANNER", "gemini")
    cls = _PLANNER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Planner '{target}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BasePlanner(ABC):
    """Abstract planner: conversation + tool catalogue -> text and/or tool calls."""

    @abstractmethod
    async def generate(
        self, conversation: Conversation, tools: Sequence[ToolDefinition] = ()
    ) -> LLMResponse:
        """
        Run one model turn over the whole *conversation*.

        Raises
        ------
        PlannerError
            If the provider cannot be reached or rejects the request.
        """


def _result_object(result: ToolResult) -> Dict[str, Any]:
    """Function responses must be JSON objects for most providers."""
    payload = result.payload()
    return payload if isinstance(payload, dict) else {"result": payload}


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _parse_arguments(raw: str | None) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Model produced non-JSON tool arguments: %s", raw[:200])
        return {}
    return args if isinstance(args, dict) else {}


# ---------------------------------------------------------------------------
# Concrete planners
# ---------------------------------------------------------------------------
@register_planner("gemini")
class GeminiPlanner(BasePlanner):
    """
    Gemini function-calling planner over the REST API.

    Parameters
    ----------
    transport:
        Optional httpx transport (e.g. ``httpx.MockTransport``) used instead of the network.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    @staticmethod
    def _declaration(tool: ToolDefinition) -> Dict[str, Any]:
        decl: Dict[str, Any] = {"name": tool.name, "description": tool.description}
        if tool.parameters:
            decl["parameters"] = {
                "type": "OBJECT",
                "properties": {
                    name: {"type": param.type.upper(), "description": param.description}
                    for name, param in tool.parameters.items()
                },
                "required": [name for name, param in tool.parameters.items() if param.required],
            }
        return decl

    @staticmethod
    def _content(turn: Turn) -> Dict[str, Any]:
        if turn.role == "model":
            parts: List[Dict[str, Any]] = []
            if turn.raw is not None:
                # Replay the candidate content as received, minus calls that were not answered.
                seen_call = False
                for part in turn.raw.get("parts", []):
                    if "functionCall" in part:
                        if seen_call:
                            continue
                        seen_call = True
                    parts.append(part)
                return {**turn.raw, "parts": parts}
            if turn.text:
                parts.append({"text": turn.text})
            if turn.tool_call is not None:
                parts.append(
                    {"functionCall": {"name": turn.tool_call.name, "args": turn.tool_call.args}}
                )
            return {"role": "model", "parts": parts}
        if turn.role == "tool" and turn.tool_result is not None:
            response = {"name": turn.tool_result.name, "response": _result_object(turn.tool_result)}
            return {"role": "user", "parts": [{"functionResponse": response}]}
        return {"role": "user", "parts": [{"text": turn.text or ""}]}

    async def generate(
        self, conversation: Conversation, tools: Sequence[ToolDefinition] = ()
    ) -> LLMResponse:
        if not settings.GEMINI_API_KEY:
            raise PlannerError("GEMINI_API_KEY is not set.")

        endpoint = f"{settings.GEMINI_ENDPOINT}/models/{settings.GEMINI_MODEL}:generateContent"
        payload: Dict[str, Any] = {"contents": [self._content(t) for t in conversation.turns]}
        if tools:
            payload["tools"] = [{"functionDeclarations": [self._declaration(t) for t in tools]}]

        try:
            async with httpx.AsyncClient(
                timeout=settings.LLM_TIMEOUT, transport=self._transport
            ) as client:
                resp = await client.post(
                    endpoint, json=payload, headers={"x-goog-api-key": settings.GEMINI_API_KEY}
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Gemini request error: %s", exc)
            raise PlannerError(f"Error calling Gemini: {exc}") from exc

        candidates = data.get("candidates") or []
        if not candidates:
            logger.warning("Gemini returned no candidates: %s", data.get("promptFeedback"))
            return LLMResponse()

        content = candidates[0].get("content") or {"role": "model", "parts": []}
        texts: List[str] = []
        calls: List[ToolCall] = []
        for part in content.get("parts", []):
            if "functionCall" in part:
                fn = part["functionCall"]
                calls.append(
                    ToolCall(name=fn.get("name", ""), args=fn.get("args") or {}, id=fn.get("id"))
                )
            elif "text" in part and not part.get("thought"):
                texts.append(part["text"])

        logger.debug("Gemini response: text=%d chars, calls=%s", sum(map(len, texts)), calls)
        return LLMResponse(text="".join(texts) or None, tool_calls=calls, raw_turn=content)


@register_planner("openai")
class OpenAIPlanner(BasePlanner):
    """OpenAI chat-completions planner with function tools."""

    @staticmethod
    def _message(turn: Turn) -> Dict[str, Any]:
        if turn.role == "model":
            message: Dict[str, Any] = {"role": "assistant", "content": turn.text}
            if turn.tool_call is not None:
                # Only the honoured call is replayed so every call has a matching tool message.
                message["tool_calls"] = [
                    {
                        "id": turn.tool_call.id,
                        "type": "function",
                        "function": {
                            "name": turn.tool_call.name,
                            "arguments": _dumps(turn.tool_call.args),
                        },
                    }
                ]
            return message
        if turn.role == "tool" and turn.tool_result is not None:
            return {
                "role": "tool",
                "tool_call_id": turn.tool_result.call_id,
                "content": _dumps(turn.tool_result.payload()),
            }
        return {"role": "user", "content": turn.text or ""}

    async def generate(
        self, conversation: Conversation, tools: Sequence[ToolDefinition] = ()
    ) -> LLMResponse:
        import openai  # pylint: disable=import-outside-toplevel

        if not settings.OPENAI_API_KEY:
            raise PlannerError("OPENAI_API_KEY is not set.")
        client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.LLM_TIMEOUT)
        kwargs: Dict[str, Any] = {
            "model": settings.OPENAI_MODEL,
            "messages": [self._message(t) for t in conversation.turns],
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.json_schema(),
                    },
                }
                for t in tools
            ]

        try:
            resp = await client.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            logger.error("OpenAI planner error: %s", exc)
            raise PlannerError(f"Error calling OpenAI: {exc}") from exc

        message = resp.choices[0].message
        calls = [
            ToolCall(name=tc.function.name, args=_parse_arguments(tc.function.arguments), id=tc.id)
            for tc in (message.tool_calls or [])
        ]
        logger.debug("OpenAI response: %s", message)
        return LLMResponse(
            text=message.content or None,
            tool_calls=calls,
            raw_turn=message.model_dump(exclude_none=True),
        )


@register_planner("anthropic")
class AnthropicPlanner(BasePlanner):
    """Anthropic Claude planner with tool use."""

    @staticmethod
    def _message(turn: Turn) -> Dict[str, Any]:
        if turn.role == "model":
            blocks: List[Dict[str, Any]] = []
            if turn.text:
                blocks.append({"type": "text", "text": turn.text})
            if turn.tool_call is not None:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": turn.tool_call.id,
                        "name": turn.tool_call.name,
                        "input": turn.tool_call.args,
                    }
                )
            return {"role": "assistant", "content": blocks}
        if turn.role == "tool" and turn.tool_result is not None:
            block = {
                "type": "tool_result",
                "tool_use_id": turn.tool_result.call_id,
                "content": _dumps(turn.tool_result.payload()),
                "is_error": turn.tool_result.is_error,
            }
            return {"role": "user", "content": [block]}
        return {"role": "user", "content": turn.text or ""}

    async def generate(
        self, conversation: Conversation, tools: Sequence[ToolDefinition] = ()
    ) -> LLMResponse:
        import anthropic  # pylint: disable=import-outside-toplevel

        if not settings.ANTHROPIC_API_KEY:
            raise PlannerError("ANTHROPIC_API_KEY is not set.")
        client = anthropic.AsyncAnthropic(
            api_key=settings.ANTHROPIC_API_KEY, timeout=settings.LLM_TIMEOUT
        )
        kwargs: Dict[str, Any] = {
            "model": settings.ANTHROPIC_MODEL,
            "max_tokens": 8192,
            "messages": [self._message(t) for t in conversation.turns],
        }
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.json_schema()}
                for t in tools
            ]

        try:
            response = await client.messages.create(**kwargs)
        except anthropic.AnthropicError as exc:
            logger.error("Anthropic planner error: %s", exc)
            raise PlannerError(f"Error calling Anthropic: {exc}") from exc

        texts: List[str] = []
        calls: List[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(name=block.name, args=dict(block.input or {}), id=block.id))

        logger.debug("Anthropic response: %s", response.content)
        return LLMResponse(
            text="".join(texts) or None,
            tool_calls=calls,
            raw_turn=response.model_dump(include={"role", "content"}),
        )

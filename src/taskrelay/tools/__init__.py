"""
Tool registry for taskrelay.

This module provides a decorator to register tools and a registry to look them up by name.
Every tool declares a pydantic model for its arguments; the model's JSON schema doubles as the
parameter schema shown to the LLM, and incoming arguments are validated against it before the tool
body runs.

A handler is called as ``handler(arguments, options)`` where *arguments* is the raw mapping produced
by the model and *options* is a :class:`ToolOptions` carrying the ``emit`` callback. Handlers may be
plain functions or coroutines.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Type,
    Union,
)

from pydantic import BaseModel

from taskrelay.core.protocol import Emit
from taskrelay.core.schema import (
    ToolDefinition,
    ToolParameter,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolOptions:
    """Side-channel handed to every tool invocation."""

    emit: Emit


ToolHandler = Callable[[Mapping[str, Any], ToolOptions], Union[Any, Awaitable[Any]]]


class RegisteredTool(NamedTuple):
    """A tool definition paired with its invocation handler."""

    definition: ToolDefinition
    handler: ToolHandler


TOOL_REGISTRY: Dict[str, RegisteredTool] = {}
"""Global catalogue of built-in tools, filled by :func:`register_tool`."""


# ---------------------------------------------------------------------------
# Schema extraction
# ---------------------------------------------------------------------------
def _json_type(prop: Mapping[str, Any]) -> str:
    if "type" in prop:
        return str(prop["type"])
    # Optional[X] is rendered as anyOf [X, null]
    for option in prop.get("anyOf", []):
        if option.get("type") and option["type"] != "null":
            return str(option["type"])
    return "string"


def parameters_from_model(args_model: Type[BaseModel]) -> Dict[str, ToolParameter]:
    """Flatten a pydantic model's JSON schema into ``name -> ToolParameter``."""
    schema = args_model.model_json_schema()
    required = set(schema.get("required", []))
    return {
        name: ToolParameter(
            type=_json_type(prop),
            description=prop.get("description", ""),
            required=name in required,
        )
        for name, prop in schema.get("properties", {}).items()
    }


def define_tool(
    name: str,
    args_model: Type[BaseModel],
    fn: Callable[[Any, ToolOptions], Any],
    description: str | None = None,
) -> RegisteredTool:
    """
    Wrap *fn* so it accepts the raw argument mapping and validates it with *args_model*.

    Parameters
    ----------
    name:
        The tool name the model will use.
    args_model:
        Pydantic model describing the arguments.  A ``ValidationError`` raised while parsing the
        model's arguments propagates like any other tool failure.
    fn:
        ``fn(args, options)`` where *args* is an *args_model* instance.
    description:
        Shown to the model; defaults to the docstring of *fn*.
    """
    definition = ToolDefinition(
        name=name,
        description=description or inspect.cleandoc(fn.__doc__ or ""),
        parameters=parameters_from_model(args_model),
    )

    def handler(arguments: Mapping[str, Any], options: ToolOptions) -> Any:
        return fn(args_model.model_validate(dict(arguments or {})), options)

    return RegisteredTool(definition, handler)


def register_tool(
    name: str, args_model: Type[BaseModel], description: str | None = None
) -> Callable:
    """
    Register a tool function with the given name in :data:`TOOL_REGISTRY`.

    Used as a decorator:

        @register_tool("my_tool", MyToolArgs)
        async def my_tool(args: MyToolArgs, options: ToolOptions) -> dict:
            options.emit("[LOG] working")
            return {...}

    Raises
    ------
    ValueError
        If a tool with the same name is already registered.
    """
    if name in TOOL_REGISTRY:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger.debug("Registering tool '%s'", name)

    def wrapper(fn: Callable) -> Callable:
        TOOL_REGISTRY[name] = define_tool(name, args_model, fn, description)
        return fn

    return wrapper


# ---------------------------------------------------------------------------
# Per-run registry
# ---------------------------------------------------------------------------
class ToolRegistry:
    """Read-only name -> handler lookup built once per orchestration run."""

    def __init__(self, tools: Iterable[RegisteredTool] = ()) -> None:
        self._tools: Dict[str, RegisteredTool] = {}
        for tool in tools:
            self.register(tool.definition, tool.handler)

    def register(self, definition: ToolDefinition, handler: ToolHandler) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Tool '{definition.name}' is already registered.")
        self._tools[definition.name] = RegisteredTool(definition, handler)

    def has(self, name: str | None) -> bool:
        return name is not None and name in self._tools

    def get(self, name: str | None) -> Optional[ToolHandler]:
        tool = self._tools.get(name) if name is not None else None
        return tool.handler if tool else None

    @property
    def definitions(self) -> List[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


BUILTIN_TOOLS = (
    "run_python_in_sandbox",
    "search_web",
    "generate_podcast_script",
    "generate_voice",
)
"""Built-in tools in the order they are offered to the model."""


def _load_builtin_tools() -> None:
    # Importing the modules registers their tools.
    # pylint: disable=import-outside-toplevel,unused-import
    from taskrelay.tools import sandbox  # noqa: F401
    from taskrelay.tools import web_search  # noqa: F401
    from taskrelay.tools import script_writer  # noqa: F401
    from taskrelay.tools import voice  # noqa: F401


def build_registry(names: Iterable[str] | None = None) -> ToolRegistry:
    """
    Snapshot the built-in catalogue into a fresh :class:`ToolRegistry`.

    Parameters
    ----------
    names:
        Restrict the registry to these tools (in this order).  ``None`` means
        :data:`BUILTIN_TOOLS`, independent of the order the tool modules were imported in.

    Raises
    ------
    ValueError
        If a requested name is not a known tool.
    """
    _load_builtin_tools()
    names = list(BUILTIN_TOOLS if names is None else names)
    missing = [name for name in names if name not in TOOL_REGISTRY]
    if missing:
        raise ValueError(f"Unknown tools requested: {', '.join(missing)}")
    return ToolRegistry(TOOL_REGISTRY[name] for name in names)

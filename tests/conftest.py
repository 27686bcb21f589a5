"""Shared fixtures and test doubles."""

from typing import (
    Any,
    Iterable,
    List,
    Sequence,
)

import pytest

from taskrelay.agent.planner_interface import BasePlanner
from taskrelay.config import settings
from taskrelay.core.schema import (
    Conversation,
    LLMResponse,
    ToolCall,
    ToolDefinition,
    ToolParameter,
)
from taskrelay.tools import (
    ToolOptions,
    ToolRegistry,
)


class ScriptedPlanner(BasePlanner):
    """Planner double that replays canned responses and records what it was sent."""

    def __init__(self, responses: Iterable[Any]) -> None:
        self.responses: List[Any] = list(responses)
        self.conversations: List[Conversation] = []
        self.tools_seen: List[List[ToolDefinition]] = []

    async def generate(
        self, conversation: Conversation, tools: Sequence[ToolDefinition] = ()
    ) -> LLMResponse:
        self.conversations.append(conversation.model_copy(deep=True))
        self.tools_seen.append(list(tools))
        if not self.responses:
            raise AssertionError("Unexpected extra LLM call")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def call(name: str, call_id: str | None = None, **args: Any) -> LLMResponse:
    """Model response requesting one tool."""
    return LLMResponse(tool_calls=[ToolCall(name=name, args=args, id=call_id)])


def text(answer: str | None) -> LLMResponse:
    """Model response with final text only."""
    return LLMResponse(text=answer)


def sandbox_definition() -> ToolDefinition:
    return ToolDefinition(
        name="run_python_in_sandbox",
        description="Executes Python code.",
        parameters={"code": ToolParameter(type="string", description="Code", required=True)},
    )


class Recorder:
    """Collects emitted protocol lines."""

    def __init__(self) -> None:
        self.lines: List[str] = []

    def __call__(self, line: str) -> None:
        self.lines.append(line)

    def tagged(self, tag: str) -> List[str]:
        return [line for line in self.lines if line.startswith(f"[{tag}]")]


@pytest.fixture
def emit() -> Recorder:
    return Recorder()


@pytest.fixture
def python_registry() -> ToolRegistry:
    """Registry holding only a fake ``run_python_in_sandbox``."""

    def run_python(args: Any, options: ToolOptions) -> dict:
        options.emit("[CODE] " + args["code"])
        return {"stdout": "4\n", "stderr": ""}

    registry = ToolRegistry()
    registry.register(sandbox_definition(), run_python)
    return registry


@pytest.fixture(autouse=True)
def _offline_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Never talk to real providers or write into the working directory from tests."""
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path / "data"))
    for key in (
        "GEMINI_API_KEY",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "SERPER_API_KEY",
        "ELEVENLABS_API_KEY",
    ):
        monkeypatch.setattr(settings, key, None)
    monkeypatch.setattr(settings, "SANDBOX_MODE", "mock")
    monkeypatch.setattr(settings, "PLAN_FIRST", False)
    monkeypatch.setattr(settings, "MAX_TOOL_LOOPS", 4)
    monkeypatch.setattr(settings, "EXHAUSTED_MARKER", "INCOMPLETE")

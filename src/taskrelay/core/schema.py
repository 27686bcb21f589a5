"""
Schema definitions for model <-> orchestrator <-> tool messages.

These data models serve as the contract between the LLM backends, the orchestration loop, the tool
registry and the streaming client.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


# ---------------------------------------------------------------------------
# Tool catalogue
# ---------------------------------------------------------------------------
class ToolParameter(BaseModel):
    """A single named parameter of a tool."""

    model_config = ConfigDict(frozen=True)

    type: str = "string"
    description: str = ""
    required: bool = False


class ToolDefinition(BaseModel):
    """Name, description and parameter schema of a tool offered to the model."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique key into the tool registry")
    description: str = ""
    parameters: Dict[str, ToolParameter] = Field(default_factory=dict)

    def json_schema(self) -> Dict[str, Any]:
        """Return the parameters as a JSON-schema ``object`` (used for function declarations)."""
        return {
            "type": "object",
            "properties": {
                name: {"type": param.type, "description": param.description}
                for name, param in self.parameters.items()
            },
            "required": [name for name, param in self.parameters.items() if param.required],
        }


# ---------------------------------------------------------------------------
# Calls and results
# ---------------------------------------------------------------------------
class ToolCall(BaseModel):
    """A call that the model wants the orchestrator to execute."""

    name: str = Field(..., description="Registered tool name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Arguments for the tool")
    id: Optional[str] = Field(None, description="Provider-assigned call id, if any")


class ToolResult(BaseModel):
    """What is fed back to the model after a tool ran (success payload or error)."""

    name: str
    response: Any = None
    error: Optional[str] = None
    call_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def payload(self) -> Any:
        """Function-response content as the model sees it."""
        if self.error is not None:
            return {"error": self.error}
        return self.response


class FileArtifact(BaseModel):
    """A side artifact produced by a tool for the UI, keyed by ``filename``."""

    tool: str = ""
    filename: str
    content: str


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
class Turn(BaseModel):
    """One entry of the transcript: a user message, a model message or a tool response."""

    role: Literal["user", "model", "tool"]
    text: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[ToolResult] = None
    raw: Optional[Dict[str, Any]] = None  # provider payload, replayed verbatim when possible


class LLMResponse(BaseModel):
    """Normalised result of one LLM call."""

    text: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    raw_turn: Optional[Dict[str, Any]] = None

    @property
    def first_call(self) -> Optional[ToolCall]:
        # Only the first requested call is honoured per iteration.
        return self.tool_calls[0] if self.tool_calls else None


class Conversation(BaseModel):
    """Append-only transcript, replayed in full on every LLM call."""

    turns: List[Turn] = Field(default_factory=list)

    def add_user(self, text: str) -> Turn:
        turn = Turn(role="user", text=text)
        self.turns.append(turn)
        return turn

    def add_model(self, response: LLMResponse) -> Turn:
        turn = Turn(
            role="model",
            text=response.text,
            tool_call=response.first_call,
            raw=response.raw_turn,
        )
        self.turns.append(turn)
        return turn

    def add_tool_result(self, result: ToolResult) -> Turn:
        """
        Append a tool-response turn.

        Raises
        ------
        ValueError
            If the previous turn is not a model turn that requested a tool.
        """
        if not self.turns or self.turns[-1].role != "model" or self.turns[-1].tool_call is None:
            raise ValueError("A tool response must directly follow the model turn requesting it.")
        turn = Turn(role="tool", tool_result=result)
        self.turns.append(turn)
        return turn

    def __len__(self) -> int:
        return len(self.turns)


# ---------------------------------------------------------------------------
# Run outcome
# ---------------------------------------------------------------------------
class LoopState(str, Enum):
    """States of the orchestration loop.  DONE and BOUND_EXHAUSTED are terminal."""

    AWAITING_MODEL = "awaiting_model"
    DISPATCHING_TOOL = "dispatching_tool"
    DONE = "done"
    BOUND_EXHAUSTED = "bound_exhausted"


class RunOutcome(BaseModel):
    """Final answer of one orchestration run plus how the loop terminated."""

    text: str
    state: LoopState
    iterations: int = 0

    @property
    def completed(self) -> bool:
        return self.state is LoopState.DONE

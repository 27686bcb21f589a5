"""
Tests for the orchestration loop.

Run with:
$ pytest -q
"""

import asyncio

import pytest
from conftest import (
    ScriptedPlanner,
    call,
    sandbox_definition,
    text,
)

from taskrelay.agent.orchestrator import (
    NO_FINAL_TEXT,
    NO_TEXT,
    Orchestrator,
    execute_with_function_calling,
)
from taskrelay.agent.planner_interface import PlannerError
from taskrelay.core.schema import (
    LLMResponse,
    LoopState,
    RunOutcome,
    ToolCall,
)
from taskrelay.tools import ToolRegistry


def _run(orchestrator: Orchestrator, prompt: str, emit) -> RunOutcome:
    return asyncio.run(orchestrator.run(prompt, emit))


def test_end_to_end_compute_with_code(python_registry, emit) -> None:
    """A single tool round-trip yields the model's final answer and the expected line order."""
    planner = ScriptedPlanner(
        [call("run_python_in_sandbox", code="print(2+2)"), text("The answer is 4.")]
    )

    answer = asyncio.run(
        execute_with_function_calling(
            "compute 2+2 using code", emit, planner=planner, registry=python_registry
        )
    )

    assert answer == "The answer is 4."
    tags = [line.split("]")[0] + "]" for line in emit.lines]
    assert tags == ["[STEP]", "[STEP]", "[FUNC]", "[ARGS]", "[CODE]", "[DONE]"]
    assert emit.lines[2] == "[FUNC] run_python_in_sandbox"
    assert emit.lines[3] == '[ARGS] {"code": "print(2+2)"}'
    assert emit.lines[4] == "[CODE] print(2+2)"


def test_tool_result_is_replayed_to_model(python_registry, emit) -> None:
    """The second LLM call sees user, model and tool turns in that order."""
    planner = ScriptedPlanner(
        [call("run_python_in_sandbox", call_id="c1", code="print(2+2)"), text("4")]
    )

    _run(Orchestrator(planner=planner, registry=python_registry), "compute", emit)

    first, second = planner.conversations
    assert [t.role for t in first.turns] == ["user"]
    assert "compute" in first.turns[0].text
    assert "run_python_in_sandbox" in first.turns[0].text  # tool catalogue in system prompt
    assert [t.role for t in second.turns] == ["user", "model", "tool"]
    result = second.turns[2].tool_result
    assert result.response == {"stdout": "4\n", "stderr": ""}
    assert result.call_id == "c1"
    assert planner.tools_seen[0] == [sandbox_definition()]


def test_unknown_tool_is_fed_back_as_error(python_registry, emit) -> None:
    """Unknown tool names become an error result; the loop keeps going."""
    planner = ScriptedPlanner([call("does_not_exist", x=1), text("Sorry, cannot do that.")])

    outcome = _run(Orchestrator(planner=planner, registry=python_registry), "go", emit)

    assert outcome.state is LoopState.DONE
    assert outcome.text == "Sorry, cannot do that."
    assert emit.tagged("ERROR") == ["[ERROR] Unknown function call: does_not_exist"]
    tool_turn = planner.conversations[1].turns[-1]
    assert tool_turn.tool_result.payload() == {"error": "Unknown function call: does_not_exist"}


def test_handler_exception_is_absorbed(emit) -> None:
    """A raising handler yields an ERROR line with its message and an error result."""

    async def broken(args, options):
        raise RuntimeError("sandbox exploded")

    registry = ToolRegistry()
    registry.register(sandbox_definition(), broken)
    planner = ScriptedPlanner([call("run_python_in_sandbox", code="1/0"), text("It failed.")])

    outcome = _run(Orchestrator(planner=planner, registry=registry), "go", emit)

    assert outcome.text == "It failed."
    assert emit.tagged("ERROR") == ["[ERROR] run_python_in_sandbox: sandbox exploded"]
    assert planner.conversations[1].turns[-1].tool_result.error == "sandbox exploded"


def test_repeated_failures_run_until_bound(emit) -> None:
    """Every failing dispatch is reported and the loop stops at the bound, not earlier."""

    def broken(args, options):
        raise ValueError("nope")

    registry = ToolRegistry()
    registry.register(sandbox_definition(), broken)
    planner = ScriptedPlanner([call("run_python_in_sandbox", code="x")] * 5)

    outcome = _run(Orchestrator(planner=planner, registry=registry, max_tool_loops=4), "go", emit)

    assert outcome.state is LoopState.BOUND_EXHAUSTED
    assert len(emit.tagged("ERROR")) == 4
    assert all("nope" in line for line in emit.tagged("ERROR"))


def test_bound_exhaustion_is_not_done(python_registry, emit) -> None:
    """A model that never stops calling tools ends in BOUND_EXHAUSTED with the fallback text."""
    planner = ScriptedPlanner([call("run_python_in_sandbox", code="print(1)")] * 5)

    outcome = _run(
        Orchestrator(planner=planner, registry=python_registry, max_tool_loops=4), "loop", emit
    )

    assert outcome.state is LoopState.BOUND_EXHAUSTED
    assert not outcome.completed
    assert outcome.text == NO_FINAL_TEXT
    assert outcome.iterations == 4
    assert len(emit.tagged("FUNC")) == 4
    assert emit.tagged("DONE") == []
    assert planner.responses == []  # 1 initial call + 4 follow-ups


def test_bound_exhaustion_keeps_last_text(python_registry, emit) -> None:
    """The last response's text is returned when the bound is hit."""
    last = LLMResponse(
        text="partial answer", tool_calls=[ToolCall(name="run_python_in_sandbox", args={})]
    )
    planner = ScriptedPlanner([call("run_python_in_sandbox", code="1"), last])

    outcome = _run(
        Orchestrator(planner=planner, registry=python_registry, max_tool_loops=1), "go", emit
    )

    assert outcome.state is LoopState.BOUND_EXHAUSTED
    assert outcome.text == "partial answer"


@pytest.mark.parametrize("bound", [1, 2, 3, 4])
def test_func_lines_never_exceed_bound(python_registry, emit, bound) -> None:
    """Number of [FUNC] lines is at most the loop bound."""
    planner = ScriptedPlanner([call("run_python_in_sandbox", code="x")] * (bound + 1))

    _run(Orchestrator(planner=planner, registry=python_registry, max_tool_loops=bound), "go", emit)

    assert len(emit.tagged("FUNC")) <= bound


def test_only_first_tool_call_is_honoured(python_registry, emit) -> None:
    """Extra tool calls in one response are ignored."""
    both = LLMResponse(
        tool_calls=[
            ToolCall(name="run_python_in_sandbox", args={"code": "a"}),
            ToolCall(name="search_web", args={"query": "b"}),
        ]
    )
    planner = ScriptedPlanner([both, text("done")])

    _run(Orchestrator(planner=planner, registry=python_registry), "go", emit)

    assert emit.tagged("FUNC") == ["[FUNC] run_python_in_sandbox"]
    model_turn = planner.conversations[1].turns[1]
    assert model_turn.tool_call.name == "run_python_in_sandbox"


def test_args_preview_is_truncated_but_handler_gets_full_value(emit) -> None:
    """Only the [ARGS] preview is cut; the handler still receives the whole argument."""
    received = {}

    def capture(args, options):
        received.update(args)
        return {"ok": True}

    registry = ToolRegistry()
    registry.register(sandbox_definition(), capture)
    code = "x" * 1000
    planner = ScriptedPlanner([call("run_python_in_sandbox", code=code), text("ok")])

    _run(Orchestrator(planner=planner, registry=registry, args_preview_chars=50), "go", emit)

    (args_line,) = emit.tagged("ARGS")
    assert args_line == "[ARGS] " + ('{"code": "' + code)[:50] + "..."
    assert received["code"] == code


def test_empty_final_text_uses_placeholder(python_registry, emit) -> None:
    """A text-only response without text returns the placeholder."""
    planner = ScriptedPlanner([text(None)])

    outcome = _run(Orchestrator(planner=planner, registry=python_registry), "hi", emit)

    assert outcome.state is LoopState.DONE
    assert outcome.text == NO_TEXT
    assert outcome.iterations == 0


def test_planner_failure_propagates(python_registry, emit) -> None:
    """Transport-level failures are not absorbed by the loop."""
    planner = ScriptedPlanner([PlannerError("network down")])

    with pytest.raises(PlannerError, match="network down"):
        _run(Orchestrator(planner=planner, registry=python_registry), "hi", emit)


def test_plan_first_emits_plan_without_touching_conversation(python_registry, emit) -> None:
    """The optional plan pre-pass emits [PLAN] and is not part of the transcript."""
    planner = ScriptedPlanner([text("1. run code\n2. answer"), text("final")])

    outcome = _run(
        Orchestrator(planner=planner, registry=python_registry, plan_first=True), "go", emit
    )

    assert outcome.text == "final"
    assert emit.lines[0] == "[STEP] Generating plan..."
    assert emit.tagged("PLAN") == ["[PLAN] \n1. run code\n2. answer"]
    assert planner.tools_seen[0] == []
    assert len(planner.conversations[1].turns) == 1


def test_plan_failure_is_reported_and_loop_continues(python_registry, emit) -> None:
    """A failing plan call is reported but does not abort the run."""
    planner = ScriptedPlanner([PlannerError("quota"), text("final")])

    outcome = _run(
        Orchestrator(planner=planner, registry=python_registry, plan_first=True), "go", emit
    )

    assert outcome.state is LoopState.DONE
    assert emit.tagged("ERROR") == ["[ERROR] Failed to generate plan: quota"]

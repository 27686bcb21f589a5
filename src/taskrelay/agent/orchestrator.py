"""Main orchestration loop for taskrelay."""

from __future__ import annotations

import logging

from taskrelay.agent.planner_interface import (
    BasePlanner,
    PlannerError,
    load_planner,
)
from taskrelay.agent.prompts import (
    build_initial_message,
    build_plan_prompt,
)
from taskrelay.agent.tool_executor import (
    execute_tool,
    safe_preview,
)
from taskrelay.config import settings
from taskrelay.core.protocol import (
    Emit,
    ProtocolTag,
    format_line,
)
from taskrelay.core.schema import (
    Conversation,
    LoopState,
    RunOutcome,
    ToolDefinition,
)
from taskrelay.tools import (
    ToolRegistry,
    build_registry,
)

logger = logging.getLogger(__name__)

NO_TEXT = "(no text)"
NO_FINAL_TEXT = "(no final text)"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class Orchestrator:
    """
    Drive a bounded sequence of LLM calls and tool dispatches for one prompt.

    The loop owns its :class:`Conversation` for the duration of :meth:`run`.  At most
    ``max_tool_loops`` tools are dispatched; if the model still asks for a tool after that, the run
    ends in ``BOUND_EXHAUSTED`` instead of raising.

    Parameters
    ----------
    planner:
        LLM backend; defaults to :func:`load_planner`.
    registry:
        Tools offered to the model; defaults to the full built-in catalogue.
    max_tool_loops, args_preview_chars, plan_first:
        Override the matching settings.
    """

    def __init__(
        self,
        planner: BasePlanner | None = None,
        registry: ToolRegistry | None = None,
        max_tool_loops: int | None = None,
        args_preview_chars: int | None = None,
        plan_first: bool | None = None,
    ) -> None:
        self.planner = planner if planner is not None else load_planner()
        self.registry = registry if registry is not None else build_registry()
        self.max_tool_loops = (
            max_tool_loops if max_tool_loops is not None else settings.MAX_TOOL_LOOPS
        )
        self.args_preview_chars = (
            args_preview_chars if args_preview_chars is not None else settings.ARGS_PREVIEW_CHARS
        )
        self.plan_first = plan_first if plan_first is not None else settings.PLAN_FIRST

    async def _generate_plan(self, prompt: str, tools: list[ToolDefinition], emit: Emit) -> None:
        """Tool-less pre-pass; its text is shown to the user but not added to the conversation."""
        emit(format_line(ProtocolTag.STEP, "Generating plan..."))
        conversation = Conversation()
        conversation.add_user(build_plan_prompt(prompt, tools))
        try:
            response = await self.planner.generate(conversation, tools=[])
        except PlannerError as exc:
            emit(format_line(ProtocolTag.ERROR, f"Failed to generate plan: {exc}"))
            return
        emit(format_line(ProtocolTag.PLAN, "\n" + (response.text or "No plan could be generated.")))

    async def run(self, prompt: str, emit: Emit) -> RunOutcome:
        """
        Answer *prompt*, emitting progress lines through *emit*.

        Returns
        -------
        RunOutcome
            Final text plus the terminal state (``DONE`` or ``BOUND_EXHAUSTED``).

        Raises
        ------
        PlannerError
            If an LLM call fails.  Tool failures never escape this method.
        """
        tools = self.registry.definitions

        if self.plan_first:
            await self._generate_plan(prompt, tools, emit)

        emit(format_line(ProtocolTag.STEP, "Initializing agent with system prompt..."))
        conversation = Conversation()
        conversation.add_user(build_initial_message(prompt, tools))

        emit(format_line(ProtocolTag.STEP, "Sending prompt to model..."))
        state = LoopState.AWAITING_MODEL
        response = await self.planner.generate(conversation, tools)
        dispatched = 0

        while True:
            call = response.first_call
            if call is None:
                state = LoopState.DONE
                emit(format_line(ProtocolTag.DONE, "Model text-only response."))
                logger.info("Run finished after %d tool call(s)", dispatched)
                return RunOutcome(
                    text=response.text or NO_TEXT, state=state, iterations=dispatched
                )

            if dispatched >= self.max_tool_loops:
                state = LoopState.BOUND_EXHAUSTED
                logger.warning(
                    "Tool loop bound (%d) exhausted; model still wants '%s'",
                    self.max_tool_loops,
                    call.name,
                )
                return RunOutcome(
                    text=response.text or NO_FINAL_TEXT, state=state, iterations=dispatched
                )

            if len(response.tool_calls) > 1:
                logger.info(
                    "Model requested %d tool calls; only '%s' is honoured",
                    len(response.tool_calls),
                    call.name,
                )

            state = LoopState.DISPATCHING_TOOL
            logger.debug("%s: %s", state.value, call.name)
            dispatched += 1
            emit(format_line(ProtocolTag.FUNC, call.name))
            emit(format_line(ProtocolTag.ARGS, safe_preview(call.args, self.args_preview_chars)))
            result = await execute_tool(self.registry, call, emit)

            conversation.add_model(response)
            conversation.add_tool_result(result)

            state = LoopState.AWAITING_MODEL
            logger.debug("Loop %d/%d -> %s", dispatched, self.max_tool_loops, state.value)
            response = await self.planner.generate(conversation, tools)


async def execute_with_function_calling(prompt: str, emit: Emit, **kwargs) -> str:
    """Convenience wrapper returning only the final text of :meth:`Orchestrator.run`."""
    outcome = await Orchestrator(**kwargs).run(prompt, emit)
    return outcome.text

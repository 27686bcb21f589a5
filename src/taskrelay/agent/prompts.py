"""Prompt templates for the orchestrator."""

from typing import Sequence

from taskrelay.core.schema import ToolDefinition

SYSTEM_PROMPT_TEMPLATE = """\
You are a helpful and autonomous AI assistant. Your goal is to achieve the user's request by using \
the tools provided.

Here are your available tools:
---
{tools}
---

Your process must be:
1.  **Analyze**: Carefully analyze the user's request.
2.  **Plan**: Formulate a brief, step-by-step plan in your head of which tools you will use.
3.  **Execute**: Execute the plan by calling the necessary tools, one at a time.
4.  **Respond**: Once all steps are complete, or if you cannot proceed, provide a final, \
comprehensive answer to the user based on the tool outputs.

- Only call one function at a time.
- Carefully review the tool outputs before deciding on the next step.
- If the user asks to create a podcast, the full flow is typically: 1. `search_web`, \
2. `generate_podcast_script`, 3. `generate_voice`.
- If you need to run code, use `run_python_in_sandbox`.
"""

PLAN_PROMPT_TEMPLATE = """\
You are a helpful AI assistant. Based on the user's request, outline a brief, step-by-step plan of \
which tools you will use to accomplish the goal. Do not use any tools yet, just provide the \
text-based plan.

Available tools: {tool_names}

User Request: "{prompt}"
"""


def format_tools_for_prompt(tools: Sequence[ToolDefinition]) -> str:
    """Render name, description and a flattened parameter list per tool."""
    if not tools:
        return "No tools are available."

    blocks = []
    for tool in tools:
        if tool.parameters:
            params = "\n".join(
                f"    - {name} ({param.type}): {param.description}"
                for name, param in tool.parameters.items()
            )
        else:
            params = "    - No parameters."
        blocks.append(
            f"- **{tool.name}**:\n"
            f"  - *Description*: {tool.description}\n"
            f"  - *Parameters*:\n{params}"
        )
    return "\n\n".join(blocks)


def create_system_prompt(tools: Sequence[ToolDefinition]) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(tools=format_tools_for_prompt(tools))


def build_initial_message(prompt: str, tools: Sequence[ToolDefinition]) -> str:
    """System instruction and raw request combined into the first user turn."""
    return f'{create_system_prompt(tools)}\n\n---START OF REQUEST---\n\nUser Request: "{prompt}"'


def build_plan_prompt(prompt: str, tools: Sequence[ToolDefinition]) -> str:
    names = ", ".join(tool.name for tool in tools) or "none"
    return PLAN_PROMPT_TEMPLATE.format(tool_names=names, prompt=prompt)

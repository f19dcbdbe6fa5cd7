"""Dispatches the tool calls requested by the reasoning backend and wraps errors."""

import logging
from typing import (
    Iterable,
    List,
    Sequence,
)

from craig.core.schema import (
    AvailableToolDefinition,
    Message,
    ToolCall,
    ToolResponse,
)
from craig.core.state import fold_messages
from craig.tools import BaseTool

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


def find_tool(tools: Iterable[BaseTool], name: str) -> BaseTool | None:
    """Return the first tool called exactly *name*, or *None*."""
    for tool in tools:
        if tool.name == name:
            return tool
    return None


def _run_tool(tools: Sequence[BaseTool], call: ToolCall) -> str:
    tool = find_tool(tools, call.tool_name)
    if tool is None:
        raise ToolExecutionError(f"Could not find tool with name '{call.tool_name}'")

    args = call.args_dict()
    try:
        logger.debug("Executing tool '%s' with args=%s", call.tool_name, args)
        result = tool.call(args)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", call.tool_name)
        raise ToolExecutionError(f"There was an error calling the tool: {exc}") from exc
    return result if isinstance(result, str) else str(result)


def execute_tool(tools: Sequence[BaseTool], call: ToolCall) -> ToolResponse:
    """
    Resolve *call* against *tools* and run it.

    Parameters
    ----------
    tools:
        The configured tool set.  If two tools share a name the first one wins.
    call:
        The call requested by the backend.

    Returns
    -------
    ToolResponse
        The tool's string verbatim on success; otherwise a textual error naming the missing tool
        or embedding the tool's error.  Tool failures never propagate to the turn.
    """
    try:
        result = _run_tool(tools, call)
    except ToolExecutionError as exc:
        logger.warning("Tool failure: %s", exc)
        return ToolResponse(response=str(exc))
    logger.info("Tool '%s' returned: %s", call.tool_name, result)
    return ToolResponse(response=result)


def execute_tool_calls(tools: Sequence[BaseTool], calls: Iterable[ToolCall]) -> List[ToolResponse]:
    """Run *calls* strictly in order, one response per call."""
    return [execute_tool(tools, call) for call in calls]


def tool_definitions(tools: Iterable[BaseTool]) -> List[AvailableToolDefinition]:
    """Serializable views of *tools*, in order."""
    return [AvailableToolDefinition(name=t.name, description=t.description()) for t in tools]


def tools_have_changed(history: Iterable[Message], tools: Iterable[BaseTool]) -> bool:
    """
    Whether the tool-name set differs from the one last announced in *history*.

    Descriptions are ignored.  A history without any announcement counts as changed.
    """
    announced = fold_messages(history).tool_defs
    if announced is None:
        return True
    return {d.name for d in announced} != {t.name for t in tools}

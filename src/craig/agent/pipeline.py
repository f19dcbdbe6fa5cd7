"""
Encode agent history for a backend and decode what comes back.

A :class:`OneShotPipeline` turns an input into chat messages, asks a :class:`Model` once, and parses
the raw text.  The agent uses two of them per turn: a JSON pipeline for ReAct steps and a string
pipeline for the final answer.
"""

from __future__ import annotations

import json
import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    List,
    Type,
    TypeVar,
)

from jinja2 import (
    Environment,
    StrictUndefined,
)
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_validator,
)

from craig.agent import prompts
from craig.agent.planner_interface import (
    ChatMessage,
    Model,
    ModelResponseError,
    Role,
)
from craig.core.schema import (
    AgentMode,
    AvailableToolDefinition,
    InsertedSkill,
    Message,
    MessageConverter,
    ToolCall,
    ToolResponse,
    convert_messages,
)
from craig.core.state import (
    ConversationState,
    fold_messages,
)

logger = logging.getLogger(__name__)

_JINJA = Environment(undefined=StrictUndefined, keep_trailing_newline=True, autoescape=False)

InT = TypeVar("InT")
OutT = TypeVar("OutT")
ShapeT = TypeVar("ShapeT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Structured reasoning shape
# ---------------------------------------------------------------------------
class ReasonResponse(BaseModel):
    """What the backend must return in reason-action mode."""

    reasoning: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _none_reasoning(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _none_tool_calls(cls, value: Any) -> Any:
        return [] if value is None else value


def render_system_prompt(template: str, personality: str, skills: List[InsertedSkill]) -> str:
    """Render a system template with the current personality and resident skills."""
    return _JINJA.from_string(template).render(personality=personality, skills=skills)


def render_tool_calls(reasoning: str, tool_calls: List[ToolCall]) -> str:
    """The JSON text of a past reasoning step, as the backend originally produced it."""
    payload = {
        "reasoning": reasoning,
        "tool_calls": [call.model_dump(mode="json") for call in tool_calls],
    }
    return json.dumps(payload, indent=4, ensure_ascii=False)


def render_tool_defs(tools: List[AvailableToolDefinition]) -> str:
    if not tools:
        return prompts.NO_TOOLS_AVAILABLE
    blocks = []
    for tool in tools:
        lines = [f"- Tool `{tool.name}`"]
        lines.extend(f"  - {line}" for line in tool.description)
        blocks.append("\n".join(lines))
    return prompts.TOOLS_AVAILABLE_HEADER + "\n".join(blocks)


# ---------------------------------------------------------------------------
# Encoder
# ---------------------------------------------------------------------------
class MessagesEncoder(MessageConverter):
    """
    Converts agent history into backend chat messages.

    The system prompt is rendered against *state*, the fold of the whole history, so it always
    shows the current personality and resident skills.  Skill and personality messages are
    therefore not sent on their own.
    """

    def __init__(self, state: ConversationState):
        self._state = state
        self.result: List[ChatMessage] = []

    def _emit(self, role: Role, content: str) -> None:
        self.result.append(ChatMessage(role=role, content=content))

    def add_system(self, template: str) -> None:
        prompt = render_system_prompt(template, self._state.personality, self._state.skills)
        self._emit(Role.SYSTEM, prompt)

    def add_user(self, content: str) -> None:
        self._emit(Role.USER, content)

    def add_agent(self, content: str) -> None:
        self._emit(Role.ASSISTANT, content)

    def add_tool_calls(self, reasoning: str, tool_calls: List[ToolCall]) -> None:
        self._emit(Role.ASSISTANT, render_tool_calls(reasoning, tool_calls))

    def add_tool_response(self, responses: List[ToolResponse]) -> None:
        sep = prompts.TOOL_RESPONSE_SEPARATOR
        self._emit(Role.SYSTEM, "Tool Responses:" + sep + sep.join(r.response for r in responses))

    def add_mode_switch(self, mode: AgentMode) -> None:
        if mode == AgentMode.REASON_ACT:
            self._emit(Role.SYSTEM, prompts.REASON_ACT_INSTRUCTION)
        elif mode == AgentMode.ANSWER_USER:
            self._emit(Role.SYSTEM, prompts.ANSWER_USER_INSTRUCTION)
        # Collecting context is an audit marker only; the backend is not told about it

    def add_notification(self, kind: str, content: str) -> None:
        self._emit(Role.SYSTEM, prompts.NOTIFICATION_TEMPLATE.format(kind=kind, content=content))

    def add_skills(self, skills: List[InsertedSkill]) -> None:
        pass

    def add_tool_defs(self, tools: List[AvailableToolDefinition]) -> None:
        self._emit(Role.SYSTEM, render_tool_defs(tools))

    def add_personality(self, personality: str) -> None:
        pass


def encode_history(messages: Iterable[Message]) -> List[ChatMessage]:
    """Encode a full agent history for the reasoning backend."""
    messages = list(messages)
    encoder = MessagesEncoder(fold_messages(messages))
    convert_messages(encoder, messages)
    return encoder.result


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------
def _sanitize_json_string(content: str) -> str:
    """Clean up JSON strings returned by LLMs."""
    # Strip markdown code blocks if present
    if "```" in content:
        match = re.search(r"```(?:json)?\s*(.+?)```", content, re.DOTALL)
        if match:
            content = match.group(1).strip()

    # Remove control characters except whitespace
    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    # Find the outermost matching braces, skipping braces inside strings
    open_idx = content.find("{")
    if open_idx >= 0:
        depth = 0
        in_string = False
        escaped = False
        for i in range(open_idx, len(content)):
            ch = content[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return content[open_idx : i + 1]

    return content


class Parser(ABC, Generic[OutT]):
    """Turns raw backend text into a value."""

    @abstractmethod
    def parse(self, content: str) -> OutT:
        """Parse *content*, raising :class:`ModelResponseError` if it is unusable."""


class StringParser(Parser[str]):
    """Returns the backend text unchanged."""

    def parse(self, content: str) -> str:
        return content


class JsonParser(Parser[ShapeT]):
    """Validates backend text against a pydantic model."""

    def __init__(self, shape: Type[ShapeT]):
        self.shape = shape

    def parse(self, content: str) -> ShapeT:
        try:
            return self.shape.model_validate_json(_sanitize_json_string(content))
        except ValidationError as exc:
            logger.error("Failed to parse LLM response: %s", exc)
            raise ModelResponseError(
                f"Backend response is not a valid {self.shape.__name__}: {content!r}"
            ) from exc


class OneShotPipeline(Generic[InT, OutT]):
    """Encode an input, make exactly one model call, and parse the response."""

    def __init__(
        self,
        encoder: Callable[[InT], List[ChatMessage]],
        parser: Parser[OutT],
        model: Model,
    ):
        self.encoder = encoder
        self.parser = parser
        self.model = model

    def call(self, value: InT) -> OutT:
        messages = self.encoder(value)
        logger.debug("Sending %d messages to %s", len(messages), type(self.model).__name__)
        content = self.model.respond(messages)
        return self.parser.parse(content)

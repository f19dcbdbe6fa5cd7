"""
Schema definitions for the agent conversation history.

These data models are the contract between the orchestration loop, the skill selector, the
backend encoder and persistence.  Every message kind carries a literal ``kind`` tag so the history
can be stored as a discriminated union, and every kind is processed through
:class:`MessageConverter` rather than ad hoc type inspection.
"""

from __future__ import annotations

from abc import (
    ABC,
    abstractmethod,
)
from enum import Enum
from typing import (
    Annotated,
    Any,
    Iterable,
    List,
    Literal,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

FOREVER = 999999999999999999
"""Residency given to persistently configured skills; never decays to zero in practice."""


class UnknownMessageKindError(TypeError):
    """Raised when something that is not a known message kind appears in a history."""


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
class AgentMode(str, Enum):
    """Phase marker controlling which instructions the reasoning backend sees."""

    COLLECT_CONTEXT = "collect_context"
    REASON_ACT = "reason_act"
    ANSWER_USER = "answer_user"


class Skill(BaseModel):
    """An injectable unit of knowledge with an optional applicability condition."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Unique snake_case identifier")
    when: str = Field("", description="When the skill applies; empty means always (persistent)")
    content: str = Field("", description="Text shown to the agent once the skill is inserted")
    remain_for: int = Field(0, description="Turns the skill stays resident after insertion")

    @property
    def is_conditional(self) -> bool:
        """True when the skill must be picked by the selector rather than always applied."""
        return self.when != ""


class InsertedSkill(Skill):
    """A skill that is resident in the conversation, with its remaining residency."""

    now_remain_for: int = 0

    @classmethod
    def insert(cls, skill: Skill, remain_for: int | None = None) -> "InsertedSkill":
        """Create a resident copy of *skill* (defaults to the skill's own ``remain_for``)."""
        return cls(
            key=skill.key,
            when=skill.when,
            content=skill.content,
            remain_for=skill.remain_for,
            now_remain_for=skill.remain_for if remain_for is None else remain_for,
        )

    def as_skill(self) -> Skill:
        """Return the catalog skill this entry was inserted from."""
        return Skill(key=self.key, when=self.when, content=self.content, remain_for=self.remain_for)


class ToolCallArg(BaseModel):
    """A single named argument decoded from the backend's structured output."""

    arg_name: str
    arg_value: Any = None


class ToolCall(BaseModel):
    """A call that the reasoning backend wants the agent to execute."""

    tool_name: str = Field(..., description="Requested tool name")
    tool_args: List[ToolCallArg] = Field(default_factory=list)

    def args_dict(self) -> dict[str, Any]:
        """Flatten the argument list into keyword form (later duplicates win)."""
        return {arg.arg_name: arg.arg_value for arg in self.tool_args}


class ToolResponse(BaseModel):
    """The textual outcome of one tool call."""

    response: str


class AvailableToolDefinition(BaseModel):
    """Serializable view of a tool, used to announce tool-set changes."""

    name: str
    description: List[str] = Field(default_factory=list)


class Notification(BaseModel):
    """An out-of-band notification queued before the next user message."""

    kind: str
    content: str


# ---------------------------------------------------------------------------
# Converter contract
# ---------------------------------------------------------------------------
class MessageConverter(ABC):
    """
    Reads through a conversation, one method per message kind.

    Subclasses must implement every method; a converter that forgets a kind cannot be
    instantiated.
    """

    @abstractmethod
    def add_system(self, template: str) -> None:
        """Handle a system prompt template."""

    @abstractmethod
    def add_user(self, content: str) -> None:
        """Handle a user message."""

    @abstractmethod
    def add_agent(self, content: str) -> None:
        """Handle a final answer shown to the user."""

    @abstractmethod
    def add_tool_calls(self, reasoning: str, tool_calls: List[ToolCall]) -> None:
        """Handle a structured reasoning step."""

    @abstractmethod
    def add_tool_response(self, responses: List[ToolResponse]) -> None:
        """Handle the aggregated results of a reasoning step."""

    @abstractmethod
    def add_mode_switch(self, mode: AgentMode) -> None:
        """Handle a mode transition."""

    @abstractmethod
    def add_notification(self, kind: str, content: str) -> None:
        """Handle an out-of-band notification."""

    @abstractmethod
    def add_skills(self, skills: List[InsertedSkill]) -> None:
        """Handle the resident skill set of a turn."""

    @abstractmethod
    def add_tool_defs(self, tools: List[AvailableToolDefinition]) -> None:
        """Handle a tool-set announcement."""

    @abstractmethod
    def add_personality(self, personality: str) -> None:
        """Handle a personality change."""


# ---------------------------------------------------------------------------
# Message kinds
# ---------------------------------------------------------------------------
class _BaseMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    def convert(self, converter: MessageConverter) -> None:  # pragma: no cover - abstract
        raise NotImplementedError


class SystemMessage(_BaseMessage):
    """System prompt template, rendered with the current personality and skills."""

    kind: Literal["system"] = "system"
    template: str

    def convert(self, converter: MessageConverter) -> None:
        converter.add_system(self.template)


class UserMessage(_BaseMessage):
    kind: Literal["user"] = "user"
    content: str

    def convert(self, converter: MessageConverter) -> None:
        converter.add_user(self.content)


class AgentMessage(_BaseMessage):
    kind: Literal["agent"] = "agent"
    content: str

    def convert(self, converter: MessageConverter) -> None:
        converter.add_agent(self.content)


class ToolCallsMessage(_BaseMessage):
    """One ReAct step; an empty ``tool_calls`` list ends the loop."""

    kind: Literal["tool_calls"] = "tool_calls"
    reasoning: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)

    def convert(self, converter: MessageConverter) -> None:
        converter.add_tool_calls(self.reasoning, list(self.tool_calls))


class ToolResponseMessage(_BaseMessage):
    kind: Literal["tool_response"] = "tool_response"
    responses: List[ToolResponse] = Field(default_factory=list)

    def convert(self, converter: MessageConverter) -> None:
        converter.add_tool_response(list(self.responses))


class ModeSwitchMessage(_BaseMessage):
    kind: Literal["mode_switch"] = "mode_switch"
    mode: AgentMode

    def convert(self, converter: MessageConverter) -> None:
        converter.add_mode_switch(self.mode)


class NotificationMessage(_BaseMessage):
    kind: Literal["notification"] = "notification"
    notification_kind: str
    content: str

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationMessage":
        return cls(notification_kind=notification.kind, content=notification.content)

    def convert(self, converter: MessageConverter) -> None:
        converter.add_notification(self.notification_kind, self.content)


class SkillResidencyMessage(_BaseMessage):
    """The full set of skills resident for a turn."""

    kind: Literal["skills"] = "skills"
    skills: List[InsertedSkill] = Field(default_factory=list)

    def convert(self, converter: MessageConverter) -> None:
        converter.add_skills(list(self.skills))


class ToolDefsChangedMessage(_BaseMessage):
    kind: Literal["available_tools"] = "available_tools"
    tools: List[AvailableToolDefinition] = Field(default_factory=list)

    def convert(self, converter: MessageConverter) -> None:
        converter.add_tool_defs(list(self.tools))


class PersonalityMessage(_BaseMessage):
    kind: Literal["personality"] = "personality"
    personality: str

    def convert(self, converter: MessageConverter) -> None:
        converter.add_personality(self.personality)


Message = Annotated[
    Union[
        SystemMessage,
        UserMessage,
        AgentMessage,
        ToolCallsMessage,
        ToolResponseMessage,
        ModeSwitchMessage,
        NotificationMessage,
        SkillResidencyMessage,
        ToolDefsChangedMessage,
        PersonalityMessage,
    ],
    Field(discriminator="kind"),
]
"""Closed union of every message kind that may live in agent history."""

MESSAGE_TYPES: tuple[type[_BaseMessage], ...] = (
    SystemMessage,
    UserMessage,
    AgentMessage,
    ToolCallsMessage,
    ToolResponseMessage,
    ModeSwitchMessage,
    NotificationMessage,
    SkillResidencyMessage,
    ToolDefsChangedMessage,
    PersonalityMessage,
)


def convert_messages(converter: MessageConverter, messages: Iterable[Message]) -> None:
    """
    Visit every message in order, calling the converter method matching its kind.

    Raises
    ------
    UnknownMessageKindError
        If an element of *messages* is not one of the known message kinds.
    """
    for msg in messages:
        if not isinstance(msg, MESSAGE_TYPES):
            raise UnknownMessageKindError(f"Unknown message type: {type(msg).__name__}")
        msg.convert(converter)

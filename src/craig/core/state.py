"""Fold a conversation history into its current state."""

from __future__ import annotations

from typing import (
    Iterable,
    List,
    Optional,
    Tuple,
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


class ConversationState(MessageConverter):
    """
    Derive the current personality, resident skills, tool set and mode from a history.

    Each kind overwrites the relevant piece of state, so after visiting a history the attributes
    reflect its latest messages.  ``turns`` keeps the user/agent dialogue as ``(role, text)``
    pairs, which is what the skill selector shows to its relevance model.
    """

    def __init__(self) -> None:
        self.personality: str = ""
        self.skills: List[InsertedSkill] = []
        self.tool_defs: Optional[List[AvailableToolDefinition]] = None
        self.mode: Optional[AgentMode] = None
        self.turns: List[Tuple[str, str]] = []

    def add_system(self, template: str) -> None:
        pass

    def add_user(self, content: str) -> None:
        self.turns.append(("user", content))

    def add_agent(self, content: str) -> None:
        self.turns.append(("agent", content))

    def add_tool_calls(self, reasoning: str, tool_calls: List[ToolCall]) -> None:
        pass

    def add_tool_response(self, responses: List[ToolResponse]) -> None:
        pass

    def add_mode_switch(self, mode: AgentMode) -> None:
        self.mode = mode

    def add_notification(self, kind: str, content: str) -> None:
        pass

    def add_skills(self, skills: List[InsertedSkill]) -> None:
        self.skills = list(skills)

    def add_tool_defs(self, tools: List[AvailableToolDefinition]) -> None:
        self.tool_defs = list(tools)

    def add_personality(self, personality: str) -> None:
        self.personality = personality


def fold_messages(messages: Iterable[Message]) -> ConversationState:
    """Return the :class:`ConversationState` after visiting *messages*."""
    state = ConversationState()
    convert_messages(state, messages)
    return state


def last_inserted_skills(messages: Iterable[Message]) -> List[InsertedSkill]:
    """Skills of the most recent skill-residency message (empty if there is none)."""
    return fold_messages(messages).skills


def last_personality(messages: Iterable[Message]) -> str:
    return fold_messages(messages).personality

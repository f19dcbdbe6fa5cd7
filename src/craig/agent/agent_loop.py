"""Main orchestration loop for CRAIG."""

from __future__ import annotations

import logging
from typing import (
    Any,
    Callable,
    Iterable,
    List,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

from craig.agent.pipeline import (
    JsonParser,
    OneShotPipeline,
    ReasonResponse,
    StringParser,
    encode_history,
)
from craig.agent.planner_interface import ModelBuilder
from craig.agent.prompts import SYSTEM_TEMPLATE
from craig.agent.skills import (
    SkillSelector,
    new_skill_selector,
    next_resident_skills,
    persistent_residency,
    split_skills,
)
from craig.agent.tool_executor import (
    execute_tool_calls,
    tool_definitions,
    tools_have_changed,
)
from craig.config import (
    DEFAULT_PERSONALITY,
    settings,
)
from craig.core.schema import (
    AgentMessage,
    AgentMode,
    Message,
    ModeSwitchMessage,
    Notification,
    NotificationMessage,
    PersonalityMessage,
    Skill,
    SkillResidencyMessage,
    SystemMessage,
    ToolCallsMessage,
    ToolDefsChangedMessage,
    ToolResponseMessage,
    UserMessage,
)
from craig.core.state import (
    fold_messages,
    last_inserted_skills,
)
from craig.tools import BaseTool

logger = logging.getLogger(__name__)


class ReActLoopLimitError(RuntimeError):
    """Raised when a turn needs more reasoning calls than the agent allows."""


# ---------------------------------------------------------------------------
# Listeners
# ---------------------------------------------------------------------------
@runtime_checkable
class MessageListener(Protocol):
    """Receives every message the agent appends to its history."""

    def on_message(self, msg: Message) -> None: ...


@runtime_checkable
class TextChunkListener(Protocol):
    """Receives the final answer text as it streams in."""

    def on_text_chunk(self, chunk: str) -> None: ...


MessageListenerLike = Union[MessageListener, Callable[[Message], Any]]
TextChunkListenerLike = Union[TextChunkListener, Callable[[str], Any]]


class _Listeners:
    """Best-effort fan-out to listeners; a failing listener never blocks the conversation."""

    def __init__(
        self,
        message_listeners: Iterable[MessageListenerLike],
        chunk_listeners: Iterable[TextChunkListenerLike],
    ):
        self._on_message = [
            l.on_message if isinstance(l, MessageListener) else l for l in message_listeners
        ]
        self._on_chunk = [
            l.on_text_chunk if isinstance(l, TextChunkListener) else l for l in chunk_listeners
        ]

    def send_message(self, msg: Message) -> None:
        for callback in self._on_message:
            try:
                callback(msg)
            except Exception:  # pylint: disable=broad-except
                logger.warning("Message listener failed", exc_info=True)

    def send_chunk(self, chunk: str) -> None:
        for callback in self._on_chunk:
            try:
                callback(chunk)
            except Exception:  # pylint: disable=broad-except
                logger.warning("Text chunk listener failed", exc_info=True)


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------
class Agent:
    """
    A ReAct conversation with a reasoning backend.

    Each :meth:`send` appends to an append-only history and runs the turn state machine:
    collect context (only with a skill catalog), reason and act until the backend stops calling
    tools, then answer the user.  An instance is not safe to use from several threads at once.
    """

    def __init__(
        self,
        model_builder: ModelBuilder,
        messages: Iterable[Message],
        *,
        tools: Iterable[BaseTool] = (),
        skills: Iterable[Skill] = (),
        dont_repeat_n: int | None = None,
        max_iterations: int | None = None,
        skill_selector: SkillSelector | None = None,
        message_listeners: Iterable[MessageListenerLike] = (),
        chunk_listeners: Iterable[TextChunkListenerLike] = (),
    ):
        self._model_builder = model_builder
        self._messages: List[Message] = list(messages)
        self._tools: List[BaseTool] = list(tools)
        self._catalog, _ = split_skills(skills)
        if dont_repeat_n is None:
            dont_repeat_n = settings.SKILL_DONT_REPEAT_N
        self._skill_selector = skill_selector or new_skill_selector(model_builder, dont_repeat_n)
        self.max_iterations = (
            max_iterations if max_iterations is not None else settings.MAX_REACT_ITERATIONS
        )
        self._message_listeners = list(message_listeners)
        self._chunk_listeners = list(chunk_listeners)

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #
    @classmethod
    def new(
        cls,
        model_builder: ModelBuilder,
        *,
        personality: str = DEFAULT_PERSONALITY,
        skills: Iterable[Skill] = (),
        **kwargs: Any,
    ) -> "Agent":
        """
        Start a fresh conversation.

        The history begins with the personality, the system prompt and the persistent skills
        (those without a ``when`` condition), which stay resident for the whole conversation.
        """
        skills = list(skills)
        _, persistent = split_skills(skills)
        messages: List[Message] = [
            PersonalityMessage(personality=personality),
            SystemMessage(template=SYSTEM_TEMPLATE),
            SkillResidencyMessage(skills=persistent_residency(persistent)),
        ]
        return cls(model_builder, messages, skills=skills, **kwargs)

    @classmethod
    def from_saved(
        cls, model_builder: ModelBuilder, messages: Iterable[Message], **kwargs: Any
    ) -> "Agent":
        """
        Continue a conversation from a saved history.

        Nothing is appended; the tools should match the ones the conversation was created with
        (any difference is announced on the next turn).  Persistent skills only become resident
        when a conversation starts, so persistent skills in *skills* that the saved history does
        not already hold are never shown; a warning names them.
        """
        messages = list(messages)
        skills = list(kwargs.pop("skills", ()))
        _, persistent = split_skills(skills)
        resident = {s.key for s in last_inserted_skills(messages)}
        missing = [s.key for s in persistent if s.key not in resident]
        if missing:
            logger.warning("Persistent skills not resident in the restored history: %s", missing)
        return cls(model_builder, messages, skills=skills, **kwargs)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def messages(self) -> List[Message]:
        """A copy of the history, oldest first."""
        return list(self._messages)

    @property
    def tools(self) -> List[BaseTool]:
        return list(self._tools)

    @property
    def mode(self) -> AgentMode | None:
        """The mode of the latest mode switch, or *None* before the first turn."""
        return fold_messages(self._messages).mode

    def add_tool(self, tool: BaseTool) -> None:
        """Make *tool* available; the change is announced on the next turn."""
        self._tools.append(tool)

    def remove_tool(self, name: str) -> bool:
        """Remove every tool called *name*; return whether any was removed."""
        kept = [t for t in self._tools if t.name != name]
        removed = len(kept) != len(self._tools)
        self._tools = kept
        return removed

    def send(
        self,
        text: str,
        *,
        notifications: Iterable[Notification] = (),
        message_listeners: Iterable[MessageListenerLike] = (),
        chunk_listeners: Iterable[TextChunkListenerLike] = (),
    ) -> str:
        """
        Run one turn for the user message *text* and return the final answer.

        Parameters
        ----------
        notifications:
            Out-of-band notifications added before the user message.
        message_listeners, chunk_listeners:
            Extra listeners for this turn, in addition to the agent's own.

        Raises
        ------
        Exception
            Any backend failure, unchanged.  Messages appended before the failure stay in the
            history.
        ReActLoopLimitError
            If ``max_iterations`` is set and the backend keeps calling tools.
        """
        listeners = _Listeners(
            [*self._message_listeners, *message_listeners],
            [*self._chunk_listeners, *chunk_listeners],
        )
        logger.info("Starting turn (history=%d messages)", len(self._messages))

        if tools_have_changed(self._messages, self._tools):
            logger.debug("Announcing tools: %s", [t.name for t in self._tools])
            self._add(listeners, ToolDefsChangedMessage(tools=tool_definitions(self._tools)))

        for notification in notifications:
            self._add(listeners, NotificationMessage.from_notification(notification))
        self._add(listeners, UserMessage(content=text))

        if self._catalog:
            self._add(listeners, ModeSwitchMessage(mode=AgentMode.COLLECT_CONTEXT))
            skills = next_resident_skills(self._skill_selector, self._catalog, self._messages)
            self._add(listeners, SkillResidencyMessage(skills=skills))

        self._add(listeners, ModeSwitchMessage(mode=AgentMode.REASON_ACT))
        self._react_loop(listeners)

        self._add(listeners, ModeSwitchMessage(mode=AgentMode.ANSWER_USER))
        answer = self._answer(listeners)
        self._add(listeners, AgentMessage(content=answer))
        logger.info("Turn finished (history=%d messages)", len(self._messages))
        return answer

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _add(self, listeners: _Listeners, *msgs: Message) -> None:
        self._messages.extend(msgs)
        for msg in msgs:
            listeners.send_message(msg)

    def _react_loop(self, listeners: _Listeners) -> None:
        calls_made = 0
        while True:
            if self.max_iterations is not None and calls_made >= self.max_iterations:
                raise ReActLoopLimitError(
                    f"Reached the limit of {self.max_iterations} reasoning calls in one turn"
                )
            step = self._reason()
            calls_made += 1
            self._add(listeners, step)
            if not step.tool_calls:
                break

            logger.info(
                "Backend requested %d tool calls: %s",
                len(step.tool_calls),
                [call.tool_name for call in step.tool_calls],
            )
            responses = execute_tool_calls(self._tools, step.tool_calls)
            self._add(listeners, ToolResponseMessage(responses=responses))

    def _reason(self) -> ToolCallsMessage:
        model = self._model_builder.build_reasoning_model(ReasonResponse, None, None)
        pipeline: OneShotPipeline[Sequence[Message], ReasonResponse] = OneShotPipeline(
            encode_history, JsonParser(ReasonResponse), model
        )
        result = pipeline.call(list(self._messages))
        return ToolCallsMessage(reasoning=result.reasoning, tool_calls=result.tool_calls)

    def _answer(self, listeners: _Listeners) -> str:
        model = self._model_builder.build_reasoning_model(None, None, listeners.send_chunk)
        pipeline: OneShotPipeline[Sequence[Message], str] = OneShotPipeline(
            encode_history, StringParser(), model
        )
        return pipeline.call(list(self._messages))

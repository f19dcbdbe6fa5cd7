"""Tests for the ReAct turn state machine."""

import logging

import pytest

from conftest import (
    RecordingTool,
    ScriptedModelBuilder,
    call,
    reason,
)

from craig.agent.agent_loop import (
    Agent,
    ReActLoopLimitError,
)
from craig.agent.planner_interface import ModelResponseError
from craig.core.schema import (
    AgentMessage,
    AgentMode,
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


def _kinds(messages):
    return [m.kind for m in messages]


def _count(agent, cls):
    return sum(isinstance(m, cls) for m in agent.messages())


def test_new_agent_history() -> None:
    """A fresh agent starts with the personality, the system prompt and persistent skills."""

    agent = Agent.new(ScriptedModelBuilder(), personality="You are Ada.")

    assert _kinds(agent.messages()) == ["personality", "system", "skills"]
    assert agent.messages()[0] == PersonalityMessage(personality="You are Ada.")
    assert isinstance(agent.messages()[1], SystemMessage)
    assert agent.mode is None


def test_turn_without_tool_calls(builder) -> None:
    """A step without tool calls goes straight to the final answer."""

    builder.answers.append("Hello there!")
    agent = Agent.new(builder)

    assert agent.send("hi") == "Hello there!"
    assert len(builder.reasoning_calls) == 1
    assert len(builder.answer_calls) == 1
    assert _kinds(agent.messages())[3:] == [
        "available_tools",
        "user",
        "mode_switch",
        "tool_calls",
        "mode_switch",
        "agent",
    ]
    assert agent.messages()[-1] == AgentMessage(content="Hello there!")
    assert agent.mode is AgentMode.ANSWER_USER


def test_react_loop_runs_tools(echo) -> None:
    """Tool calls are dispatched and their responses shown to the next reasoning call."""

    builder = ScriptedModelBuilder(
        reasoning=[reason(call("echo", x="y"), call("nope")), reason()], answers=["y!"]
    )
    agent = Agent.new(builder, tools=[echo])

    assert agent.send("Say y") == "y!"
    assert echo.calls == [{"x": "y"}]
    assert len(builder.reasoning_calls) == 2

    responses = [m for m in agent.messages() if isinstance(m, ToolResponseMessage)]
    assert len(responses) == 1
    assert [r.response for r in responses[0].responses] == [
        "y",
        "Could not find tool with name 'nope'",
    ]

    second_call = builder.reasoning_calls[1]
    assert second_call[-1].content.startswith("Tool Responses:")
    assert "Could not find tool with name 'nope'" in second_call[-1].content


def test_mode_order_with_skill_catalog(builder) -> None:
    """Collecting context happens only when there are conditional skills."""

    catalog = [Skill(key="tips", when="Advice is needed", content="Be kind")]
    agent = Agent.new(builder, skills=catalog)
    agent.send("hi")

    modes = [m.mode for m in agent.messages() if isinstance(m, ModeSwitchMessage)]
    assert modes == [AgentMode.COLLECT_CONTEXT, AgentMode.REASON_ACT, AgentMode.ANSWER_USER]
    assert _kinds(agent.messages())[4:7] == ["user", "mode_switch", "skills"]
    assert len(builder.relevance_calls) == 1

    plain = Agent.new(ScriptedModelBuilder())
    plain.send("hi")
    modes = [m.mode for m in plain.messages() if isinstance(m, ModeSwitchMessage)]
    assert modes == [AgentMode.REASON_ACT, AgentMode.ANSWER_USER]


def test_tool_announcements(builder, echo) -> None:
    """Tools are announced on the first turn and after each change of the name set."""

    agent = Agent.new(builder, tools=[echo])
    agent.send("one")
    assert _count(agent, ToolDefsChangedMessage) == 1

    agent.send("two")
    assert _count(agent, ToolDefsChangedMessage) == 1

    agent.add_tool(RecordingTool("shout", lambda args: "!"))
    agent.send("three")
    assert _count(agent, ToolDefsChangedMessage) == 2
    latest = [m for m in agent.messages() if isinstance(m, ToolDefsChangedMessage)][-1]
    assert [t.name for t in latest.tools] == ["echo", "shout"]

    assert agent.remove_tool("shout")
    assert not agent.remove_tool("shout")
    agent.send("four")
    assert _count(agent, ToolDefsChangedMessage) == 3


def test_notifications_precede_user_message(builder) -> None:
    """Notifications are added in order right before the user message."""

    agent = Agent.new(builder)
    agent.send(
        "What's next?",
        notifications=[
            Notification(kind="reminder", content="Dentist at 3"),
            Notification(kind="email", content="New mail"),
        ],
    )

    idx = _kinds(agent.messages()).index("user")
    assert agent.messages()[idx - 2 : idx] == [
        NotificationMessage(notification_kind="reminder", content="Dentist at 3"),
        NotificationMessage(notification_kind="email", content="New mail"),
    ]
    encoded = builder.reasoning_calls[0]
    assert "**Notification of type 'reminder'**\nDentist at 3" in [m.content for m in encoded]


def test_history_is_append_only(builder, echo) -> None:
    """Every turn only appends to the history."""

    builder.reasoning.extend([reason(call("echo", x="1")), reason()])
    agent = Agent.new(builder, tools=[echo])
    before = agent.messages()

    agent.send("first")
    middle = agent.messages()
    agent.send("second")
    after = agent.messages()

    assert middle[: len(before)] == before
    assert after[: len(middle)] == middle
    assert len(before) < len(middle) < len(after)


def test_backend_failure_keeps_partial_history() -> None:
    """A backend error ends the turn but what was appended before it stays."""

    builder = ScriptedModelBuilder(reasoning=[RuntimeError("backend down")])
    agent = Agent.new(builder)
    before = agent.messages()

    with pytest.raises(RuntimeError, match="backend down"):
        agent.send("hi")

    after = agent.messages()
    assert after[: len(before)] == before
    assert UserMessage(content="hi") in after
    assert after[-1] == ModeSwitchMessage(mode=AgentMode.REASON_ACT)
    assert not any(isinstance(m, AgentMessage) for m in after)


def test_malformed_reasoning_response() -> None:
    """A reasoning response that is not the expected JSON ends the turn with an error."""

    agent = Agent.new(ScriptedModelBuilder(reasoning=["I refuse to answer in JSON"]))

    with pytest.raises(ModelResponseError):
        agent.send("hi")


def test_iteration_limit(echo) -> None:
    """With a limit set, a backend that keeps calling tools is stopped."""

    builder = ScriptedModelBuilder(reasoning=[reason(call("echo", x="again"))] * 5)
    agent = Agent.new(builder, tools=[echo], max_iterations=2)

    with pytest.raises(ReActLoopLimitError):
        agent.send("loop forever")
    assert len(builder.reasoning_calls) == 2
    assert len(echo.calls) == 2


def test_listeners_receive_messages_and_chunks(builder) -> None:
    """Listeners see each appended message and each streamed chunk."""

    class Collector:
        def __init__(self):
            self.messages = []

        def on_message(self, msg):
            self.messages.append(msg)

    builder.answers.append("Nice to meet you")
    collector = Collector()
    chunks = []
    agent = Agent.new(builder, message_listeners=[collector])
    before = len(agent.messages())

    answer = agent.send("hi", chunk_listeners=[chunks.append])

    assert collector.messages == agent.messages()[before:]
    assert "".join(chunks) == answer == "Nice to meet you"
    assert len(chunks) > 1


def test_failing_listener_is_ignored(builder) -> None:
    """A listener raising an error does not affect the conversation."""

    def broken(_msg):
        raise ValueError("listener bug")

    def broken_chunk(_chunk):
        raise ValueError("listener bug")

    agent = Agent.new(builder)
    seen = []

    answer = agent.send(
        "hi", message_listeners=[broken, seen.append], chunk_listeners=[broken_chunk]
    )

    assert answer == "Done."
    assert seen[-1] == AgentMessage(content="Done.")


def test_from_saved_appends_nothing(builder) -> None:
    """Restoring a saved conversation leaves its history untouched."""

    original = Agent.new(builder, skills=[Skill(key="style", content="Be brief")])
    original.send("hi")

    restored = Agent.from_saved(builder, original.messages())
    assert restored.messages() == original.messages()
    assert restored.mode is AgentMode.ANSWER_USER

    restored.send("again")
    assert _count(restored, SkillResidencyMessage) == 1
    assert _count(restored, ToolCallsMessage) == 2


def test_from_saved_warns_about_new_persistent_skills(builder, caplog) -> None:
    """Persistent skills the saved history does not hold are reported on restore."""

    style = Skill(key="style", content="Be brief")
    saved = Agent.new(builder, skills=[style]).messages()

    with caplog.at_level(logging.WARNING, logger="craig.agent.agent_loop"):
        Agent.from_saved(builder, saved, skills=iter([style]))
    assert not caplog.records

    tone = Skill(key="tone", content="Be cheerful")
    with caplog.at_level(logging.WARNING, logger="craig.agent.agent_loop"):
        restored = Agent.from_saved(builder, saved, skills=[style, tone])
    assert "tone" in caplog.text
    assert "style" not in caplog.text
    assert restored.messages() == saved

"""Tests for the message model, the converter contract and history folding."""

import pytest

from craig.core.schema import (
    FOREVER,
    AgentMessage,
    AgentMode,
    AvailableToolDefinition,
    InsertedSkill,
    MessageConverter,
    ModeSwitchMessage,
    NotificationMessage,
    PersonalityMessage,
    Skill,
    SkillResidencyMessage,
    SystemMessage,
    ToolCall,
    ToolCallArg,
    ToolCallsMessage,
    ToolDefsChangedMessage,
    ToolResponse,
    ToolResponseMessage,
    UnknownMessageKindError,
    UserMessage,
    convert_messages,
)
from craig.core.state import (
    fold_messages,
    last_inserted_skills,
    last_personality,
)


class RecordingConverter(MessageConverter):
    """Records ``(method, payload)`` for every message visited."""

    def __init__(self):
        self.seen = []

    def add_system(self, template):
        self.seen.append(("system", template))

    def add_user(self, content):
        self.seen.append(("user", content))

    def add_agent(self, content):
        self.seen.append(("agent", content))

    def add_tool_calls(self, reasoning, tool_calls):
        self.seen.append(("tool_calls", reasoning, [c.tool_name for c in tool_calls]))

    def add_tool_response(self, responses):
        self.seen.append(("tool_response", [r.response for r in responses]))

    def add_mode_switch(self, mode):
        self.seen.append(("mode_switch", mode))

    def add_notification(self, kind, content):
        self.seen.append(("notification", kind, content))

    def add_skills(self, skills):
        self.seen.append(("skills", [s.key for s in skills]))

    def add_tool_defs(self, tools):
        self.seen.append(("available_tools", [t.name for t in tools]))

    def add_personality(self, personality):
        self.seen.append(("personality", personality))


def test_converter_must_handle_every_kind() -> None:
    """A converter that leaves out a kind cannot be instantiated."""

    class Partial(MessageConverter):
        def add_system(self, template):
            pass

        def add_user(self, content):
            pass

        def add_agent(self, content):
            pass

    with pytest.raises(TypeError):
        Partial()  # pylint: disable=abstract-class-instantiated
    RecordingConverter()


def test_convert_messages_dispatches_by_kind() -> None:
    """Each message reaches the converter method of its own kind, in order."""

    history = [
        PersonalityMessage(personality="p"),
        SystemMessage(template="t"),
        SkillResidencyMessage(skills=[InsertedSkill.insert(Skill(key="k"))]),
        ToolDefsChangedMessage(tools=[AvailableToolDefinition(name="echo")]),
        NotificationMessage(notification_kind="reminder", content="c"),
        UserMessage(content="hi"),
        ModeSwitchMessage(mode=AgentMode.REASON_ACT),
        ToolCallsMessage(reasoning="r", tool_calls=[ToolCall(tool_name="echo")]),
        ToolResponseMessage(responses=[ToolResponse(response="y")]),
        AgentMessage(content="bye"),
    ]
    conv = RecordingConverter()
    convert_messages(conv, history)

    assert conv.seen == [
        ("personality", "p"),
        ("system", "t"),
        ("skills", ["k"]),
        ("available_tools", ["echo"]),
        ("notification", "reminder", "c"),
        ("user", "hi"),
        ("mode_switch", AgentMode.REASON_ACT),
        ("tool_calls", "r", ["echo"]),
        ("tool_response", ["y"]),
        ("agent", "bye"),
    ]


def test_convert_messages_rejects_unknown_kind() -> None:
    """Anything that is not a known message kind is an error."""

    with pytest.raises(UnknownMessageKindError):
        convert_messages(RecordingConverter(), [UserMessage(content="hi"), {"kind": "user"}])


def test_fold_messages_keeps_latest_state() -> None:
    """Folding a history yields the latest personality, skills, tools and mode."""

    history = [
        PersonalityMessage(personality="first"),
        SkillResidencyMessage(skills=[InsertedSkill.insert(Skill(key="a"))]),
        UserMessage(content="hi"),
        ModeSwitchMessage(mode=AgentMode.REASON_ACT),
        PersonalityMessage(personality="second"),
        SkillResidencyMessage(skills=[]),
        ModeSwitchMessage(mode=AgentMode.ANSWER_USER),
        AgentMessage(content="hello"),
    ]
    state = fold_messages(history)

    assert state.personality == "second"
    assert state.skills == []
    assert state.tool_defs is None
    assert state.mode is AgentMode.ANSWER_USER
    assert state.turns == [("user", "hi"), ("agent", "hello")]
    assert last_personality(history) == "second"
    assert last_inserted_skills(history[:3])[0].key == "a"


def test_inserted_skill_residency() -> None:
    """Insertion copies the skill and defaults the residency to its ``remain_for``."""

    skill = Skill(key="weather", when="asked about weather", content="Use km/h", remain_for=2)

    inserted = InsertedSkill.insert(skill)
    assert inserted.now_remain_for == 2
    assert inserted.as_skill() == skill
    assert InsertedSkill.insert(skill, FOREVER).now_remain_for == FOREVER

    assert skill.is_conditional
    assert not Skill(key="style").is_conditional


def test_tool_call_args_dict() -> None:
    """Arguments flatten to keyword form."""

    call = ToolCall(
        tool_name="echo",
        tool_args=[ToolCallArg(arg_name="x", arg_value="y"), ToolCallArg(arg_name="n", arg_value=3)],
    )
    assert call.args_dict() == {"x": "y", "n": 3}
    assert ToolCall(tool_name="noop").args_dict() == {}

"""
Skill selection for CRAIG.

Each turn in collect-context mode the agent works out which skills are resident:

* skills from the previous turn are carried forward while they still have residency left;
* a :class:`SkillSelector` picks new ones from the conditional catalog.

Selectors compose.  :func:`new_skill_selector` builds the standard chain: a backend-driven
selector (or a no-op one when there is no relevance backend), optionally wrapped in
:class:`DontRepeatSkillSelector`.
"""

from __future__ import annotations

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Iterable,
    List,
    Sequence,
    Tuple,
)

from pydantic import (
    BaseModel,
    Field,
)

from craig.agent import prompts
from craig.agent.pipeline import (
    JsonParser,
    OneShotPipeline,
)
from craig.agent.planner_interface import (
    ChatMessage,
    ModelBuilder,
    Role,
)
from craig.core.schema import (
    FOREVER,
    InsertedSkill,
    Message,
    SkillResidencyMessage,
    Skill,
)
from craig.core.state import (
    fold_messages,
    last_inserted_skills,
)

logger = logging.getLogger(__name__)

MAX_CONVERSATION_TURNS = 10
"""How many recent user/agent turns the relevance model sees."""


class SkillSelector(ABC):
    """Chooses skills relevant to a conversation."""

    @abstractmethod
    def select_skills(self, catalog: Sequence[Skill], history: Sequence[Message]) -> List[Skill]:
        """Return the skills from *catalog* that should be inserted this turn."""


class NoSkillSelector(SkillSelector):
    """Never selects anything; used when no relevance backend is configured."""

    def select_skills(self, catalog: Sequence[Skill], history: Sequence[Message]) -> List[Skill]:
        return []


class RelevantSkills(BaseModel):
    """Response shape of the relevance model."""

    relevant_fragment_ids: List[str] = Field(default_factory=list)


class ConversationSkillSelector(SkillSelector):
    """
    Ask a relevance model which skills fit the latest turns of the conversation.

    The model sees each candidate's key and ``when`` condition, never its content.  Keys it
    returns that are not in the catalog are dropped.
    """

    def __init__(self, model_builder: ModelBuilder):
        self.model_builder = model_builder

    @staticmethod
    def build_input_messages(inputs: Tuple[Sequence[Skill], Sequence[Message]]) -> List[ChatMessage]:
        catalog, history = inputs
        conversation = [
            f"<{role}-message>{text}</{role}-message>" for role, text in fold_messages(history).turns
        ]
        conversation = conversation[-MAX_CONVERSATION_TURNS:]
        fragments = [f'<fragment id="{s.key}">{s.when}</fragment>' for s in catalog]
        user_prompt = prompts.SKILL_SELECTOR_USER_TEMPLATE.format(
            conversation="\n".join(conversation), fragments="\n".join(fragments)
        )
        return [
            ChatMessage(role=Role.SYSTEM, content=prompts.SKILL_SELECTOR_SYSTEM_PROMPT),
            ChatMessage(role=Role.USER, content=user_prompt),
        ]

    def select_skills(self, catalog: Sequence[Skill], history: Sequence[Message]) -> List[Skill]:
        model = self.model_builder.build_skill_relevance_model(RelevantSkills)
        pipeline: OneShotPipeline = OneShotPipeline(
            self.build_input_messages, JsonParser(RelevantSkills), model
        )
        result = pipeline.call((catalog, history))

        lookup = {s.key: s for s in catalog}
        selected: List[Skill] = []
        for key in result.relevant_fragment_ids:
            skill = lookup.get(key)
            if skill is None:
                logger.debug("Relevance model returned unknown skill key '%s'", key)
                continue
            selected.append(skill)
        logger.info("Selected skills: %s", [s.key for s in selected])
        return selected


class DontRepeatSkillSelector(SkillSelector):
    """
    Hide skills shown in any of the last *n* skill-residency messages, then delegate.

    ``n <= 0`` leaves the catalog untouched.
    """

    def __init__(self, n: int, inner: SkillSelector):
        self.n = n
        self.inner = inner

    def recently_shown(self, history: Sequence[Message]) -> set[str]:
        shown: set[str] = set()
        if self.n <= 0:
            return shown
        seen = 0
        for msg in reversed(history):
            if not isinstance(msg, SkillResidencyMessage):
                continue
            shown.update(s.key for s in msg.skills)
            seen += 1
            if seen >= self.n:
                break
        return shown

    def select_skills(self, catalog: Sequence[Skill], history: Sequence[Message]) -> List[Skill]:
        shown = self.recently_shown(history)
        allowed = [s for s in catalog if s.key not in shown]
        if len(allowed) != len(catalog):
            logger.debug("Not repeating recently shown skills: %s", sorted(shown))
        return self.inner.select_skills(allowed, history)


def new_skill_selector(model_builder: ModelBuilder | None, dont_repeat_n: int) -> SkillSelector:
    """Build the standard selector chain for *model_builder*."""
    if model_builder is None:
        return NoSkillSelector()
    selector: SkillSelector = ConversationSkillSelector(model_builder)
    if dont_repeat_n > 0:
        selector = DontRepeatSkillSelector(dont_repeat_n, selector)
    return selector


def split_skills(skills: Iterable[Skill]) -> Tuple[List[Skill], List[Skill]]:
    """Partition *skills* into the conditional catalog and the persistent ones."""
    dynamic: List[Skill] = []
    persistent: List[Skill] = []
    for skill in skills:
        (dynamic if skill.is_conditional else persistent).append(skill)
    return dynamic, persistent


def persistent_residency(skills: Iterable[Skill]) -> List[InsertedSkill]:
    """Resident entries for persistent skills, which never decay."""
    return [InsertedSkill.insert(s, FOREVER) for s in skills]


def carry_forward(history: Sequence[Message]) -> List[InsertedSkill]:
    """Decay the skills resident at the end of *history* by one turn."""
    return [
        s.model_copy(update={"now_remain_for": s.now_remain_for - 1})
        for s in last_inserted_skills(history)
        if s.now_remain_for > 0
    ]


def next_resident_skills(
    selector: SkillSelector, catalog: Sequence[Skill], history: Sequence[Message]
) -> List[InsertedSkill]:
    """
    The resident skill set for the next turn.

    Carried-forward skills come first, followed by newly selected ones with their own
    ``remain_for``.  A newly selected skill replaces a carried entry with the same key.
    """
    carried = carry_forward(history)
    selected = [InsertedSkill.insert(s) for s in selector.select_skills(catalog, history)]
    fresh_keys = {s.key for s in selected}
    return [s for s in carried if s.key not in fresh_keys] + selected

"""
Shared fakes for the CRAIG test-suite.

``ScriptedModelBuilder`` stands in for a real backend: every model it builds answers from a queue
of canned responses and records the chat messages it was sent.
"""

import json
from typing import (
    Any,
    Callable,
    List,
    Mapping,
    Optional,
)

import pytest

from craig.agent.planner_interface import (
    ChatMessage,
    Model,
    ModelBuilder,
)
from craig.tools import BaseTool

DEFAULT_REASONING = {"reasoning": "nothing to do", "tool_calls": []}
DEFAULT_ANSWER = "Done."
DEFAULT_RELEVANCE = {"relevant_fragment_ids": []}


def reason(*calls: Mapping[str, Any], reasoning: str = "thinking") -> dict:
    """Build a reason-action response calling *calls*."""
    return {"reasoning": reasoning, "tool_calls": list(calls)}


def call(tool_name: str, **args: Any) -> dict:
    """Build one tool call of a reason-action response."""
    return {
        "tool_name": tool_name,
        "tool_args": [{"arg_name": k, "arg_value": v} for k, v in args.items()],
    }


class ScriptedModel(Model):
    """Answers from a shared queue, falling back to *default* once it is empty."""

    def __init__(
        self,
        queue: List[Any],
        calls: List[List[ChatMessage]],
        default: Any,
        on_stream_init: Optional[Callable[[], None]] = None,
        on_stream_chunk: Optional[Callable[[str], None]] = None,
    ):
        self.queue = queue
        self.calls = calls
        self.default = default
        self.on_stream_init = on_stream_init
        self.on_stream_chunk = on_stream_chunk

    def respond(self, messages: List[ChatMessage]) -> str:
        self.calls.append(list(messages))
        item = self.queue.pop(0) if self.queue else self.default
        if isinstance(item, Exception):
            raise item
        text = item if isinstance(item, str) else json.dumps(item)
        if self.on_stream_chunk is not None:
            if self.on_stream_init is not None:
                self.on_stream_init()
            words = text.split(" ")
            for i, word in enumerate(words):
                self.on_stream_chunk(word if i == len(words) - 1 else word + " ")
        return text


class ScriptedModelBuilder(ModelBuilder):
    """Model builder whose models replay scripted reasoning, answers and relevance picks."""

    def __init__(
        self,
        reasoning: Optional[List[Any]] = None,
        answers: Optional[List[Any]] = None,
        relevance: Optional[List[Any]] = None,
        default_relevance: Any = None,
    ):
        self.reasoning = list(reasoning or [])
        self.answers = list(answers or [])
        self.relevance = list(relevance or [])
        self.default_relevance = default_relevance or DEFAULT_RELEVANCE
        self.reasoning_calls: List[List[ChatMessage]] = []
        self.answer_calls: List[List[ChatMessage]] = []
        self.relevance_calls: List[List[ChatMessage]] = []

    def build_reasoning_model(self, response_shape=None, on_stream_init=None, on_stream_chunk=None):
        if response_shape is not None:
            return ScriptedModel(self.reasoning, self.reasoning_calls, DEFAULT_REASONING)
        return ScriptedModel(
            self.answers, self.answer_calls, DEFAULT_ANSWER, on_stream_init, on_stream_chunk
        )

    def build_skill_relevance_model(self, response_shape=None):
        return ScriptedModel(self.relevance, self.relevance_calls, self.default_relevance)


class RecordingTool(BaseTool):
    """A tool that records its calls and answers through *fn*."""

    def __init__(self, name: str, fn: Callable[[Mapping[str, Any]], str], description=None):
        self._name = name
        self._fn = fn
        self._description = description or [f"The {name} tool"]
        self.calls: List[dict] = []

    @property
    def name(self) -> str:
        return self._name

    def description(self) -> List[str]:
        return list(self._description)

    def call(self, args: Mapping[str, Any]) -> str:
        self.calls.append(dict(args))
        return self._fn(args)


@pytest.fixture
def builder() -> ScriptedModelBuilder:
    return ScriptedModelBuilder()


@pytest.fixture
def echo() -> RecordingTool:
    """Tool "echo" returning the value of its ``x`` argument."""
    return RecordingTool("echo", lambda args: args["x"])

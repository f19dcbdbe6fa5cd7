"""
Model pipeline interface for CRAIG.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, skill
selection, tools, persistence) stays model-agnostic and talks to a :class:`Model` built by a
:class:`ModelBuilder`.

We support three back-ends out of the box:

1. **OpenAI / Anthropic** via their SDKs (requires env keys).
2. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models.

Additional providers can be added by subclassing :class:`ModelBuilder` and registering via
:func:`register_model_builder`.  Errors raised by a provider are never retried or rewritten here;
they surface to the caller of the turn unchanged.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Type,
)

import httpx
from pydantic import BaseModel

from craig.config import settings

logger = logging.getLogger(__name__)

StreamInit = Callable[[], None]
StreamChunk = Callable[[str], None]


class ModelResponseError(RuntimeError):
    """Raised when a backend returns something that cannot be used."""


class Role(str, Enum):
    """Chat roles understood by every backend."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """One message sent to a backend."""

    role: Role
    content: str


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------
class Model(ABC):
    """A backend that answers an ordered list of chat messages with raw text."""

    @abstractmethod
    def respond(self, messages: List[ChatMessage]) -> str:
        """Return the backend's full text response to *messages*."""


class ModelBuilder(ABC):
    """Builds the models used by an agent."""

    @abstractmethod
    def build_reasoning_model(
        self,
        response_shape: Optional[Type[BaseModel]] = None,
        on_stream_init: Optional[StreamInit] = None,
        on_stream_chunk: Optional[StreamChunk] = None,
    ) -> Model:
        """
        Build the model that reasons and answers the user.

        A pydantic model may be passed as *response_shape* to request structured JSON output.
        The stream callbacks are only given for the final answer and may be *None*.
        """

    @abstractmethod
    def build_skill_relevance_model(
        self, response_shape: Optional[Type[BaseModel]] = None
    ) -> Model:
        """Build the (usually cheaper) model used to decide which skills are relevant."""


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_BUILDER_REGISTRY: dict[str, Type[ModelBuilder]] = {}


def register_model_builder(name: str) -> Callable:
    """Decorator to register a model builder class under *name*."""

    def wrapper(cls: Type[ModelBuilder]) -> Type[ModelBuilder]:
        _BUILDER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_model_builder(name: str | None = None) -> ModelBuilder:
    """
    Factory that returns an instantiated model builder.

    Fallback order:
    1. *name* arg
    2. ``settings.PLANNER`` env option
    3. default: ``"openai"``
    """

    target = name or getattr(settings, "PLANNER", "openai")
    cls = _BUILDER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Model builder '{target}' is not registered.")
    return cls()


def _emit_stream(
    chunks: Any, on_stream_init: Optional[StreamInit], on_stream_chunk: StreamChunk
) -> str:
    """Forward text *chunks* to the callbacks and return the joined text."""
    if on_stream_init is not None:
        on_stream_init()
    parts: List[str] = []
    for chunk in chunks:
        if not chunk:
            continue
        parts.append(chunk)
        on_stream_chunk(chunk)
    return "".join(parts)


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------
class OpenAIModel(Model):
    """OpenAI chat-completions model with optional JSON mode and streaming."""

    def __init__(
        self,
        model: str,
        json_mode: bool = False,
        on_stream_init: Optional[StreamInit] = None,
        on_stream_chunk: Optional[StreamChunk] = None,
        client: Any = None,
    ):
        self.model = model
        self.json_mode = json_mode
        self.on_stream_init = on_stream_init
        self.on_stream_chunk = on_stream_chunk
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.OpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    def respond(self, messages: List[ChatMessage]) -> str:
        client = self._get_client()
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.model_dump(mode="json") for m in messages],
            "temperature": 0.2,
        }
        if self.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        if self.on_stream_chunk is not None:
            stream = client.chat.completions.create(stream=True, **kwargs)
            deltas = (
                chunk.choices[0].delta.content
                for chunk in stream
                if chunk.choices and chunk.choices[0].delta.content
            )
            return _emit_stream(deltas, self.on_stream_init, self.on_stream_chunk)

        resp = client.chat.completions.create(**kwargs)
        content = resp.choices[0].message.content
        if not content:
            raise ModelResponseError("Empty response from OpenAI")
        logger.debug("OpenAI response: %s", content)
        return content


@register_model_builder("openai")
class OpenAIModelBuilder(ModelBuilder):
    """Builds :class:`OpenAIModel` instances from settings."""

    def build_reasoning_model(
        self,
        response_shape: Optional[Type[BaseModel]] = None,
        on_stream_init: Optional[StreamInit] = None,
        on_stream_chunk: Optional[StreamChunk] = None,
    ) -> Model:
        return OpenAIModel(
            settings.OPENAI_MODEL,
            json_mode=response_shape is not None,
            on_stream_init=on_stream_init,
            on_stream_chunk=on_stream_chunk,
        )

    def build_skill_relevance_model(
        self, response_shape: Optional[Type[BaseModel]] = None
    ) -> Model:
        return OpenAIModel(
            settings.SKILL_MODEL or settings.OPENAI_MODEL, json_mode=response_shape is not None
        )


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------
def _to_anthropic_messages(messages: List[ChatMessage]) -> tuple[str, List[Dict[str, str]]]:
    """
    Split *messages* into Anthropic's ``system`` parameter and alternating turns.

    Leading system messages form the system prompt.  Later system messages are sent as user
    turns, and consecutive turns with the same role are merged.
    """
    system_parts: List[str] = []
    idx = 0
    while idx < len(messages) and messages[idx].role == Role.SYSTEM:
        system_parts.append(messages[idx].content)
        idx += 1

    turns: List[Dict[str, str]] = []
    for msg in messages[idx:]:
        role = "assistant" if msg.role == Role.ASSISTANT else "user"
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"] += "\n\n" + msg.content
        else:
            turns.append({"role": role, "content": msg.content})
    return "\n\n".join(system_parts), turns


class AnthropicModel(Model):
    """Anthropic Claude model with optional streaming."""

    def __init__(
        self,
        model: str,
        on_stream_init: Optional[StreamInit] = None,
        on_stream_chunk: Optional[StreamChunk] = None,
        client: Any = None,
    ):
        self.model = model
        self.on_stream_init = on_stream_init
        self.on_stream_chunk = on_stream_chunk
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            self._client = anthropic.Anthropic(api_key=settings.ANTHROPIC_API_KEY)
        return self._client

    def respond(self, messages: List[ChatMessage]) -> str:
        client = self._get_client()
        system, turns = _to_anthropic_messages(messages)
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": 8192,
            "system": system,
            "messages": turns,
            "temperature": 0.2,
        }

        if self.on_stream_chunk is not None:
            with client.messages.stream(**kwargs) as stream:
                return _emit_stream(stream.text_stream, self.on_stream_init, self.on_stream_chunk)

        response = client.messages.create(**kwargs)
        # Handle different content block types from Anthropic API
        content = "".join(block.text for block in response.content if block.type == "text")
        logger.debug("Anthropic response: %s", content)
        return content


@register_model_builder("anthropic")
class AnthropicModelBuilder(ModelBuilder):
    """Builds :class:`AnthropicModel` instances from settings."""

    def build_reasoning_model(
        self,
        response_shape: Optional[Type[BaseModel]] = None,
        on_stream_init: Optional[StreamInit] = None,
        on_stream_chunk: Optional[StreamChunk] = None,
    ) -> Model:
        return AnthropicModel(
            settings.ANTHROPIC_MODEL, on_stream_init=on_stream_init, on_stream_chunk=on_stream_chunk
        )

    def build_skill_relevance_model(
        self, response_shape: Optional[Type[BaseModel]] = None
    ) -> Model:
        return AnthropicModel(settings.SKILL_MODEL or settings.ANTHROPIC_MODEL)


# ---------------------------------------------------------------------------
# TGI
# ---------------------------------------------------------------------------
class TGIModel(Model):
    """Text-Generation-Inference model called over HTTP with httpx."""

    def __init__(
        self,
        endpoint: str,
        on_stream_init: Optional[StreamInit] = None,
        on_stream_chunk: Optional[StreamChunk] = None,
        client: httpx.Client | None = None,
    ):
        self.endpoint = endpoint
        self.on_stream_init = on_stream_init
        self.on_stream_chunk = on_stream_chunk
        self._client = client

    @staticmethod
    def build_prompt(messages: List[ChatMessage]) -> str:
        """Flatten chat messages into a single TGI prompt."""
        labels = {Role.SYSTEM: "System", Role.USER: "User", Role.ASSISTANT: "Assistant"}
        lines = [f"{labels[m.role]}: {m.content}" for m in messages]
        return "\n\n".join(lines) + "\n\nAssistant:"

    def respond(self, messages: List[ChatMessage]) -> str:
        payload = {
            "inputs": self.build_prompt(messages),
            "parameters": {"max_new_tokens": 1024, "temperature": 0.2, "stop": ["User:", "</s>"]},
        }

        if self._client is not None:
            resp = self._client.post(self.endpoint, json=payload)
        else:
            with httpx.Client(timeout=30.0) as client:
                resp = client.post(self.endpoint, json=payload)
        resp.raise_for_status()
        content = resp.json()["generated_text"]
        logger.debug("TGI response: %s", content)

        # TGI's /generate endpoint is not incremental; deliver the answer as a single chunk
        if self.on_stream_chunk is not None:
            return _emit_stream([content], self.on_stream_init, self.on_stream_chunk)
        return content


@register_model_builder("tgi")
class TGIModelBuilder(ModelBuilder):
    """Builds :class:`TGIModel` instances pointing at ``settings.TGI_ENDPOINT``."""

    def __init__(self, client: httpx.Client | None = None):
        self._client = client

    def build_reasoning_model(
        self,
        response_shape: Optional[Type[BaseModel]] = None,
        on_stream_init: Optional[StreamInit] = None,
        on_stream_chunk: Optional[StreamChunk] = None,
    ) -> Model:
        return TGIModel(
            settings.TGI_ENDPOINT,
            on_stream_init=on_stream_init,
            on_stream_chunk=on_stream_chunk,
            client=self._client,
        )

    def build_skill_relevance_model(
        self, response_shape: Optional[Type[BaseModel]] = None
    ) -> Model:
        return TGIModel(settings.TGI_ENDPOINT, client=self._client)

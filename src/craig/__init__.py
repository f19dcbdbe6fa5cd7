"""
CRAIG: a ReAct conversational agent.

Typical use::

    from craig import Agent, Skill, function_tool, load_model_builder

    agent = Agent.new(load_model_builder("openai"), tools=[...], skills=[...])
    answer = agent.send("What's the weather like?")
"""

from craig.agent.agent_loop import (
    Agent,
    MessageListener,
    ReActLoopLimitError,
    TextChunkListener,
)
from craig.agent.planner_interface import (
    ChatMessage,
    Model,
    ModelBuilder,
    ModelResponseError,
    load_model_builder,
    register_model_builder,
)
from craig.core.schema import (
    FOREVER,
    AgentMode,
    Message,
    Notification,
    Skill,
    UnknownMessageKindError,
)
from craig.core.serialization import (
    MessageDecodeError,
    decode_messages,
    encode_messages,
)
from craig.tools import (
    BaseTool,
    FunctionTool,
    function_tool,
)

__all__ = [
    "FOREVER",
    "Agent",
    "AgentMode",
    "BaseTool",
    "ChatMessage",
    "FunctionTool",
    "Message",
    "MessageDecodeError",
    "MessageListener",
    "Model",
    "ModelBuilder",
    "ModelResponseError",
    "Notification",
    "ReActLoopLimitError",
    "Skill",
    "TextChunkListener",
    "UnknownMessageKindError",
    "decode_messages",
    "encode_messages",
    "function_tool",
    "load_model_builder",
    "register_model_builder",
]

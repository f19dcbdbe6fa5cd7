"""Interactive CLI for CRAIG, running the agent in-process and streaming its answers."""

from __future__ import annotations

import logging
import uuid
from typing import Tuple

from craig.agent.agent_loop import Agent
from craig.agent.planner_interface import (
    ModelBuilder,
    load_model_builder,
)
from craig.common import (
    AnsiColors,
    ColoredChunkPrinter,
    colored_print,
)
from craig.config import (
    load_skills,
    settings,
)
from craig.core.schema import (
    Message,
    ToolCallsMessage,
    ToolResponseMessage,
)
from craig.memory.memory_store import ConversationStore
from craig.tools import DEFAULT_TOOLS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def print_tool_activity(msg: Message) -> None:
    """Message listener showing tool calls and their results as the agent works."""
    if isinstance(msg, ToolCallsMessage):
        for call in msg.tool_calls:
            colored_print(f"[{call.tool_name}] {call.args_dict()}", AnsiColors.GREEN)
    elif isinstance(msg, ToolResponseMessage):
        for resp in msg.responses:
            colored_print(f"  -> {resp.response}", AnsiColors.GREEN)


def load_agent(
    session_id: str, model_builder: ModelBuilder, store: ConversationStore
) -> Agent:
    """Restore *session_id* from *store*, or start a new conversation."""
    skills = load_skills()
    saved = store.load(session_id)
    if saved is None:
        return Agent.new(
            model_builder, personality=settings.PERSONALITY, tools=DEFAULT_TOOLS, skills=skills
        )
    colored_print(f"Resuming session with {len(saved)} messages.", AnsiColors.BLUE)
    return Agent.from_saved(model_builder, saved, tools=DEFAULT_TOOLS, skills=skills)


def run_cli(
    session_id: str | None = None,
    model_builder: ModelBuilder | None = None,
    store: ConversationStore | None = None,
) -> None:
    """Run the CLI chat loop until the user exits."""
    store = store or ConversationStore()
    session_id = session_id or str(uuid.uuid4())
    agent = load_agent(session_id, model_builder or load_model_builder(), store)
    printer = ColoredChunkPrinter(AnsiColors.YELLOW)

    colored_print(
        f"\n🔮 CRAIG shell (session {session_id}) - type 'exit' or 'quit' (or Ctrl+C) to exit",
        AnsiColors.GREEN,
    )
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        try:
            reply = agent.send(
                user_msg, message_listeners=[print_tool_activity], chunk_listeners=[printer]
            )
        except Exception as exc:  # pylint: disable=broad-except
            printer.finish()
            logger.error("Turn failed: %s", exc)
            colored_print(f"⚠️ {exc}", AnsiColors.RED)
            continue
        finally:
            store.save(session_id, agent.messages())

        # Backends that do not stream deliver nothing to the printer
        if not printer.finish():
            colored_print(reply, AnsiColors.YELLOW)
        store.record_turn(session_id, user_msg, reply)


if __name__ == "__main__":
    run_cli()

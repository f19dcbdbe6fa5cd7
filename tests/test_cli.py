"""Tests for the interactive CLI."""

import builtins
import re

from conftest import ScriptedModelBuilder

from craig.client.cli import run_cli
from craig.core.schema import AgentMessage
from craig.memory.memory_store import ConversationStore


def _plain(text):
    return re.sub(r"\033\[\d+m", "", text)


def _feed_input(monkeypatch, lines):
    it = iter(lines)
    monkeypatch.setattr(builtins, "input", lambda *args: next(it))


def test_cli_chat_and_resume(tmp_path, monkeypatch, capsys) -> None:
    """The CLI streams answers, saves the session and resumes it later."""

    store = ConversationStore(tmp_path)
    builder = ScriptedModelBuilder(answers=["Hello from CRAIG", "Welcome back"])

    _feed_input(monkeypatch, ["hi", "", "exit"])
    run_cli(session_id="chat1", model_builder=builder, store=store)

    assert "Hello from CRAIG" in _plain(capsys.readouterr().out)
    saved = store.load("chat1")
    assert saved[-1] == AgentMessage(content="Hello from CRAIG")

    _feed_input(monkeypatch, ["again", "quit"])
    run_cli(session_id="chat1", model_builder=builder, store=store)

    out = _plain(capsys.readouterr().out)
    assert "Resuming session" in out
    assert "Welcome back" in out
    assert store.load("chat1")[: len(saved)] == saved

"""Persist conversation histories + a lightweight JSONL turn log."""

import json
import logging
import re
from datetime import (
    datetime,
    timezone,
)
from pathlib import Path
from typing import (
    Iterable,
    List,
)

from craig.config import settings
from craig.core.schema import Message
from craig.core.serialization import (
    dump_messages,
    load_messages,
)

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class ConversationStore:
    """
    Stores one JSON history file per conversation under ``<root>/conversations``.

    Histories use the persisted tagged-record format from :mod:`craig.core.serialization`, so a
    stored conversation can be restored with :meth:`craig.agent.agent_loop.Agent.from_saved`.
    """

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root if root is not None else settings.DATA_DIR)
        self._conversations = self.root / "conversations"
        self._log_path = self.root / "craig_turns.jsonl"

    def init(self) -> None:
        """
        Initialize the store by ensuring the directories and log file exist.
        This is called at application startup to prepare the environment.
        """
        self._conversations.mkdir(parents=True, exist_ok=True)
        if not self._log_path.exists():
            self._log_path.touch()  # Create an empty file if it doesn't exist

    def _path(self, conversation_id: str) -> Path:
        if not _SAFE_ID.match(conversation_id):
            raise ValueError(f"Invalid conversation id: {conversation_id!r}")
        return self._conversations / f"{conversation_id}.json"

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def save(self, conversation_id: str, messages: Iterable[Message]) -> None:
        """Write the full history of *conversation_id*, replacing any previous file."""
        self.init()
        path = self._path(conversation_id)
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            dump_messages(messages, f)
        tmp.replace(path)
        logger.debug("Saved conversation '%s' to %s", conversation_id, path)

    def load(self, conversation_id: str) -> List[Message] | None:
        """Return the stored history, or *None* if the conversation was never saved."""
        path = self._path(conversation_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return load_messages(f)

    def exists(self, conversation_id: str) -> bool:
        return self._path(conversation_id).exists()

    def list_ids(self) -> List[str]:
        """Ids of every stored conversation, sorted."""
        if not self._conversations.is_dir():
            return []
        return sorted(p.stem for p in self._conversations.glob("*.json"))

    def delete(self, conversation_id: str) -> bool:
        path = self._path(conversation_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def record_turn(self, conversation_id: str, user_message: str, reply: str) -> None:
        """Append a finished turn to the flat-file audit trail (JSON lines format)."""
        self.init()
        entry = {
            "conversation_id": conversation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_message": user_message,
            "reply": reply,
        }
        with self._log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")

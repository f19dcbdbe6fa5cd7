"""
Persisted history format.

A history is stored as a JSON array of tagged records.  Each record carries a ``kind``
discriminator and only the fields of that kind, e.g.::

    [
      {"kind": "personality", "personality": "Your name is CRAIG, a helpful assistant."},
      {"kind": "user", "content": "hi"},
      {"kind": "mode_switch", "mode": "reason_act"}
    ]

Decoding is strict: an unrecognised kind means corruption or a version mismatch and is never
skipped.
"""

from __future__ import annotations

import json
import logging
from typing import (
    IO,
    Any,
    Iterable,
    List,
)

from pydantic import (
    TypeAdapter,
    ValidationError,
)

from craig.core.schema import (
    MESSAGE_TYPES,
    Message,
    UnknownMessageKindError,
)

logger = logging.getLogger(__name__)

_KNOWN_KINDS = frozenset(cls.model_fields["kind"].default for cls in MESSAGE_TYPES)
_HISTORY_ADAPTER: TypeAdapter[List[Message]] = TypeAdapter(List[Message])


class MessageDecodeError(ValueError):
    """Raised when a stored history cannot be decoded."""


def message_to_record(msg: Message) -> dict[str, Any]:
    """Return the tagged JSON-ready record for a single message."""
    if not isinstance(msg, MESSAGE_TYPES):
        raise UnknownMessageKindError(f"Unknown message type: {type(msg).__name__}")
    return msg.model_dump(mode="json")


def messages_to_records(messages: Iterable[Message]) -> List[dict[str, Any]]:
    return [message_to_record(m) for m in messages]


def records_to_messages(records: Any) -> List[Message]:
    """
    Validate a list of tagged records back into messages.

    Raises
    ------
    UnknownMessageKindError
        If any record has a missing or unrecognised ``kind``.
    MessageDecodeError
        If the payload is not a list or a record does not match its kind's fields.
    """
    if not isinstance(records, list):
        raise MessageDecodeError("Stored history must be a JSON array")

    for idx, record in enumerate(records):
        kind = record.get("kind") if isinstance(record, dict) else None
        if not isinstance(kind, str) or kind not in _KNOWN_KINDS:
            raise UnknownMessageKindError(f"Unknown message kind {kind!r} at index {idx}")

    try:
        return _HISTORY_ADAPTER.validate_python(records)
    except ValidationError as exc:
        raise MessageDecodeError(f"Invalid stored history: {exc}") from exc


def encode_messages(messages: Iterable[Message]) -> str:
    """Encode *messages* into the persisted JSON format."""
    return json.dumps(messages_to_records(messages), ensure_ascii=False)


def decode_messages(text: str | bytes) -> List[Message]:
    """Decode the output of :func:`encode_messages`."""
    try:
        records = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MessageDecodeError(f"Stored history is not valid JSON: {exc}") from exc
    messages = records_to_messages(records)
    logger.debug("Decoded %d messages", len(messages))
    return messages


def dump_messages(messages: Iterable[Message], fp: IO[str]) -> None:
    """Write *messages* to the text stream *fp*."""
    fp.write(encode_messages(messages))
    fp.write("\n")


def load_messages(fp: IO[str]) -> List[Message]:
    """Read a history written by :func:`dump_messages`."""
    return decode_messages(fp.read())

# ABOUTME: Conversation resolution using References, In-Reply-To and Message-ID headers.
# ABOUTME: Pure function over header strings plus an injected conversation lookup.
"""Assign an email to an existing conversation or seed a new one."""

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from mailhub.exceptions import MissingIdentifierError

# Lookup by canonical key; returns the stored conversation or None
ConversationLookup = Callable[[str], Any]

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class MessageHeaders:
    """Threading headers as extracted from the message source."""
    message_id: str
    in_reply_to: str | None = None
    references: str | None = None


@dataclass(frozen=True)
class ThreadResolution:
    """Outcome of resolving one message."""
    conversation_key: str
    is_new_conversation: bool


def normalize_message_id(value: str | None) -> str:
    """Strip whitespace and one pair of enclosing angle brackets.

    Args:
        value: Raw identifier, e.g. "<abc@example.com>" or "abc@example.com"

    Returns:
        Canonical key, empty string if value is empty
    """
    if not value:
        return ""

    value = value.strip()
    if value.startswith("<"):
        value = value[1:]
    if value.endswith(">"):
        value = value[:-1]
    return value.strip()


def build_candidates(
    message_id: str, in_reply_to: str | None = None, references: str | None = None
) -> list[str]:
    """Build the ordered list of keys to try for a message.

    References first (oldest ancestor first), then In-Reply-To, then the
    message's own identifier. References tokens without "@" are dropped.

    Args:
        message_id: Raw Message-ID header
        in_reply_to: Raw In-Reply-To header
        references: Raw References header

    Returns:
        Canonical keys in priority order, without duplicates
    """
    candidates: list[str] = []

    if references:
        for token in _WHITESPACE.split(references.strip()):
            if "@" in token:
                candidates.append(normalize_message_id(token))

    if in_reply_to and in_reply_to.strip():
        candidates.append(normalize_message_id(in_reply_to))

    own = normalize_message_id(message_id)
    if own:
        candidates.append(own)

    # Keep first occurrence only
    return list(dict.fromkeys(c for c in candidates if c))


def resolve_thread(
    headers: MessageHeaders,
    lookup: ConversationLookup,
    now: datetime | None = None,
) -> ThreadResolution:
    """Find the conversation a message belongs to.

    The first candidate known to ``lookup`` wins; later candidates are not
    consulted. When nothing matches, the message's own identifier becomes the
    key of a new conversation. Errors raised by ``lookup`` propagate as-is.

    Args:
        headers: Message-ID, In-Reply-To and References of the message
        lookup: Returns the stored conversation for a canonical key, or None
        now: Timestamp of the message (used by callers, not here)

    Returns:
        ThreadResolution with the conversation key and whether it is new

    Raises:
        MissingIdentifierError: If the message has no usable Message-ID
    """
    own = normalize_message_id(headers.message_id)
    if not own:
        raise MissingIdentifierError(
            "Cannot resolve a conversation for a message without Message-ID",
            recovery_hint="Derive a stable fallback identifier before resolving",
        )

    candidates = build_candidates(headers.message_id, headers.in_reply_to, headers.references)
    for candidate in candidates:
        record = lookup(candidate)
        if record is not None:
            return ThreadResolution(
                conversation_key=_record_key(record, candidate),
                is_new_conversation=False,
            )

    return ThreadResolution(conversation_key=own, is_new_conversation=True)


def _record_key(record: Any, candidate: str) -> str:
    key = getattr(record, "thread_key", None)
    if key is None and isinstance(record, dict):
        key = record.get("thread_key")
    return key or candidate

"""Queue message format.

Body (JSON), as enqueued by the gateway:

    {"slack": {"ts": "1700000000.1", "thread_ts": "1699999000.2", "user": "U1", ...},
     "message": "question text"}

``thread_ts`` is only present for replies inside a thread; it names the
thread root, which is what keys the browser page.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass

_LEADING_MENTION = re.compile(r"^<@[^>]+>")


class MessageError(ValueError):
    """Raised when a queue body cannot be decoded into a Message."""


@dataclass(frozen=True)
class ThreadRef:
    id: str
    author: str
    parent_id: str | None = None

    @property
    def root_id(self) -> str:
        """The thread root: the parent when replying, otherwise the message itself."""
        return self.parent_id or self.id


@dataclass(frozen=True)
class Message:
    text: str
    thread: ThreadRef


def strip_mention(text: str) -> str:
    """Drop a leading ``<@USER>`` mention and surrounding whitespace."""
    return _LEADING_MENTION.sub("", text).strip()


def decode(body: str | bytes) -> Message:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MessageError(f"Message body is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MessageError("Message body must be a JSON object")

    slack = data.get("slack")
    if not isinstance(slack, dict) or not slack.get("ts"):
        raise MessageError("Message body lacks slack.ts")

    parent = slack.get("thread_ts")
    return Message(
        text=strip_mention(str(data.get("message", ""))),
        thread=ThreadRef(
            id=str(slack["ts"]),
            author=str(slack.get("user", "")),
            parent_id=str(parent) if parent else None,
        ),
    )

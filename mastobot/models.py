"""
Domain models - Mastodon notifications, thread state and model replies.

These dataclasses give every component a common shape for the data that
flows through the reply pipeline, regardless of the raw JSON layout of the
Mastodon and OpenAI APIs.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from config.settings import Visibility

__all__ = [
    "Account",
    "ConversationRecord",
    "EventDecodeError",
    "ModelResponse",
    "Notification",
    "NotificationType",
    "ReplyResult",
    "ResolvedThread",
    "Status",
    "StatusContext",
    "StreamEvent",
    "ThreadContext",
    "Visibility",
]


class EventDecodeError(ValueError):
    """Raised when a stream frame or API payload cannot be decoded."""


class NotificationType(Enum):
    """Notification kinds the bot distinguishes."""
    MENTION = "mention"
    OTHER = "other"


def _require(data: Any, key: str) -> Any:
    if not isinstance(data, dict) or key not in data or data[key] is None:
        raise EventDecodeError(f"missing field: {key}")
    return data[key]


@dataclass(frozen=True)
class Account:
    """Author of a notification."""
    handle: str
    is_bot: bool = False

    @classmethod
    def from_api(cls, data: dict) -> "Account":
        return cls(
            handle=str(_require(data, "acct")),
            is_bot=bool(data.get("bot") or False),
        )


@dataclass(frozen=True)
class Status:
    """Immutable snapshot of a single post."""
    id: str
    html_content: str
    visibility: Visibility

    @classmethod
    def from_api(cls, data: dict) -> "Status":
        try:
            visibility = Visibility.parse(_require(data, "visibility"))
        except ValueError as e:
            raise EventDecodeError(str(e)) from e
        return cls(
            id=str(_require(data, "id")),
            html_content=str(data.get("content") or ""),
            visibility=visibility,
        )


@dataclass(frozen=True)
class Notification:
    """
    A notification pushed by the streaming API.

    Only mentions are acted on; every other type is classified as OTHER
    but keeps its original name in ``type_name`` for logging.
    """
    id: str
    kind: NotificationType
    author: Account
    status: Optional[Status] = None
    type_name: str = ""

    @classmethod
    def from_api(cls, data: dict) -> "Notification":
        type_name = str(_require(data, "type"))
        kind = NotificationType.MENTION if type_name == "mention" else NotificationType.OTHER
        raw_status = data.get("status")
        return cls(
            id=str(_require(data, "id")),
            kind=kind,
            author=Account.from_api(_require(data, "account")),
            status=Status.from_api(raw_status) if raw_status else None,
            type_name=type_name,
        )

    @property
    def is_mention(self) -> bool:
        return self.kind is NotificationType.MENTION


@dataclass(frozen=True)
class StatusContext:
    """Response of the "fetch thread context" call."""
    ancestors: List[Status] = field(default_factory=list)
    descendants: List[Status] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "StatusContext":
        if not isinstance(data, dict):
            raise EventDecodeError("status context must be an object")
        return cls(
            ancestors=[Status.from_api(s) for s in data.get("ancestors") or []],
            descendants=[Status.from_api(s) for s in data.get("descendants") or []],
        )


@dataclass(frozen=True)
class ThreadContext:
    """Ancestor chain (oldest first) plus the status being answered."""
    ancestors: List[Status]
    current: Status


@dataclass(frozen=True)
class ResolvedThread:
    """What survives thread resolution: the stable key and the transcript."""
    thread_key: str
    transcript: Optional[str] = None


@dataclass(frozen=True)
class ConversationRecord:
    """Persisted link from a thread to the last model response."""
    thread_key: str
    last_response_id: str
    updated_at: int


@dataclass(frozen=True)
class ModelResponse:
    """Decoded reply of the completion service."""
    id: str
    text: str
    status: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        """Empty text or an incomplete generation."""
        return not self.text.strip() or self.status == "incomplete"


@dataclass(frozen=True)
class ReplyResult:
    """Final reply text handed back to the notification handler."""
    text: str
    response_id: str
    status: Optional[str] = None


@dataclass(frozen=True)
class StreamEvent:
    """
    Envelope of one streaming API text frame.

    The payload of a notification event is itself a JSON-encoded string.
    """
    event: str
    payload: Optional[str] = None

    @classmethod
    def from_json(cls, text: str) -> "StreamEvent":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise EventDecodeError(f"Failed to parse stream event JSON: {e}") from e

        event = _require(data, "event")
        payload = data.get("payload")
        if payload is not None and not isinstance(payload, str):
            # Some servers inline the payload as an object
            payload = json.dumps(payload)
        return cls(event=str(event), payload=payload)

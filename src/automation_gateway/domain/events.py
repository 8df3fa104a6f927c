"""Client events and the envelope dispatched to subscribers."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar

# Event types forwarded as-is, without a state transition or policy hook.
PASSTHROUGH_EVENT_TYPES = frozenset(
    {
        "auth_failure",
        "call",
        "change_state",
        "chat_archived",
        "chat_removed",
        "contact_changed",
        "group_admin_changed",
        "group_join",
        "group_leave",
        "group_membership_request",
        "group_update",
        "loading_screen",
        "media_uploaded",
        "message_ciphertext",
        "message_create",
        "message_edit",
        "message_reaction",
        "message_revoke_everyone",
        "message_revoke_me",
        "unread_count",
        "vote_update",
        "code",
    }
)


@dataclass(frozen=True)
class QrReceived:
    """A new QR code is available for pairing."""

    data_type: ClassVar[str] = "qr"

    qr: str

    def payload(self) -> dict[str, object]:
        return {"qr": self.qr}


@dataclass(frozen=True)
class Authenticated:
    """Stored or scanned credentials were accepted."""

    data_type: ClassVar[str] = "authenticated"

    def payload(self) -> dict[str, object]:
        return {}


@dataclass(frozen=True)
class Ready:
    """The client finished loading and can be used."""

    data_type: ClassVar[str] = "ready"

    def payload(self) -> dict[str, object]:
        return {}


@dataclass(frozen=True)
class Disconnected:
    """The client lost its connection or was logged out."""

    data_type: ClassVar[str] = "disconnected"

    reason: str | None = None

    def payload(self) -> dict[str, object]:
        return {"reason": self.reason}


@dataclass(frozen=True)
class MessageReceived:
    """An incoming message."""

    data_type: ClassVar[str] = "message"

    message: dict[str, object]

    @property
    def chat_id(self) -> str | None:
        value = self.message.get("chatId") or self.message.get("from")
        return str(value) if value else None

    @property
    def message_id(self) -> str | None:
        value = self.message.get("id")
        if isinstance(value, dict):
            value = value.get("_serialized")
        return str(value) if value else None

    @property
    def has_media(self) -> bool:
        return bool(self.message.get("hasMedia"))

    @property
    def media_size(self) -> int | None:
        size = self.message.get("size")
        return int(size) if isinstance(size, int | float) else None

    def payload(self) -> dict[str, object]:
        return {"message": self.message}


@dataclass(frozen=True)
class MessageAck:
    """Delivery state of a sent message changed."""

    data_type: ClassVar[str] = "message_ack"

    message: dict[str, object]
    ack: int | None = None

    def payload(self) -> dict[str, object]:
        return {"message": self.message, "ack": self.ack}


@dataclass(frozen=True)
class MediaReceived:
    """Media attached to an incoming message was downloaded."""

    data_type: ClassVar[str] = "media"

    message: dict[str, object]
    media: dict[str, object]

    def payload(self) -> dict[str, object]:
        return {"messageMedia": self.media, "message": self.message}


@dataclass(frozen=True)
class ClientEvent:
    """Any other event kind, forwarded without interpretation."""

    data_type: str
    data: dict[str, object] = field(default_factory=dict)

    def payload(self) -> dict[str, object]:
        return self.data


AutomationEvent = (
    QrReceived
    | Authenticated
    | Ready
    | Disconnected
    | MessageReceived
    | MessageAck
    | MediaReceived
    | ClientEvent
)


def event_from_wire(name: str, data: dict[str, object]) -> AutomationEvent | None:
    """Build a typed event from a raw ``(name, data)`` pair.

    Returns ``None`` for names this service does not forward.
    """
    if name == "qr":
        return QrReceived(qr=str(data.get("qr", "")))
    if name == "authenticated":
        return Authenticated()
    if name == "ready":
        return Ready()
    if name == "disconnected":
        reason = data.get("reason")
        return Disconnected(reason=str(reason) if reason is not None else None)
    if name == "message":
        return MessageReceived(message=_as_dict(data.get("message", data)))
    if name == "message_ack":
        ack = data.get("ack")
        return MessageAck(
            message=_as_dict(data.get("message")),
            ack=int(ack) if isinstance(ack, int | float) else None,
        )
    if name == "media":
        return MediaReceived(
            message=_as_dict(data.get("message")),
            media=_as_dict(data.get("messageMedia")),
        )
    if name in PASSTHROUGH_EVENT_TYPES:
        return ClientEvent(data_type=name, data=data)
    return None


def _as_dict(value: object) -> dict[str, object]:
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class EventEnvelope:
    """One dispatch-worthy occurrence for a session."""

    session_id: str
    data_type: str
    data: dict[str, object]
    timestamp: datetime

    @classmethod
    def wrap(
        cls, session_id: str, event: AutomationEvent, timestamp: datetime
    ) -> "EventEnvelope":
        """Wrap a client event for dispatch."""
        return cls(
            session_id=session_id,
            data_type=event.data_type,
            data=event.payload(),
            timestamp=timestamp,
        )

    def to_message(self) -> dict[str, object]:
        """Return the WebSocket message shape."""
        return {
            "dataType": self.data_type,
            "data": self.data,
            "sessionId": self.session_id,
        }

    def to_webhook_body(self) -> dict[str, object]:
        """Return the webhook POST body."""
        body = self.to_message()
        body["timestamp"] = self.timestamp.isoformat()
        return body

"""Domain models for automation sessions."""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

SESSION_ID_PATTERN = re.compile(r"[\w-]+", re.ASCII)


class SessionStatus(str, Enum):
    """Lifecycle states of a session."""

    STARTING = "STARTING"
    QR_PENDING = "QR_PENDING"
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    TERMINATED = "TERMINATED"


class SessionError(Exception):
    """Base class for session registry failures."""

    def __init__(self, session_id: str, message: str) -> None:
        super().__init__(message)
        self.session_id = session_id


class SessionConflictError(SessionError):
    """Raised when creating a session id that is already active."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id, "session_already_exists")


class SessionNotFoundError(SessionError):
    """Raised when a session id is unknown or already terminated."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id, "session_not_found")


class InvalidSessionIdError(SessionError, ValueError):
    """Raised when a session id cannot be used as a path segment."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            session_id,
            "Session should be alphanumerical or -",
        )


class ReadinessTimeoutError(SessionError, TimeoutError):
    """Raised when a client context does not come up in time."""

    def __init__(self, session_id: str, timeout: float) -> None:
        super().__init__(
            session_id, f"Timed out after {timeout:g}s waiting for session"
        )
        self.timeout = timeout


class SessionStartError(SessionError):
    """Raised when the automation client failed to initialize."""

    def __init__(self, session_id: str, cause: BaseException) -> None:
        super().__init__(session_id, f"Failed to start session: {cause}")
        self.__cause__ = cause


def validate_session_id(session_id: str) -> str:
    """Return the id unchanged, or raise if it is not a safe identifier."""
    if not SESSION_ID_PATTERN.fullmatch(session_id):
        raise InvalidSessionIdError(session_id)
    return session_id


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session at a point in time."""

    id: str
    status: SessionStatus
    qr: str | None
    webhook_url: str | None
    created_at: datetime
    last_status_change_at: datetime

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly representation."""
        return {
            "id": self.id,
            "status": self.status.value,
            "qr": self.qr,
            "webhookUrl": self.webhook_url,
            "createdAt": self.created_at.isoformat(),
            "lastStatusChangeAt": self.last_status_change_at.isoformat(),
        }

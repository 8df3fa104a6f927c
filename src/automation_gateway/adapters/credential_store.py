"""Filesystem storage for per-session credentials."""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_PREFIX = "session-"


class CredentialStore(Protocol):
    """Persistence interface for session credentials."""

    def ensure(self, session_id: str) -> Path:
        """Create the credential directory if needed and return it."""

    def delete(self, session_id: str) -> None:
        """Remove the credential directory, if present."""

    def list_session_ids(self) -> list[str]:
        """Return ids of every persisted session."""


@dataclass
class FileSystemCredentialStore(CredentialStore):
    """Stores each session's credentials in ``<root>/session-<id>``."""

    root: Path

    def path_for(self, session_id: str) -> Path:
        """Return the directory of a session, which may not exist."""
        path = (self.root / f"{_PREFIX}{session_id}").resolve()
        if path.parent != self.root.resolve():
            raise ValueError(f"Invalid session id: {session_id!r}")
        return path

    def ensure(self, session_id: str) -> Path:
        """Create the credential directory if needed and return it."""
        path = self.path_for(session_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def delete(self, session_id: str) -> None:
        """Remove the credential directory, if present."""
        path = self.path_for(session_id)
        if not path.exists():
            return
        shutil.rmtree(path)
        logger.debug("Deleted session directory", extra={"session_id": session_id})

    def list_session_ids(self) -> list[str]:
        """Return ids of every persisted session, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name.removeprefix(_PREFIX)
            for entry in self.root.iterdir()
            if entry.is_dir() and entry.name.startswith(_PREFIX)
        )

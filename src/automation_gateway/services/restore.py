"""Recreate persisted sessions on startup."""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from automation_gateway.adapters.credential_store import CredentialStore
from automation_gateway.domain.sessions import (
    ReadinessTimeoutError,
    SessionNotFoundError,
    SessionStartError,
)
from automation_gateway.services.sessions import SessionHandle, SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoreReport:
    """Outcome of a startup restore."""

    restored: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return bool(self.failures)


@dataclass
class StartupRestorer:
    """Recreate one session per persisted credential directory.

    Each identity is restored on its own; a failure is logged and recorded in
    the report but never stops the others or the process. A session whose
    client does not come up within ``readiness_timeout`` is dropped from the
    registry again, keeping its credentials on disk.
    """

    registry: SessionRegistry
    credential_store: CredentialStore
    readiness_timeout: float = 10.0

    async def restore(self) -> RestoreReport:
        """Restore every persisted session and report the outcome."""
        report = RestoreReport()
        try:
            session_ids = self.credential_store.list_session_ids()
        except Exception as exc:
            logger.exception("Failed to list persisted sessions")
            report.failures["*"] = str(exc)
            return report

        handles: list[SessionHandle] = []
        for session_id in session_ids:
            try:
                handles.append(await self.registry.create(session_id))
            except Exception as exc:
                _record_failure(report, session_id, exc)

        results = await asyncio.gather(
            *(handle.wait_until_ready(self.readiness_timeout) for handle in handles),
            return_exceptions=True,
        )
        for handle, result in zip(handles, results, strict=True):
            if isinstance(result, SessionStartError | ReadinessTimeoutError):
                with contextlib.suppress(SessionNotFoundError):
                    await self.registry.discard(handle.session_id)
                _record_failure(report, handle.session_id, result)
            elif isinstance(result, BaseException):
                raise result
            else:
                report.restored.append(handle.session_id)

        if report.partial:
            logger.error(
                "Partial restore failure: %d of %d sessions failed",
                len(report.failures),
                len(session_ids),
                extra={"failed_sessions": sorted(report.failures)},
            )
        else:
            logger.info("Restored %d sessions", len(report.restored))
        return report


def _record_failure(
    report: RestoreReport, session_id: str, error: BaseException
) -> None:
    logger.error(
        "Failed to restore session",
        exc_info=error,
        extra={"session_id": session_id},
    )
    report.failures[session_id] = str(error)

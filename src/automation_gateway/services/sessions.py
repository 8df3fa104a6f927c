"""Session registry: lifecycle, state machine and event binding."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

from automation_gateway.adapters.automation_client import (
    AutomationClient,
    ClientEventSink,
    ClientFactory,
)
from automation_gateway.adapters.credential_store import CredentialStore
from automation_gateway.domain.events import (
    Authenticated,
    AutomationEvent,
    Disconnected,
    EventEnvelope,
    MediaReceived,
    MessageReceived,
    QrReceived,
    Ready,
)
from automation_gateway.domain.sessions import (
    ReadinessTimeoutError,
    SessionConflictError,
    SessionNotFoundError,
    SessionSnapshot,
    SessionStartError,
    SessionStatus,
    validate_session_id,
)
from automation_gateway.services.callbacks import CallbackFilter
from automation_gateway.services.webhooks import WebhookDispatcher
from automation_gateway.services.websocket_hub import WebSocketHub

logger = logging.getLogger(__name__)

_PAIRING_STATES = {SessionStatus.STARTING, SessionStatus.QR_PENDING}
_LIVE_STATES = _PAIRING_STATES | {SessionStatus.CONNECTED}


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(eq=False)
class _ClientBinding(ClientEventSink):
    """Connects one client generation to the registry."""

    registry: "SessionRegistry"
    session_id: str
    generation: int
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    error: BaseException | None = None
    init_task: asyncio.Task[None] | None = None

    def emit(self, event: AutomationEvent) -> None:
        self.registry._handle_event(self, event)

    def context_ready(self) -> None:
        self.ready.set()

    def fail(self, error: BaseException) -> None:
        self.error = error
        self.ready.set()


@dataclass
class _Session:
    id: str
    status: SessionStatus
    webhook_url: str | None
    created_at: datetime
    last_status_change_at: datetime
    qr: str | None = None
    generation: int = 0
    client: AutomationClient | None = None
    binding: _ClientBinding | None = None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            id=self.id,
            status=self.status,
            qr=self.qr,
            webhook_url=self.webhook_url,
            created_at=self.created_at,
            last_status_change_at=self.last_status_change_at,
        )


@dataclass(frozen=True)
class SessionHandle:
    """Returned by ``create``; lets callers wait for the client context."""

    session_id: str
    _binding: _ClientBinding = field(repr=False)

    @property
    def is_ready(self) -> bool:
        return self._binding.ready.is_set() and self._binding.error is None

    async def wait_until_ready(self, timeout: float) -> None:
        """Wait until the client context exists.

        This is weaker than authenticated; poll ``status`` for that.
        """
        try:
            await asyncio.wait_for(self._binding.ready.wait(), timeout)
        except TimeoutError as exc:
            raise ReadinessTimeoutError(self.session_id, timeout) from exc
        if self._binding.error is not None:
            raise SessionStartError(self.session_id, self._binding.error)


@dataclass(frozen=True)
class SweepReport:
    """Outcome of a sweep over the registry."""

    terminated: list[str] = field(default_factory=list)
    orphans_removed: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)


@dataclass
class SessionRegistry:
    """Authoritative map of session id to session state.

    Registry operations are serialized per id. Client events arrive on the
    event loop and only touch their own session, after a generation check
    that drops events from clients replaced by ``restart`` or released by
    ``terminate``.
    """

    client_factory: ClientFactory
    credential_store: CredentialStore
    callback_filter: CallbackFilter
    webhook_dispatcher: WebhookDispatcher
    hub: WebSocketHub
    resolve_webhook_url: Callable[[str, str | None], str | None]
    set_messages_as_seen: bool = False
    max_attachment_size: int = 10_000_000
    recover_sessions: bool = False
    now: Callable[[], datetime] = _utcnow
    _sessions: dict[str, _Session] = field(default_factory=dict, init=False)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict, init=False)
    _lock_users: dict[str, int] = field(default_factory=dict, init=False)
    _tasks: set[asyncio.Task[None]] = field(default_factory=set, init=False)

    async def create(
        self, session_id: str, webhook_url: str | None = None
    ) -> SessionHandle:
        """Create a session and start its client in the background."""
        validate_session_id(session_id)
        async with self._locked(session_id):
            if session_id in self._sessions:
                raise SessionConflictError(session_id)
            data_path = self.credential_store.ensure(session_id)
            now = self.now()
            session = _Session(
                id=session_id,
                status=SessionStatus.STARTING,
                webhook_url=self.resolve_webhook_url(session_id, webhook_url),
                created_at=now,
                last_status_change_at=now,
            )
            binding = self._attach_client(session, data_path)
            self._sessions[session_id] = session
            self.hub.ensure(session_id)
            self._start_client(session)
        logger.info("Session created", extra={"session_id": session_id})
        return SessionHandle(session_id, binding)

    def status(self, session_id: str) -> SessionSnapshot:
        """Return the current snapshot of a session."""
        return self._get(session_id).snapshot()

    def list_sessions(self) -> list[SessionSnapshot]:
        """Return snapshots of every registered session."""
        return [session.snapshot() for session in self._sessions.values()]

    def get_client(self, session_id: str) -> AutomationClient:
        """Return the live client of a session for a single call."""
        client = self._get(session_id).client
        if client is None:
            raise SessionNotFoundError(session_id)
        return client

    async def client_state(self, session_id: str) -> str | None:
        """Ask the client for its live connection state."""
        return await self.get_client(session_id).get_state()

    async def restart(self, session_id: str) -> None:
        """Replace the client of a session, keeping its credentials."""
        await self._restart(session_id)

    async def terminate(self, session_id: str) -> None:
        """Release a session's client, credentials and subscribers."""
        async with self._locked(session_id):
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise SessionNotFoundError(session_id)
            logout = session.status == SessionStatus.CONNECTED
            session.qr = None
            self._set_status(session, SessionStatus.TERMINATED)
            await self._release(
                session_id, session.client, session.binding, logout=logout
            )
            session.client = None
            try:
                self.credential_store.delete(session_id)
            finally:
                await self.hub.close(session_id)
        logger.info("Session terminated", extra={"session_id": session_id})

    async def discard(self, session_id: str) -> None:
        """Drop a session without signing out or deleting its credentials."""
        async with self._locked(session_id):
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise SessionNotFoundError(session_id)
            await self._release(
                session_id, session.client, session.binding, logout=False
            )
            session.client = None
            await self.hub.close(session_id)
        logger.info("Session discarded", extra={"session_id": session_id})

    async def sweep(
        self, inactive_only: bool, older_than: timedelta | None = None
    ) -> SweepReport:
        """Terminate sessions in bulk.

        With ``inactive_only`` only sessions that are not connected are
        terminated; ``older_than`` further restricts the sweep to sessions
        whose status has not changed for that long. Credential directories
        with no registered session are removed as well.
        """
        cutoff = self.now() - older_than if older_than is not None else None
        targets = [
            session.id
            for session in self._sessions.values()
            if (not inactive_only or session.status != SessionStatus.CONNECTED)
            and (cutoff is None or session.last_status_change_at <= cutoff)
        ]
        results = await asyncio.gather(
            *(self.terminate(session_id) for session_id in targets),
            return_exceptions=True,
        )
        report = SweepReport()
        for session_id, result in zip(targets, results, strict=True):
            if isinstance(result, SessionNotFoundError):
                continue
            if isinstance(result, Exception):
                logger.error(
                    "Failed to terminate session during sweep",
                    exc_info=result,
                    extra={"session_id": session_id},
                )
                report.failures[session_id] = str(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                report.terminated.append(session_id)
        if cutoff is None:
            await self._remove_orphans(report)
        logger.info(
            "Sweep finished",
            extra={
                "terminated": len(report.terminated),
                "failed": len(report.failures),
            },
        )
        return report

    async def close(self) -> None:
        """Release every client, keeping credentials for the next start."""
        for session_id in list(self._sessions):
            async with self._locked(session_id):
                session = self._sessions.pop(session_id, None)
                if session is None:
                    continue
                await self._release(
                    session_id, session.client, session.binding, logout=False
                )
        await self.hub.close_all()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _restart(self, session_id: str, generation: int | None = None) -> None:
        async with self._locked(session_id):
            session = self._get(session_id)
            if generation is not None and session.generation != generation:
                return
            old_client, old_binding = session.client, session.binding
            data_path = self.credential_store.ensure(session_id)
            self._attach_client(session, data_path)
            session.qr = None
            self._set_status(session, SessionStatus.STARTING)
            # Existing subscribers stay connected across a restart.
            self.hub.ensure(session_id)
            await self._release(session_id, old_client, old_binding, logout=False)
            self._start_client(session)
        logger.info("Session restarted", extra={"session_id": session_id})

    async def _remove_orphans(self, report: SweepReport) -> None:
        for session_id in self.credential_store.list_session_ids():
            if session_id in self._sessions:
                continue
            async with self._locked(session_id):
                if session_id in self._sessions:
                    continue
                try:
                    self.credential_store.delete(session_id)
                except Exception as exc:
                    logger.exception(
                        "Failed to remove orphaned session directory",
                        extra={"session_id": session_id},
                    )
                    report.failures[session_id] = str(exc)
                else:
                    report.orphans_removed.append(session_id)

    def _get(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    @contextlib.asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[None]:
        # Holders and waiters are counted so an idle id does not keep its lock.
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]

    def _attach_client(self, session: _Session, data_path: Path) -> _ClientBinding:
        generation = session.generation + 1
        binding = _ClientBinding(self, session.id, generation)
        client = self.client_factory(session.id, data_path, binding)
        session.generation = generation
        session.binding = binding
        session.client = client
        return binding

    def _start_client(self, session: _Session) -> None:
        if session.client is None or session.binding is None:
            return
        session.binding.init_task = self._spawn(
            self._initialize(session.client, session.binding)
        )

    async def _initialize(
        self, client: AutomationClient, binding: _ClientBinding
    ) -> None:
        try:
            await client.initialize()
        except Exception as exc:
            logger.exception(
                "Failed to initialize client",
                extra={"session_id": binding.session_id},
            )
            binding.fail(exc)
            session = self._current(binding)
            if session is not None:
                session.qr = None
                self._set_status(session, SessionStatus.DISCONNECTED)

    async def _release(
        self,
        session_id: str,
        client: AutomationClient | None,
        binding: _ClientBinding | None,
        logout: bool,
    ) -> None:
        if binding is not None:
            await self._cancel_initialize(binding)
        if client is None:
            return
        try:
            if logout:
                await client.logout()
            else:
                await client.destroy()
        except Exception:
            logger.exception(
                "Failed to release client",
                extra={"session_id": session_id, "logout": logout},
            )

    async def _cancel_initialize(self, binding: _ClientBinding) -> None:
        task = binding.init_task
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        if not binding.ready.is_set():
            binding.fail(RuntimeError("client released before it was ready"))

    def _current(self, binding: _ClientBinding) -> _Session | None:
        session = self._sessions.get(binding.session_id)
        if session is None or session.generation != binding.generation:
            return None
        return session

    def _set_status(self, session: _Session, status: SessionStatus) -> None:
        if session.status == status:
            return
        previous = session.status
        session.status = status
        session.last_status_change_at = self.now()
        logger.info(
            "Session status changed from %s to %s",
            previous.value,
            status.value,
            extra={"session_id": session.id},
        )

    def _handle_event(self, binding: _ClientBinding, event: AutomationEvent) -> None:
        session = self._current(binding)
        if session is None:
            logger.debug(
                "Ignoring %s event from a released client",
                event.data_type,
                extra={"session_id": binding.session_id},
            )
            return
        self._apply_transition(session, event)
        envelope = EventEnvelope.wrap(session.id, event, self.now())
        self._dispatch(session, envelope)
        self._run_policies(session, binding, event)

    def _apply_transition(self, session: _Session, event: AutomationEvent) -> None:
        if isinstance(event, QrReceived):
            if session.status in _PAIRING_STATES:
                session.qr = event.qr
                self._set_status(session, SessionStatus.QR_PENDING)
        elif isinstance(event, Authenticated | Ready):
            if session.status in _PAIRING_STATES:
                session.qr = None
                self._set_status(session, SessionStatus.CONNECTED)
        elif isinstance(event, Disconnected):
            if session.status in _LIVE_STATES:
                session.qr = None
                self._set_status(session, SessionStatus.DISCONNECTED)

    def _dispatch(self, session: _Session, envelope: EventEnvelope) -> None:
        if not self.callback_filter.is_enabled(envelope.data_type):
            return
        extra = {"session_id": session.id, "data_type": envelope.data_type}
        if session.webhook_url:
            try:
                self.webhook_dispatcher.dispatch(session.webhook_url, envelope)
            except Exception:
                logger.exception("Failed to schedule webhook", extra=extra)
        try:
            self.hub.broadcast(envelope)
        except Exception:
            logger.exception("Failed to broadcast to WebSocket", extra=extra)

    def _run_policies(
        self, session: _Session, binding: _ClientBinding, event: AutomationEvent
    ) -> None:
        client = session.client
        if client is None:
            return
        if isinstance(event, MessageReceived):
            if self.set_messages_as_seen and event.chat_id:
                self._spawn(self._send_seen(session.id, client, event.chat_id))
            if self._should_download_media(event):
                self._spawn(self._forward_media(binding, client, event))
        elif isinstance(event, Disconnected) and self.recover_sessions:
            self._spawn(self._recover(session.id, binding.generation))

    def _should_download_media(self, event: MessageReceived) -> bool:
        size = event.media_size
        return (
            event.has_media
            and event.message_id is not None
            and size is not None
            and size < self.max_attachment_size
            and self.callback_filter.is_enabled(MediaReceived.data_type)
        )

    async def _send_seen(
        self, session_id: str, client: AutomationClient, chat_id: str
    ) -> None:
        try:
            await client.send_seen(chat_id)
        except Exception:
            logger.exception(
                "Failed to send seen status",
                extra={"session_id": session_id, "chat_id": chat_id},
            )

    async def _forward_media(
        self,
        binding: _ClientBinding,
        client: AutomationClient,
        event: MessageReceived,
    ) -> None:
        try:
            media = await client.download_media(str(event.message_id))
        except Exception:
            logger.exception(
                "Failed to download media",
                extra={"session_id": binding.session_id},
            )
            return
        if media:
            binding.emit(MediaReceived(message=event.message, media=media))

    async def _recover(self, session_id: str, generation: int) -> None:
        try:
            await self._restart(session_id, generation)
        except SessionNotFoundError:
            return
        except Exception:
            logger.exception(
                "Failed to recover session", extra={"session_id": session_id}
            )

    def _spawn(self, coro: Coroutine[object, object, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

"""Periodic termination of sessions that are not connected."""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import timedelta

from automation_gateway.services.sessions import SessionRegistry, SweepReport

logger = logging.getLogger(__name__)


@dataclass
class InactivitySweeper:
    """Background loop sweeping inactive sessions at a fixed interval.

    Only sessions whose status has not changed for ``grace_seconds`` are
    swept, so a session still waiting for its QR scan is not cut short.
    """

    registry: SessionRegistry
    interval_seconds: float
    grace_seconds: float = 300.0
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    @property
    def enabled(self) -> bool:
        return self.interval_seconds > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop; a no-op when disabled or already running."""
        if not self.enabled or self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "Inactivity sweeper started",
            extra={"interval_seconds": self.interval_seconds},
        )

    async def stop(self) -> None:
        """Stop the loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def sweep_once(self) -> SweepReport:
        """Run a single inactive-only sweep."""
        return await self.registry.sweep(
            inactive_only=True, older_than=timedelta(seconds=self.grace_seconds)
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Inactivity sweep failed")

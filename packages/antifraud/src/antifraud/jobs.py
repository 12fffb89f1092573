"""Background sweep of expired blacklist entries.

Meant to be started from the host application's lifespan:

    job = BlacklistCleanupJob(service.blacklist, settings.cleanup_interval_seconds)

    @asynccontextmanager
    async def lifespan(app):
        await job.start()
        yield
        await job.stop()
"""

import asyncio
import contextlib
import logging

from antifraud.blacklist import BlacklistStore
from antifraud.exceptions import PersistenceError

logger = logging.getLogger("antifraud.jobs")


class BlacklistCleanupJob:
    """Periodically deletes expired blacklist entries."""

    def __init__(self, blacklist: BlacklistStore, interval_seconds: float = 300):
        self.blacklist = blacklist
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._removed_total: int = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def removed_total(self) -> int:
        """Total number of entries removed since the job was created."""
        return self._removed_total

    async def run_once(self) -> int:
        """Run a single sweep. Returns the number of entries removed."""
        removed = await self.blacklist.cleanup_expired()
        self._removed_total += removed
        return removed

    async def start(self) -> None:
        """Start the background task (no-op if already running)."""
        if not self.is_running:
            self._task = asyncio.create_task(self._periodic_cleanup())

    async def stop(self) -> None:
        """Stop the background task."""
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _periodic_cleanup(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except PersistenceError as e:
                logger.error(f"Blacklist cleanup failed, retrying next cycle: {e}")
            except Exception:
                logger.exception(
                    "Unexpected error in blacklist cleanup, retrying next cycle"
                )

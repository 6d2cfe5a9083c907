"""
Expiry Sweeper - Periodic background task moving lapsed chat requests to expired.

Runs inside the API process when enabled; `scripts/sweep_expired_chat_requests.py`
runs the same sweep once from cron.
"""

import asyncio
import contextlib

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.observability.logging import get_logger
from app.observability.metrics import metrics
from app.services.blocks import BlockRegistry
from app.services.chat_requests import ChatRequestWorkflow
from app.services.conversations import ConversationDirectory
from app.services.notifications import NotificationSender

logger = get_logger(__name__)


async def sweep_once(
    session_factory: async_sessionmaker[AsyncSession], notifier: NotificationSender
) -> int:
    """Run one sweep in a fresh session."""
    async with session_factory() as session:
        workflow = ChatRequestWorkflow(
            session, BlockRegistry(session), ConversationDirectory(session), notifier
        )
        return await workflow.sweep_expired()


class ExpirySweeper:
    """Calls `sweep_once` every `interval_seconds` until stopped."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationSender,
        interval_seconds: float = 3600,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("expiry_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("expiry_sweeper_stopped")

    async def _run(self) -> None:
        while True:
            try:
                await sweep_once(self.session_factory, self.notifier)
            except Exception as e:
                # Keep the loop alive; the next tick retries
                metrics.record_error(type(e).__name__, "expiry_sweep")
                logger.error("expiry_sweep_failed", error=str(e), exc_info=True)

            await asyncio.sleep(self.interval_seconds)

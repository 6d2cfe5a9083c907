"""
Tests for the background expiry sweep.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import ChatRequest, utc_now
from app.models.api import ChatRequestStatus
from app.services.chat_requests import ChatRequestWorkflow
from app.services.expiry_sweeper import ExpirySweeper, sweep_once
from conftest import RecordingNotifier


async def lapse_all(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with session_factory() as session:
        await session.execute(
            update(ChatRequest).values(expires_at=utc_now() - timedelta(seconds=1))
        )
        await session.commit()


class TestSweepOnce:
    async def test_expires_lapsed_requests(
        self,
        workflow: ChatRequestWorkflow,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: RecordingNotifier,
        alice: UUID,
        bob: UUID,
        carol: UUID,
    ) -> None:
        await workflow.create(alice, carol, "one")
        await workflow.create(bob, carol, "two")
        await lapse_all(session_factory)

        assert await sweep_once(session_factory, notifier) == 2
        assert await sweep_once(session_factory, notifier) == 0

        async with session_factory() as session:
            statuses = (await session.execute(select(ChatRequest.status))).scalars().all()
        assert [ChatRequestStatus(s) for s in statuses] == [ChatRequestStatus.EXPIRED] * 2


class TestExpirySweeper:
    """Tests for the periodic task wrapper."""

    async def test_start_runs_sweep_and_stop_cancels(
        self, session_factory: async_sessionmaker[AsyncSession], notifier: RecordingNotifier
    ) -> None:
        with patch("app.services.expiry_sweeper.sweep_once", new=AsyncMock(return_value=0)) as sweep:
            sweeper = ExpirySweeper(session_factory, notifier, interval_seconds=0.01)
            sweeper.start()
            await asyncio.sleep(0.05)

            assert sweeper.running
            await sweeper.stop()

        assert not sweeper.running
        assert sweep.await_count >= 1

    async def test_start_twice_keeps_one_task(
        self, session_factory: async_sessionmaker[AsyncSession], notifier: RecordingNotifier
    ) -> None:
        with patch("app.services.expiry_sweeper.sweep_once", new=AsyncMock(return_value=0)):
            sweeper = ExpirySweeper(session_factory, notifier, interval_seconds=60)
            sweeper.start()
            first_task = sweeper._task
            sweeper.start()

            assert sweeper._task is first_task
            await sweeper.stop()

    async def test_failed_sweep_keeps_loop_alive(
        self, session_factory: async_sessionmaker[AsyncSession], notifier: RecordingNotifier
    ) -> None:
        failing = AsyncMock(side_effect=[RuntimeError("db down"), 0, 0, 0, 0, 0, 0, 0, 0, 0])
        with patch("app.services.expiry_sweeper.sweep_once", new=failing):
            sweeper = ExpirySweeper(session_factory, notifier, interval_seconds=0.01)
            sweeper.start()
            await asyncio.sleep(0.05)

            assert sweeper.running
            await sweeper.stop()

        assert failing.await_count >= 2

    async def test_stop_without_start(
        self, session_factory: async_sessionmaker[AsyncSession], notifier: RecordingNotifier
    ) -> None:
        sweeper = ExpirySweeper(session_factory, notifier)

        await sweeper.stop()

        assert not sweeper.running

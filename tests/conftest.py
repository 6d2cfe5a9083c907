"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- A real SQLite database per test (file in tmp_path) with the full schema
- User rows in various credit / subscription states
- Services wired the way the request dependencies wire them
- A recording notification sender
- API test client with auth and service overrides
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-jwt-signing-min-32-chars")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("EXPIRY_SWEEP_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from app.db.models import Base, User
from app.models.api import Role, SubscriptionPlan
from app.models.domain import CreditSettings, NotificationEvent, Principal
from app.services.blocks import BlockRegistry
from app.services.chat_requests import ChatRequestWorkflow
from app.services.conversations import ConversationDirectory
from app.services.credit_settings import StaticCreditSettingsProvider
from app.services.credits import CreditLedger
from app.services.messages import MessageStore
from app.services.vip import VipEligibilityEngine

# ============================================================================
# Notification Fixtures
# ============================================================================


class RecordingNotifier:
    """Collects every event it is handed."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    async def send(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[NotificationEvent]:
        return [e for e in self.events if e.event_type.value == event_type]


class FailingNotifier:
    """Raises on every send, like a delivery service that is down."""

    def __init__(self) -> None:
        self.calls = 0

    async def send(self, event: NotificationEvent) -> None:
        self.calls += 1
        raise ConnectionError("notification service unavailable")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "chat-core.db"


@pytest.fixture
async def engine(database_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{database_path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# User Fixtures
# ============================================================================

UserFactory = Callable[..., Awaitable[UUID]]


@pytest.fixture
def make_user(session_factory: async_sessionmaker[AsyncSession]) -> UserFactory:
    """
    Factory inserting a user row in its own session; returns the user id.

    Balances set here have no ledger rows behind them, so tests checking the
    ledger invariant should fund users through CreditLedger.credit instead.
    """

    async def _make_user(
        credits: int = 0,
        plan: SubscriptionPlan = SubscriptionPlan.FREE,
        role: Role = Role.REGULAR,
    ) -> UUID:
        user_id = uuid4()
        async with session_factory() as session:
            session.add(
                User(
                    id=user_id,
                    email=f"{user_id.hex[:8]}@example.com",
                    role=role,
                    credits=credits,
                    subscription_plan=plan,
                )
            )
            await session.commit()
        return user_id

    return _make_user


@pytest.fixture
async def alice(make_user: UserFactory) -> UUID:
    return await make_user()


@pytest.fixture
async def bob(make_user: UserFactory) -> UUID:
    return await make_user()


@pytest.fixture
async def carol(make_user: UserFactory) -> UUID:
    return await make_user()


async def load_user(session_factory: async_sessionmaker[AsyncSession], user_id: UUID) -> User:
    """Fresh copy of a user row, read in its own session."""
    async with session_factory() as session:
        user = await session.get(User, user_id)
        assert user is not None
        return user


def aware(moment: datetime) -> datetime:
    """SQLite hands datetimes back without tzinfo; all stored values are UTC."""
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def credit_settings() -> CreditSettings:
    return CreditSettings()


@pytest.fixture
def credit_settings_provider(credit_settings: CreditSettings) -> StaticCreditSettingsProvider:
    return StaticCreditSettingsProvider(credit_settings)


@pytest.fixture
def blocks(db_session: AsyncSession) -> BlockRegistry:
    return BlockRegistry(db_session)


@pytest.fixture
def directory(db_session: AsyncSession) -> ConversationDirectory:
    return ConversationDirectory(db_session)


@pytest.fixture
def vip_engine(
    db_session: AsyncSession, credit_settings_provider: StaticCreditSettingsProvider
) -> VipEligibilityEngine:
    return VipEligibilityEngine(db_session, credit_settings_provider)


@pytest.fixture
def ledger(db_session: AsyncSession, vip_engine: VipEligibilityEngine) -> CreditLedger:
    return CreditLedger(db_session, vip_engine)


@pytest.fixture
def message_store(
    db_session: AsyncSession,
    blocks: BlockRegistry,
    directory: ConversationDirectory,
    ledger: CreditLedger,
    credit_settings_provider: StaticCreditSettingsProvider,
    notifier: RecordingNotifier,
) -> MessageStore:
    return MessageStore(
        db_session, blocks, directory, ledger, credit_settings_provider, notifier
    )


@pytest.fixture
def workflow(
    db_session: AsyncSession,
    blocks: BlockRegistry,
    directory: ConversationDirectory,
    notifier: RecordingNotifier,
) -> ChatRequestWorkflow:
    return ChatRequestWorkflow(db_session, blocks, directory, notifier)


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================


@pytest.fixture
def app() -> FastAPI:
    """Create FastAPI app for testing."""
    from app.main import app as main_app

    return main_app


@pytest.fixture
def principal() -> Principal:
    return Principal(user_id=uuid4(), role=Role.REGULAR)


@pytest.fixture
def admin_principal() -> Principal:
    return Principal(user_id=uuid4(), role=Role.ADMIN)


@pytest.fixture
def override(app: FastAPI) -> Iterator[Callable[[Any, Any], None]]:
    """Register a dependency override that returns a fixed object."""

    def _override(dependency: Any, value: Any) -> None:
        app.dependency_overrides[dependency] = lambda: value

    yield _override
    app.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI, override: Callable[[Any, Any], None], principal: Principal) -> TestClient:
    """Test client authenticated as a regular user."""
    from app.api.dependencies import get_principal

    override(get_principal, principal)
    return TestClient(app)

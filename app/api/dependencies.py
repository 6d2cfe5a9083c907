"""
FastAPI Dependencies - Authentication, authorization and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.session import get_read_db, get_write_db, get_write_session_factory
from app.exceptions import AuthenticationError
from app.models.api import Capability
from app.models.domain import Principal
from app.observability.logging import get_logger
from app.services.auth_tokens import AccessTokenService
from app.services.blocks import BlockRegistry
from app.services.chat_requests import ChatRequestWorkflow
from app.services.conversations import ConversationDirectory
from app.services.credit_settings import (
    CreditSettingsProvider,
    StoredCreditSettingsProvider,
    credit_settings_from,
)
from app.services.credits import CreditLedger
from app.services.messages import MessageStore
from app.services.notifications import LogNotificationSender, NotificationSender
from app.services.vip import VipEligibilityEngine

logger = get_logger(__name__)

# ============================================================================
# User JWT Authentication
# ============================================================================

# Bearer token scheme for JWT auth
bearer_scheme = HTTPBearer(auto_error=False)


def get_token_service() -> AccessTokenService:
    """Token verifier configured from settings."""
    return AccessTokenService(settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    token_service: AccessTokenService = Depends(get_token_service),
) -> Principal:
    """
    FastAPI dependency resolving the authenticated caller.

    Accepts: Authorization: Bearer {jwt}

    Raises:
        HTTPException 401 if no token or invalid token
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return token_service.verify(credentials.credentials)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def require_capability(capability: Capability) -> Callable[..., Awaitable[Principal]]:
    """
    FastAPI dependency factory to check a role capability.

    Usage:
        @router.post("/v1/admin/credits/grant")
        async def grant_credits(
            principal: Principal = Depends(require_capability(Capability.MANAGE_CREDITS))
        ):
            pass
    """

    async def capability_checker(
        principal: Principal = Depends(get_principal),
    ) -> Principal:
        """Check the caller's role grants the capability."""
        if not principal.can(capability):
            logger.warning(
                "capability_denied",
                user_id=str(principal.user_id),
                role=principal.role.value,
                capability=capability.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required capability: {capability.value}",
            )
        return principal

    return capability_checker


# ============================================================================
# Collaborators held on app.state (set up in the lifespan)
# ============================================================================


def get_notifier(request: Request) -> NotificationSender:
    notifier: NotificationSender | None = getattr(request.app.state, "notifier", None)
    return notifier or LogNotificationSender()


def get_credit_settings(request: Request) -> StoredCreditSettingsProvider:
    provider: StoredCreditSettingsProvider | None = getattr(
        request.app.state, "credit_settings", None
    )
    if provider is None:
        provider = StoredCreditSettingsProvider(
            get_write_session_factory(), credit_settings_from(settings)
        )
        request.app.state.credit_settings = provider
    return provider


# ============================================================================
# Services (one session per request, shared by every service in it)
# ============================================================================


async def get_block_registry(db: AsyncSession = Depends(get_write_db)) -> BlockRegistry:
    return BlockRegistry(db)


async def get_conversation_directory(
    db: AsyncSession = Depends(get_write_db),
) -> ConversationDirectory:
    return ConversationDirectory(db)


async def get_vip_engine(
    db: AsyncSession = Depends(get_write_db),
    credit_settings: CreditSettingsProvider = Depends(get_credit_settings),
) -> VipEligibilityEngine:
    return VipEligibilityEngine(db, credit_settings, window_days=settings.vip_window_days)


async def get_credit_ledger(
    db: AsyncSession = Depends(get_write_db),
    vip: VipEligibilityEngine = Depends(get_vip_engine),
) -> CreditLedger:
    return CreditLedger(db, vip, history_page_size=settings.history_page_size)


async def get_credit_reader(
    db: AsyncSession = Depends(get_read_db),
    credit_settings: CreditSettingsProvider = Depends(get_credit_settings),
) -> CreditLedger:
    """Ledger bound to the read replica, for balance and history lookups."""
    vip = VipEligibilityEngine(db, credit_settings, window_days=settings.vip_window_days)
    return CreditLedger(db, vip, history_page_size=settings.history_page_size)


async def get_vip_reader(
    db: AsyncSession = Depends(get_read_db),
    credit_settings: CreditSettingsProvider = Depends(get_credit_settings),
) -> VipEligibilityEngine:
    return VipEligibilityEngine(db, credit_settings, window_days=settings.vip_window_days)


async def get_message_store(
    db: AsyncSession = Depends(get_write_db),
    blocks: BlockRegistry = Depends(get_block_registry),
    directory: ConversationDirectory = Depends(get_conversation_directory),
    ledger: CreditLedger = Depends(get_credit_ledger),
    credit_settings: CreditSettingsProvider = Depends(get_credit_settings),
    notifier: NotificationSender = Depends(get_notifier),
) -> MessageStore:
    return MessageStore(
        db,
        blocks,
        directory,
        ledger,
        credit_settings,
        notifier,
        intro_max_receivers=settings.intro_max_receivers,
    )


async def get_chat_request_workflow(
    db: AsyncSession = Depends(get_write_db),
    blocks: BlockRegistry = Depends(get_block_registry),
    directory: ConversationDirectory = Depends(get_conversation_directory),
    notifier: NotificationSender = Depends(get_notifier),
) -> ChatRequestWorkflow:
    return ChatRequestWorkflow(
        db,
        blocks,
        directory,
        notifier,
        ttl_days=settings.chat_request_ttl_days,
        pending_limit=settings.pending_requests_limit,
    )

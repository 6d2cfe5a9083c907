"""
VIP Eligibility Engine - Rolling-window spend aggregation driving the VIP flag.

A user is VIP while subscribed to premium (or above) AND their usage spend over
the trailing window reaches the configured threshold. The flag is recomputed on
every relevant event; falling below the threshold revokes it immediately.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import CreditTransaction, User, utc_now
from app.exceptions import NotFoundError
from app.models.api import SubscriptionPlan, TransactionType
from app.models.domain import VipProgress, VipStatus, WindowSpend
from app.observability.logging import get_logger
from app.observability.metrics import metrics
from app.services.credit_settings import CreditSettingsProvider

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30


class VipEligibilityEngine:
    """Owns users.vip_active / users.vip_expires_at."""

    def __init__(
        self,
        session: AsyncSession,
        credit_settings: CreditSettingsProvider,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ) -> None:
        self.session = session
        self.credit_settings = credit_settings
        self.window = timedelta(days=window_days)

    async def window_spend(self, user_id: UUID, now: datetime | None = None) -> WindowSpend:
        """Sum of usage spend inside the trailing window, plus its oldest timestamp."""
        since = (now or utc_now()) - self.window
        stmt = select(
            func.coalesce(func.sum(-CreditTransaction.amount), 0),
            func.min(CreditTransaction.created_at),
        ).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.transaction_type == TransactionType.USAGE,
            CreditTransaction.amount < 0,
            CreditTransaction.created_at >= since,
        )
        total, oldest = (await self.session.execute(stmt)).one()
        return WindowSpend(total=int(total), oldest_transaction_at=oldest)

    async def apply_eligibility(self, user_id: UUID) -> VipStatus:
        """
        Recompute and write the VIP flag inside the caller's transaction.

        Raises:
            NotFoundError: user doesn't exist
        """
        user = await self._load_user(user_id)
        threshold = (await self.credit_settings.current()).vip_credits_required
        now = utc_now()
        spend = await self.window_spend(user_id, now=now)
        premium_active = SubscriptionPlan(user.subscription_plan).is_premium_or_above

        if premium_active and spend.total >= threshold:
            user.vip_active = True
            user.vip_expires_at = now + self.window
        else:
            user.vip_active = False
            user.vip_expires_at = None
        await self.session.flush()

        metrics.record_vip_recalculation(user.vip_active)
        logger.info(
            "vip_status_recalculated",
            user_id=str(user_id),
            vip_active=user.vip_active,
            window_spend=spend.total,
            threshold=threshold,
            premium_active=premium_active,
        )
        return VipStatus(
            user_id=user_id,
            vip_active=user.vip_active,
            vip_expires_at=user.vip_expires_at,
        )

    async def recalculate(self, user_id: UUID) -> VipStatus:
        """Recompute the VIP flag and commit."""
        status = await self.apply_eligibility(user_id)
        await self.session.commit()
        return status

    async def progress(self, user_id: UUID) -> VipProgress:
        """Read-only progress view for the VIP screen."""
        user = await self._load_user(user_id)
        threshold = (await self.credit_settings.current()).vip_credits_required
        now = utc_now()
        spend = await self.window_spend(user_id, now=now)

        if spend.oldest_transaction_at is not None:
            deadline = spend.oldest_transaction_at + self.window
        else:
            deadline = now + self.window

        return VipProgress(
            premium_active=SubscriptionPlan(user.subscription_plan).is_premium_or_above,
            vip_active=user.vip_active,
            vip_expires_at=user.vip_expires_at,
            credits_spent_in_window=spend.total,
            credits_required=threshold,
            remaining_to_vip=max(0, threshold - spend.total),
            deadline_date=deadline.date().isoformat(),
            total_credits_spent=user.total_credits_spent,
        )

    async def _load_user(self, user_id: UUID) -> User:
        stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        user = (await self.session.execute(stmt)).scalar_one_or_none()
        if user is None:
            raise NotFoundError("User", user_id)
        return user

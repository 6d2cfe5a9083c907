"""
Credit Ledger - Append-only transaction log plus the materialized balance on users.

Every balance change and its ledger entry are written in the same transaction,
so sum(credit_transactions.amount) == users.credits holds for every user.

All balance mutations are conditional single-statement UPDATEs
(`credits = credits - n WHERE credits >= n`), so concurrent spends cannot overdraw.
"""

import calendar
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import CreditTransaction, User, utc_now
from app.exceptions import (
    ChatCoreError,
    DataIntegrityError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
    WriteVerificationError,
)
from app.models.api import RelatedKind, SubscriptionPlan, TransactionType
from app.models.domain import (
    BalanceData,
    CreditTransactionData,
    Relation,
    SpendResult,
    SubscriptionChange,
    TransactionPage,
)
from app.observability.logging import get_logger
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.vip import VipEligibilityEngine

logger = get_logger(__name__)

# Credits granted when subscribing to each plan
PLAN_ALLOWANCES: dict[SubscriptionPlan, int] = {
    SubscriptionPlan.FREE: 0,
    SubscriptionPlan.BASIC: 100,
    SubscriptionPlan.PREMIUM: 500,
    SubscriptionPlan.VIP: 1500,
}


def _add_one_month(moment: datetime) -> datetime:
    """Same day next month, clamped to the month's last day."""
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class CreditLedger:
    """
    Owns users.credits and the credit_transactions table.

    Public operations commit. `debit` joins the caller's transaction so other
    workflows (e.g. paid messages) can charge atomically with their own writes.
    """

    def __init__(
        self,
        session: AsyncSession,
        vip: VipEligibilityEngine,
        history_page_size: int = 50,
    ) -> None:
        self.session = session
        self.vip = vip
        self.history_page_size = history_page_size

    async def append(
        self,
        user_id: UUID,
        transaction_type: TransactionType,
        amount: int,
        balance_after: int,
        description: str | None = None,
        relation: Relation | None = None,
    ) -> CreditTransactionData:
        """
        Insert one ledger row. Does not touch the balance.

        Raises:
            ValidationError: amount sign doesn't match the transaction type
            WriteVerificationError: row not readable after flush
        """
        if amount == 0:
            raise ValidationError("transaction amount cannot be zero")
        if (transaction_type == TransactionType.USAGE) != (amount < 0):
            raise ValidationError(
                f"{transaction_type.value} transactions must have a "
                f"{'negative' if transaction_type == TransactionType.USAGE else 'positive'} amount"
            )

        transaction = CreditTransaction(
            user_id=user_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_after=balance_after,
            description=description,
            related_kind=relation.kind if relation else None,
            related_id=relation.related_id if relation else None,
            created_at=utc_now(),
        )
        self.session.add(transaction)
        await self.session.flush()

        verified = await self.session.get(CreditTransaction, transaction.id)
        if verified is None:
            raise WriteVerificationError(f"Credit transaction {transaction.id} not found after insert")

        return self._transaction_to_domain(verified)

    async def debit(
        self,
        user_id: UUID,
        amount: int,
        description: str,
        relation: Relation | None = None,
    ) -> SpendResult:
        """
        Charge credits inside the caller's transaction (no commit).

        The sufficiency check and the decrement are one conditional UPDATE.

        Raises:
            ValidationError: amount is not positive
            NotFoundError: user doesn't exist
            InsufficientCreditsError: balance < amount (nothing written)
        """
        if amount <= 0:
            raise ValidationError("spend amount must be positive")

        now = utc_now()
        stmt = (
            update(User)
            .where(User.id == user_id, User.credits >= amount)
            .values(
                credits=User.credits - amount,
                total_credits_spent=User.total_credits_spent + amount,
                last_credit_spent_at=now,
            )
            .returning(User.credits)
            .execution_options(synchronize_session=False)
        )
        balance_after = (await self.session.execute(stmt)).scalar_one_or_none()

        if balance_after is None:
            balance = await self._current_balance(user_id)
            if balance is None:
                raise NotFoundError("User", user_id)
            raise InsufficientCreditsError(balance, amount)

        transaction = await self.append(
            user_id,
            TransactionType.USAGE,
            -amount,
            balance_after=balance_after,
            description=description,
            relation=relation,
        )
        vip_status = await self.vip.apply_eligibility(user_id)

        return SpendResult(
            transaction=transaction,
            balance_after=balance_after,
            vip_active=vip_status.vip_active,
        )

    async def spend(
        self,
        user_id: UUID,
        amount: int,
        description: str,
        relation: Relation | None = None,
    ) -> SpendResult:
        """
        Spend credits: decrement balance, append a usage entry, recalculate VIP.

        On any failure nothing is written.
        """
        with trace_operation("credits_spend", user_id=user_id, amount=amount):
            try:
                result = await self.debit(user_id, amount, description, relation)
            except InsufficientCreditsError as e:
                await self.session.rollback()
                metrics.record_insufficient_credits()
                logger.info(
                    "credits_spend_refused",
                    user_id=str(user_id),
                    amount=amount,
                    balance=e.balance,
                )
                raise
            except ChatCoreError:
                await self.session.rollback()
                raise

            await self.session.commit()

        metrics.record_transaction(TransactionType.USAGE.value, -amount)
        logger.info(
            "credits_spent",
            user_id=str(user_id),
            amount=amount,
            balance_after=result.balance_after,
            transaction_id=str(result.transaction.transaction_id),
            vip_active=result.vip_active,
        )
        return result

    async def credit(
        self,
        user_id: UUID,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        relation: Relation | None = None,
    ) -> CreditTransactionData:
        """
        Add credits (purchase, subscription, refund, refill).

        Raises:
            ValidationError: non-positive amount or usage type
            NotFoundError: user doesn't exist
        """
        if transaction_type == TransactionType.USAGE:
            raise ValidationError("usage transactions are created by spending")

        try:
            transaction = await self._credit_in_transaction(
                user_id, amount, transaction_type, description, relation
            )
        except ChatCoreError:
            await self.session.rollback()
            raise
        await self.session.commit()

        metrics.record_transaction(transaction_type.value, amount)
        logger.info(
            "credits_added",
            user_id=str(user_id),
            amount=amount,
            transaction_type=transaction_type.value,
            balance_after=transaction.balance_after,
        )
        return transaction

    async def balance_of(self, user_id: UUID) -> BalanceData:
        user = await self._load_user(user_id)
        return BalanceData(
            user_id=user.id,
            credits=user.credits,
            subscription_plan=SubscriptionPlan(user.subscription_plan),
            subscription_expires_at=user.subscription_expires_at,
            total_credits_spent=user.total_credits_spent,
        )

    async def history_of(
        self, user_id: UUID, page: int = 1, limit: int | None = None
    ) -> TransactionPage:
        """A page of the user's ledger, newest first."""
        if page < 1:
            raise ValidationError("page must be at least 1")
        limit = limit or self.history_page_size
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        total_stmt = select(func.count(CreditTransaction.id)).where(
            CreditTransaction.user_id == user_id
        )
        total = (await self.session.execute(total_stmt)).scalar_one()

        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return TransactionPage(
            items=[self._transaction_to_domain(t) for t in result.scalars().all()],
            page=page,
            limit=limit,
            total=total,
        )

    async def subscribe(self, user_id: UUID, plan: SubscriptionPlan) -> SubscriptionChange:
        """
        Switch the user to a plan, grant its allowance and recalculate VIP.

        Raises:
            NotFoundError: user doesn't exist
        """
        now = utc_now()
        expires_at = _add_one_month(now)
        allowance = PLAN_ALLOWANCES[plan]

        try:
            await self._set_plan(user_id, plan, expires_at)
            if allowance > 0:
                transaction = await self._credit_in_transaction(
                    user_id,
                    allowance,
                    TransactionType.SUBSCRIPTION,
                    f"Subscription: {plan.value}",
                    Relation(kind=RelatedKind.SUBSCRIPTION),
                )
                balance_after = transaction.balance_after
            else:
                balance_after = (await self._load_user(user_id)).credits
            vip_status = await self.vip.apply_eligibility(user_id)
        except ChatCoreError:
            await self.session.rollback()
            raise
        await self.session.commit()

        if allowance > 0:
            metrics.record_transaction(TransactionType.SUBSCRIPTION.value, allowance)
        logger.info(
            "subscription_started",
            user_id=str(user_id),
            plan=plan.value,
            credits_added=allowance,
            vip_active=vip_status.vip_active,
        )
        return SubscriptionChange(
            user_id=user_id,
            plan=plan,
            credits_added=allowance,
            balance_after=balance_after,
            expires_at=expires_at,
            vip_active=vip_status.vip_active,
        )

    async def cancel_subscription(self, user_id: UUID) -> SubscriptionChange:
        """Drop back to the free plan; VIP is recalculated (and so revoked)."""
        try:
            await self._set_plan(user_id, SubscriptionPlan.FREE, None)
            vip_status = await self.vip.apply_eligibility(user_id)
            balance = (await self._load_user(user_id)).credits
        except ChatCoreError:
            await self.session.rollback()
            raise
        await self.session.commit()

        logger.info("subscription_cancelled", user_id=str(user_id))
        return SubscriptionChange(
            user_id=user_id,
            plan=SubscriptionPlan.FREE,
            credits_added=0,
            balance_after=balance,
            expires_at=None,
            vip_active=vip_status.vip_active,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _credit_in_transaction(
        self,
        user_id: UUID,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        relation: Relation | None,
    ) -> CreditTransactionData:
        if amount <= 0:
            raise ValidationError("credit amount must be positive")

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(credits=User.credits + amount)
            .returning(User.credits)
            .execution_options(synchronize_session=False)
        )
        balance_after = (await self.session.execute(stmt)).scalar_one_or_none()
        if balance_after is None:
            raise NotFoundError("User", user_id)

        return await self.append(
            user_id,
            transaction_type,
            amount,
            balance_after=balance_after,
            description=description,
            relation=relation,
        )

    async def _set_plan(
        self, user_id: UUID, plan: SubscriptionPlan, expires_at: datetime | None
    ) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(subscription_plan=plan, subscription_expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            if result.rowcount == 0:
                raise NotFoundError("User", user_id)
            raise DataIntegrityError(f"Plan update touched {result.rowcount} users")

    async def _current_balance(self, user_id: UUID) -> int | None:
        stmt = select(User.credits).where(User.id == user_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _load_user(self, user_id: UUID) -> User:
        stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        user = (await self.session.execute(stmt)).scalar_one_or_none()
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def _transaction_to_domain(self, transaction: CreditTransaction) -> CreditTransactionData:
        """Convert ORM transaction to domain model."""
        relation = None
        if transaction.related_kind is not None:
            relation = Relation(
                kind=RelatedKind(transaction.related_kind),
                related_id=transaction.related_id,
            )
        return CreditTransactionData(
            transaction_id=transaction.id,
            user_id=transaction.user_id,
            transaction_type=TransactionType(transaction.transaction_type),
            amount=transaction.amount,
            balance_after=transaction.balance_after,
            description=transaction.description,
            relation=relation,
            created_at=transaction.created_at,
        )

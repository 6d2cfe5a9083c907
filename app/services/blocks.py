"""
Block Registry - Symmetric block relation gating messaging and chat requests.

Rows are directional (blocker -> blocked) but every gate checks both directions.
"""

from uuid import UUID, uuid4

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.dialect import insert_ignoring_conflict
from app.db.models import Block, User, utc_now
from app.exceptions import ForbiddenError, NotFoundError, ValidationError, WriteVerificationError
from app.models.domain import BlockData
from app.observability.logging import get_logger
from app.observability.metrics import metrics

logger = get_logger(__name__)


class BlockRegistry:
    """Owns the blocks table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def block(self, blocker_id: UUID, blocked_id: UUID) -> BlockData:
        """
        Block a user. Idempotent: blocking twice returns the existing row.

        Raises:
            ValidationError: blocker and blocked are the same user
            NotFoundError: blocked user doesn't exist
        """
        if blocker_id == blocked_id:
            raise ValidationError("cannot block yourself")

        if await self.session.get(User, blocked_id) is None:
            raise NotFoundError("User", blocked_id)

        inserted = await insert_ignoring_conflict(
            self.session,
            Block,
            {
                "id": uuid4(),
                "blocker_id": blocker_id,
                "blocked_id": blocked_id,
                "created_at": utc_now(),
            },
            conflict_columns=("blocker_id", "blocked_id"),
        )

        block = await self._find(blocker_id, blocked_id)
        if block is None:
            raise WriteVerificationError(f"Block {blocker_id}->{blocked_id} not found after insert")

        await self.session.commit()

        if inserted:
            metrics.record_block("block")
            logger.info("user_blocked", blocker_id=str(blocker_id), blocked_id=str(blocked_id))

        return self._to_domain(block)

    async def unblock(self, blocker_id: UUID, blocked_id: UUID) -> bool:
        """Remove the directional row if present. Returns whether a row was removed."""
        stmt = delete(Block).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
        result = await self.session.execute(stmt)
        await self.session.commit()

        removed = bool(result.rowcount)
        if removed:
            metrics.record_block("unblock")
            logger.info("user_unblocked", blocker_id=str(blocker_id), blocked_id=str(blocked_id))
        return removed

    async def is_blocked_either_direction(self, user_a: UUID, user_b: UUID) -> bool:
        stmt = (
            select(Block.id)
            .where(
                or_(
                    and_(Block.blocker_id == user_a, Block.blocked_id == user_b),
                    and_(Block.blocker_id == user_b, Block.blocked_id == user_a),
                )
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def ensure_not_blocked(self, user_a: UUID, user_b: UUID) -> None:
        """
        Gate consulted before every messaging write.

        Raises:
            ForbiddenError: a block exists in either direction
        """
        if await self.is_blocked_either_direction(user_a, user_b):
            raise ForbiddenError("blocked")

    async def list_blocked_by(self, user_id: UUID) -> list[BlockData]:
        """Blocks created by the user, most recent first."""
        stmt = (
            select(Block)
            .where(Block.blocker_id == user_id)
            .order_by(Block.created_at.desc(), Block.id)
        )
        result = await self.session.execute(stmt)
        return [self._to_domain(block) for block in result.scalars().all()]

    async def _find(self, blocker_id: UUID, blocked_id: UUID) -> Block | None:
        stmt = select(Block).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _to_domain(self, block: Block) -> BlockData:
        return BlockData(
            block_id=block.id,
            blocker_id=block.blocker_id,
            blocked_id=block.blocked_id,
            created_at=block.created_at,
        )

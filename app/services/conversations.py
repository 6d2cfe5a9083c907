"""
Conversation Directory - One conversation row per unordered participant pair.

Maintains the per-conversation aggregates (last message preview, unread counters).
Counter changes are single UPDATE statements, never read-modify-write.
Methods here flush but never commit; the calling workflow owns the transaction.
"""

from uuid import UUID, uuid4

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from app.db.dialect import insert_ignoring_conflict
from app.db.models import Conversation, Message, utc_now
from app.exceptions import ForbiddenError, NotFoundError, ValidationError, WriteVerificationError
from app.models.api import MessageType
from app.models.domain import ConversationData, ConversationSummary, MessageData, canonical_pair
from app.observability.logging import get_logger

logger = get_logger(__name__)


def message_to_domain(message: Message) -> MessageData:
    """Convert ORM message to domain model."""
    return MessageData(
        message_id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        content=message.content,
        media_url=message.media_url,
        message_type=MessageType(message.message_type),
        is_read=message.is_read,
        read_at=message.read_at,
        is_deleted=message.is_deleted,
        deleted_at=message.deleted_at,
        is_intro_message=message.is_intro_message,
        credits_used=message.credits_used,
        created_at=message.created_at,
    )


class ConversationDirectory:
    """Owns the conversations table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_or_create(self, user_a: UUID, user_b: UUID) -> ConversationData:
        """
        Return the conversation for the pair, creating it if needed.

        Uses INSERT ... ON CONFLICT DO NOTHING followed by a fetch, so concurrent
        callers with the same pair always converge on a single row.
        """
        if user_a == user_b:
            raise ValidationError("a conversation needs two distinct participants")

        user_1_id, user_2_id = canonical_pair(user_a, user_b)
        now = utc_now()
        created = await insert_ignoring_conflict(
            self.session,
            Conversation,
            {
                "id": uuid4(),
                "user_1_id": user_1_id,
                "user_2_id": user_2_id,
                "unread_count_user_1": 0,
                "unread_count_user_2": 0,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=("user_1_id", "user_2_id"),
        )

        conversation = await self._find_pair(user_1_id, user_2_id)
        if conversation is None:
            raise WriteVerificationError(
                f"Conversation for {user_1_id}/{user_2_id} not found after insert"
            )

        if created:
            logger.info(
                "conversation_created",
                conversation_id=str(conversation.id),
                user_1_id=str(user_1_id),
                user_2_id=str(user_2_id),
            )

        return self._to_domain(conversation)

    async def find_pair(self, user_a: UUID, user_b: UUID) -> ConversationData | None:
        """Lookup without creating."""
        if user_a == user_b:
            return None
        conversation = await self._find_pair(*canonical_pair(user_a, user_b))
        return self._to_domain(conversation) if conversation else None

    async def get(self, conversation_id: UUID, requester_id: UUID) -> ConversationData:
        """
        Participant-checked lookup.

        Raises:
            NotFoundError: conversation doesn't exist
            ForbiddenError: requester is not a participant
        """
        conversation = await self._load(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)

        data = self._to_domain(conversation)
        if not data.has_participant(requester_id):
            raise ForbiddenError("not a participant of this conversation")
        return data

    async def record_inbound_message(
        self,
        conversation: ConversationData,
        sender_id: UUID,
        receiver_id: UUID,
        preview_text: str | None,
    ) -> ConversationData:
        """Set the last-message preview and bump the receiver-side unread counter."""
        if not (
            conversation.has_participant(sender_id)
            and conversation.other_participant(sender_id) == receiver_id
        ):
            raise ValidationError("sender and receiver must be the two participants")

        counter = self._unread_column(conversation, receiver_id)
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation.conversation_id)
            .values(
                {
                    Conversation.last_message: preview_text,
                    Conversation.last_message_at: utc_now(),
                    counter: counter + 1,
                }
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        return await self._reload(conversation.conversation_id)

    async def reset_unread(self, conversation: ConversationData, user_id: UUID) -> ConversationData:
        """Zero the unread counter on the user's side."""
        counter = self._unread_column(conversation, user_id)
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation.conversation_id)
            .values({counter: 0})
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        return await self._reload(conversation.conversation_id)

    async def decrement_unread(
        self, conversation: ConversationData, user_id: UUID
    ) -> ConversationData:
        """Decrement the user's unread counter by one; never below zero."""
        counter = self._unread_column(conversation, user_id)
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation.conversation_id, counter > 0)
            .values({counter: counter - 1})
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        return await self._reload(conversation.conversation_id)

    async def find_by_participant(self, user_id: UUID) -> list[ConversationData]:
        """All conversations of the user, most recently active first."""
        stmt = (
            select(Conversation)
            .where(or_(Conversation.user_1_id == user_id, Conversation.user_2_id == user_id))
            .order_by(
                Conversation.last_message_at.desc().nulls_last(),
                Conversation.created_at.desc(),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [self._to_domain(c) for c in result.scalars().all()]

    async def summaries_for(self, user_id: UUID) -> list[ConversationSummary]:
        """Inbox view: other participant, caller-side unread count and last visible message."""
        summaries: list[ConversationSummary] = []
        for conversation in await self.find_by_participant(user_id):
            last_stmt = (
                select(Message)
                .where(
                    Message.conversation_id == conversation.conversation_id,
                    Message.is_deleted.is_(False),
                )
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(1)
            )
            last_message = (await self.session.execute(last_stmt)).scalar_one_or_none()
            summaries.append(
                ConversationSummary(
                    conversation=conversation,
                    other_user_id=conversation.other_participant(user_id),
                    unread_count=conversation.unread_for(user_id),
                    last_message=message_to_domain(last_message) if last_message else None,
                )
            )
        return summaries

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _unread_column(
        self, conversation: ConversationData, user_id: UUID
    ) -> InstrumentedAttribute[int]:
        if user_id == conversation.user_1_id:
            return Conversation.unread_count_user_1
        if user_id == conversation.user_2_id:
            return Conversation.unread_count_user_2
        raise ForbiddenError("not a participant of this conversation")

    async def _find_pair(self, user_1_id: UUID, user_2_id: UUID) -> Conversation | None:
        stmt = (
            select(Conversation)
            .where(Conversation.user_1_id == user_1_id, Conversation.user_2_id == user_2_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _load(self, conversation_id: UUID) -> Conversation | None:
        stmt = (
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _reload(self, conversation_id: UUID) -> ConversationData:
        conversation = await self._load(conversation_id)
        if conversation is None:
            raise WriteVerificationError(f"Conversation {conversation_id} disappeared after update")
        return self._to_domain(conversation)

    def _to_domain(self, conversation: Conversation) -> ConversationData:
        """Convert ORM conversation to domain model."""
        return ConversationData(
            conversation_id=conversation.id,
            user_1_id=conversation.user_1_id,
            user_2_id=conversation.user_2_id,
            last_message=conversation.last_message,
            last_message_at=conversation.last_message_at,
            unread_count_user_1=conversation.unread_count_user_1,
            unread_count_user_2=conversation.unread_count_user_2,
            created_at=conversation.created_at,
        )

"""
Message Store - Message lifecycle: send, read state, soft delete.

Every write is gated by the block registry and routed through the conversation
directory, which owns the unread counters.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Message, User, utc_now
from app.exceptions import ChatCoreError, ForbiddenError, NotFoundError, ValidationError
from app.models.api import MessageType, NotificationType, RelatedKind, TransactionType
from app.models.domain import ConversationData, MessageData, NotificationEvent, Relation
from app.observability.logging import get_logger
from app.observability.metrics import metrics
from app.services.blocks import BlockRegistry
from app.services.conversations import ConversationDirectory, message_to_domain
from app.services.credit_settings import CreditSettingsProvider
from app.services.credits import CreditLedger
from app.services.notifications import NotificationSender, dispatch_notification

logger = get_logger(__name__)

PREVIEW_LENGTH = 200


def preview_for(content: str | None, message_type: MessageType) -> str:
    """Conversation preview text; media-only messages show their type label."""
    if content:
        return content[:PREVIEW_LENGTH]
    label = "attachment" if message_type == MessageType.TEXT else message_type.value
    return f"[{label}]"


class MessageStore:
    """Owns the messages table."""

    def __init__(
        self,
        session: AsyncSession,
        blocks: BlockRegistry,
        directory: ConversationDirectory,
        ledger: CreditLedger,
        credit_settings: CreditSettingsProvider,
        notifier: NotificationSender,
        intro_max_receivers: int = 10,
    ) -> None:
        self.session = session
        self.blocks = blocks
        self.directory = directory
        self.ledger = ledger
        self.credit_settings = credit_settings
        self.notifier = notifier
        self.intro_max_receivers = intro_max_receivers

    async def send(
        self,
        sender_id: UUID,
        receiver_id: UUID,
        content: str | None = None,
        media_url: str | None = None,
        conversation_id: UUID | None = None,
        message_type: MessageType = MessageType.TEXT,
    ) -> MessageData:
        """
        Send a message, creating the conversation on first contact.

        When a per-message cost is configured the sender is charged in the same
        transaction as the insert.

        Raises:
            ValidationError: no content and no media, or self-message
            NotFoundError: receiver or explicit conversation doesn't exist
            ForbiddenError: blocked, or sender isn't part of the explicit conversation
            InsufficientCreditsError: sender can't cover the message cost
        """
        if not content and not media_url:
            raise ValidationError("content or media_url is required")
        if sender_id == receiver_id:
            raise ValidationError("cannot send a message to yourself")

        await self._ensure_user_exists(receiver_id)
        await self.blocks.ensure_not_blocked(sender_id, receiver_id)
        cost = (await self.credit_settings.current()).chat_message

        try:
            conversation = await self._resolve_conversation(sender_id, receiver_id, conversation_id)

            message = Message(
                conversation_id=conversation.conversation_id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=(content or "") if media_url else content,
                media_url=media_url,
                message_type=message_type,
                credits_used=cost,
                created_at=utc_now(),
            )
            self.session.add(message)
            await self.session.flush()

            if cost > 0:
                await self.ledger.debit(
                    sender_id,
                    cost,
                    f"Message to {receiver_id}",
                    Relation(kind=RelatedKind.MESSAGE, related_id=str(message.id)),
                )

            preview = preview_for(content, message_type)
            await self.directory.record_inbound_message(
                conversation, sender_id, receiver_id, preview
            )
        except ChatCoreError:
            await self.session.rollback()
            raise
        await self.session.commit()

        metrics.record_message_sent(message_type.value)
        if cost > 0:
            metrics.record_transaction(TransactionType.USAGE.value, -cost)
        logger.info(
            "message_sent",
            message_id=message.id,
            conversation_id=str(conversation.conversation_id),
            sender_id=str(sender_id),
            receiver_id=str(receiver_id),
            message_type=message_type.value,
            credits_used=cost,
        )

        await dispatch_notification(
            self.notifier,
            NotificationEvent(
                event_type=NotificationType.NEW_MESSAGE,
                recipient_id=receiver_id,
                actor_id=sender_id,
                related_id=message.id,
                related_kind="message",
                preview=preview,
            ),
        )
        await dispatch_notification(
            self.notifier,
            NotificationEvent(
                event_type=NotificationType.CONTACT_UPDATE,
                recipient_id=receiver_id,
                actor_id=sender_id,
                related_id=conversation.conversation_id,
                related_kind="conversation",
            ),
        )
        return message_to_domain(message)

    async def send_intro(
        self, sender_id: UUID, receiver_ids: list[UUID], content: str
    ) -> list[MessageData]:
        """
        Send the same intro message to several users at once. Intros are free.

        All receivers are validated before anything is written.

        Raises:
            ValidationError: blank content, self in receivers, too few or too many receivers
            NotFoundError: a receiver doesn't exist
            ForbiddenError: a receiver is blocked in either direction
        """
        if not content or not content.strip():
            raise ValidationError("content is required")

        receivers = list(dict.fromkeys(receiver_ids))
        if not receivers:
            raise ValidationError("at least one receiver is required")
        if len(receivers) > self.intro_max_receivers:
            raise ValidationError(f"at most {self.intro_max_receivers} receivers per intro")
        if sender_id in receivers:
            raise ValidationError("cannot send an intro to yourself")

        for receiver_id in receivers:
            await self._ensure_user_exists(receiver_id)
            await self.blocks.ensure_not_blocked(sender_id, receiver_id)

        preview = preview_for(content, MessageType.INTRO)
        sent: list[Message] = []
        try:
            for receiver_id in receivers:
                conversation = await self.directory.get_or_create(sender_id, receiver_id)
                message = Message(
                    conversation_id=conversation.conversation_id,
                    sender_id=sender_id,
                    receiver_id=receiver_id,
                    content=content,
                    message_type=MessageType.INTRO,
                    is_intro_message=True,
                    credits_used=0,
                    created_at=utc_now(),
                )
                self.session.add(message)
                await self.session.flush()
                await self.directory.record_inbound_message(
                    conversation, sender_id, receiver_id, preview
                )
                sent.append(message)
        except ChatCoreError:
            await self.session.rollback()
            raise
        await self.session.commit()

        logger.info("intro_messages_sent", sender_id=str(sender_id), receivers=len(sent))
        for message in sent:
            metrics.record_message_sent(MessageType.INTRO.value)
            await dispatch_notification(
                self.notifier,
                NotificationEvent(
                    event_type=NotificationType.NEW_MESSAGE,
                    recipient_id=message.receiver_id,
                    actor_id=sender_id,
                    related_id=message.id,
                    related_kind="message",
                    preview=preview,
                ),
            )
        return [message_to_domain(m) for m in sent]

    async def list_for_conversation(
        self, conversation_id: UUID, requester_id: UUID
    ) -> list[MessageData]:
        """
        Visible messages of a conversation, oldest first.

        Reading marks every message addressed to the requester as read and
        zeroes the requester's unread counter.
        """
        conversation = await self.directory.get(conversation_id, requester_id)
        return await self._read_conversation(conversation, requester_id)

    async def list_between(self, user_id: UUID, other_user_id: UUID) -> list[MessageData]:
        """Listing addressed by the other participant instead of the conversation id."""
        if user_id == other_user_id:
            raise ValidationError("cannot list messages with yourself")
        await self._ensure_user_exists(other_user_id)
        conversation = await self.directory.get_or_create(user_id, other_user_id)
        return await self._read_conversation(conversation, user_id)

    async def mark_read(self, message_id: int, requester_id: UUID) -> MessageData:
        """
        Mark one message read. Idempotent: re-marking does not touch the counter.

        Raises:
            NotFoundError: message doesn't exist (or was deleted)
            ForbiddenError: requester isn't the receiver
        """
        message = await self._load_message(message_id)
        if message.receiver_id != requester_id:
            raise ForbiddenError("only the receiver can mark a message read")

        stmt = (
            update(Message)
            .where(Message.id == message_id, Message.is_read.is_(False))
            .values(is_read=True, read_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)

        if result.rowcount and message.conversation_id is not None:
            conversation = await self.directory.get(message.conversation_id, requester_id)
            await self.directory.decrement_unread(conversation, requester_id)
        await self.session.commit()

        if result.rowcount:
            logger.info("message_marked_read", message_id=message_id, user_id=str(requester_id))
        return message_to_domain(await self._load_message(message_id))

    async def soft_delete(self, message_id: int, requester_id: UUID) -> MessageData:
        """
        Flag a message deleted. The row stays; unread counters are not adjusted.

        Raises:
            NotFoundError: message doesn't exist
            ForbiddenError: requester is neither sender nor receiver
        """
        message = await self._load_message(message_id, include_deleted=True)
        if requester_id not in (message.sender_id, message.receiver_id):
            raise ForbiddenError("only the sender or receiver can delete a message")

        if not message.is_deleted:
            message.is_deleted = True
            message.deleted_at = utc_now()
            await self.session.flush()
            await self.session.commit()
            logger.info("message_deleted", message_id=message_id, user_id=str(requester_id))

        return message_to_domain(message)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _read_conversation(
        self, conversation: ConversationData, requester_id: UUID
    ) -> list[MessageData]:
        mark_stmt = (
            update(Message)
            .where(
                Message.conversation_id == conversation.conversation_id,
                Message.receiver_id == requester_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True, read_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        marked = await self.session.execute(mark_stmt)
        await self.directory.reset_unread(conversation, requester_id)
        await self.session.commit()

        if marked.rowcount:
            logger.info(
                "messages_marked_read",
                conversation_id=str(conversation.conversation_id),
                user_id=str(requester_id),
                count=marked.rowcount,
            )

        stmt = (
            select(Message)
            .where(
                Message.conversation_id == conversation.conversation_id,
                Message.is_deleted.is_(False),
            )
            .order_by(Message.created_at, Message.id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [message_to_domain(m) for m in result.scalars().all()]

    async def _resolve_conversation(
        self, sender_id: UUID, receiver_id: UUID, conversation_id: UUID | None
    ) -> ConversationData:
        if conversation_id is None:
            return await self.directory.get_or_create(sender_id, receiver_id)

        conversation = await self.directory.get(conversation_id, sender_id)
        if conversation.other_participant(sender_id) != receiver_id:
            raise ValidationError("receiver_id is not the other participant of this conversation")
        return conversation

    async def _ensure_user_exists(self, user_id: UUID) -> None:
        stmt = select(User.id).where(User.id == user_id)
        if (await self.session.execute(stmt)).scalar_one_or_none() is None:
            raise NotFoundError("User", user_id)

    async def _load_message(self, message_id: int, include_deleted: bool = False) -> Message:
        stmt = (
            select(Message)
            .where(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        message = (await self.session.execute(stmt)).scalar_one_or_none()
        if message is None or (message.is_deleted and not include_deleted):
            raise NotFoundError("Message", message_id)
        return message

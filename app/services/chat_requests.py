"""
Chat Request Workflow - First-contact handshake producing a conversation.

States: pending -> accepted | rejected | expired. Every non-pending state is
terminal; transitions are conditional UPDATEs on status = 'pending' so two
racing receivers cannot both win.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import ColumnElement, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import ChatRequest, Message, User, utc_now
from app.exceptions import (
    AlreadyProcessedError,
    ChatCoreError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.models.api import ChatRequestStatus, MessageType, NotificationType
from app.models.domain import AcceptedChatRequest, ChatRequestData, NotificationEvent
from app.observability.logging import get_logger
from app.observability.metrics import metrics
from app.services.blocks import BlockRegistry
from app.services.conversations import ConversationDirectory, message_to_domain
from app.services.messages import preview_for
from app.services.notifications import NotificationSender, dispatch_notification

logger = get_logger(__name__)


class ChatRequestWorkflow:
    """Owns the chat_requests table."""

    def __init__(
        self,
        session: AsyncSession,
        blocks: BlockRegistry,
        directory: ConversationDirectory,
        notifier: NotificationSender,
        ttl_days: int = 30,
        pending_limit: int = 50,
    ) -> None:
        self.session = session
        self.blocks = blocks
        self.directory = directory
        self.notifier = notifier
        self.ttl = timedelta(days=ttl_days)
        self.pending_limit = pending_limit

    async def create(
        self, sender_id: UUID, receiver_id: UUID, first_message: str
    ) -> ChatRequestData:
        """
        Open a chat request.

        Raises:
            ValidationError: self-request or blank first message
            NotFoundError: receiver doesn't exist
            ForbiddenError: blocked in either direction
            ConflictError: conversation exists, or a pending request is already open
        """
        if not first_message or not first_message.strip():
            raise ValidationError("first_message is required")
        if sender_id == receiver_id:
            raise ValidationError("cannot send a chat request to yourself")

        if (await self.session.get(User, receiver_id)) is None:
            raise NotFoundError("User", receiver_id)
        await self.blocks.ensure_not_blocked(sender_id, receiver_id)

        if await self.directory.find_pair(sender_id, receiver_id) is not None:
            raise ConflictError("conversation already exists, send a message directly")

        now = utc_now()
        try:
            # A lapsed request must not hold the pending slot for this pair
            await self._expire(
                now, ChatRequest.sender_id == sender_id, ChatRequest.receiver_id == receiver_id
            )

            if await self._find_pending(sender_id, receiver_id) is not None:
                raise ConflictError("a pending chat request already exists")

            request = ChatRequest(
                sender_id=sender_id,
                receiver_id=receiver_id,
                first_message=first_message,
                status=ChatRequestStatus.PENDING,
                expires_at=now + self.ttl,
                created_at=now,
            )
            self.session.add(request)
            await self.session.flush()
        except IntegrityError as e:
            # Lost the race against a concurrent create for the same pair
            await self.session.rollback()
            logger.warning(
                "chat_request_create_conflict",
                sender_id=str(sender_id),
                receiver_id=str(receiver_id),
                error=str(e),
            )
            raise ConflictError("a pending chat request already exists") from e
        except ChatCoreError:
            await self.session.rollback()
            raise
        await self.session.commit()

        metrics.record_chat_request("created")
        logger.info(
            "chat_request_created",
            request_id=str(request.id),
            sender_id=str(sender_id),
            receiver_id=str(receiver_id),
        )
        await dispatch_notification(
            self.notifier,
            NotificationEvent(
                event_type=NotificationType.CHAT_REQUEST,
                recipient_id=receiver_id,
                actor_id=sender_id,
                related_id=request.id,
                related_kind="chat_request",
                preview=preview_for(first_message, MessageType.TEXT),
            ),
        )
        return self._to_domain(request)

    async def accept(self, request_id: UUID, acting_user_id: UUID) -> AcceptedChatRequest:
        """
        Accept a pending request: the conversation is resolved (or created) and the
        first message is materialized as its first message from the requester.

        Raises:
            NotFoundError: request doesn't exist
            ForbiddenError: actor isn't the receiver, or the pair is blocked
            AlreadyProcessedError: request is no longer pending
        """
        request = await self._load_actionable(request_id, acting_user_id)

        try:
            await self.blocks.ensure_not_blocked(request.sender_id, request.receiver_id)
            await self._transition(request, ChatRequestStatus.ACCEPTED)

            conversation = await self.directory.get_or_create(
                request.sender_id, request.receiver_id
            )
            message = Message(
                conversation_id=conversation.conversation_id,
                sender_id=request.sender_id,
                receiver_id=request.receiver_id,
                content=request.first_message,
                message_type=MessageType.TEXT,
                credits_used=0,
                created_at=utc_now(),
            )
            self.session.add(message)
            await self.session.flush()

            conversation = await self.directory.record_inbound_message(
                conversation,
                request.sender_id,
                request.receiver_id,
                preview_for(request.first_message, MessageType.TEXT),
            )
            request = await self._reload(request_id)
        except ChatCoreError:
            await self.session.rollback()
            raise
        await self.session.commit()

        metrics.record_chat_request("accepted")
        logger.info(
            "chat_request_accepted",
            request_id=str(request_id),
            conversation_id=str(conversation.conversation_id),
            message_id=message.id,
        )

        await dispatch_notification(
            self.notifier,
            NotificationEvent(
                event_type=NotificationType.CHAT_REQUEST_ACCEPTED,
                recipient_id=request.sender_id,
                actor_id=request.receiver_id,
                related_id=request.id,
                related_kind="chat_request",
            ),
        )
        for recipient_id, actor_id in (
            (request.sender_id, request.receiver_id),
            (request.receiver_id, request.sender_id),
        ):
            await dispatch_notification(
                self.notifier,
                NotificationEvent(
                    event_type=NotificationType.CONTACT_UPDATE,
                    recipient_id=recipient_id,
                    actor_id=actor_id,
                    related_id=conversation.conversation_id,
                    related_kind="conversation",
                ),
            )

        return AcceptedChatRequest(
            request=self._to_domain(request),
            conversation=conversation,
            first_message=message_to_domain(message),
        )

    async def reject(self, request_id: UUID, acting_user_id: UUID) -> ChatRequestData:
        """
        Reject a pending request.

        Raises:
            NotFoundError: request doesn't exist
            ForbiddenError: actor isn't the receiver
            AlreadyProcessedError: request is no longer pending
        """
        request = await self._load_actionable(request_id, acting_user_id)

        try:
            await self._transition(request, ChatRequestStatus.REJECTED)
            request = await self._reload(request_id)
        except ChatCoreError:
            await self.session.rollback()
            raise
        await self.session.commit()

        metrics.record_chat_request("rejected")
        logger.info("chat_request_rejected", request_id=str(request_id))
        await dispatch_notification(
            self.notifier,
            NotificationEvent(
                event_type=NotificationType.CHAT_REQUEST_REJECTED,
                recipient_id=request.sender_id,
                actor_id=request.receiver_id,
                related_id=request.id,
                related_kind="chat_request",
            ),
        )
        return self._to_domain(request)

    async def list_pending_for(self, receiver_id: UUID) -> list[ChatRequestData]:
        """Pending, unexpired requests addressed to the user, newest first."""
        now = utc_now()
        stmt = (
            select(ChatRequest)
            .where(
                ChatRequest.receiver_id == receiver_id,
                ChatRequest.status == ChatRequestStatus.PENDING,
                or_(ChatRequest.expires_at.is_(None), ChatRequest.expires_at > now),
            )
            .order_by(ChatRequest.created_at.desc())
            .limit(self.pending_limit)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [self._to_domain(r) for r in result.scalars().all()]

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """Move every lapsed pending request to expired. Returns how many moved."""
        count = await self._expire(now or utc_now())
        await self.session.commit()

        metrics.record_expired(count)
        if count:
            logger.info("chat_requests_expired", count=count)
        return count

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _expire(self, now: datetime, *criteria: ColumnElement[bool]) -> int:
        stmt = (
            update(ChatRequest)
            .where(
                ChatRequest.status == ChatRequestStatus.PENDING,
                ChatRequest.expires_at.is_not(None),
                ChatRequest.expires_at <= now,
                *criteria,
            )
            .values(status=ChatRequestStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def _transition(self, request: ChatRequest, status: ChatRequestStatus) -> None:
        """Move out of pending exactly once."""
        stmt = (
            update(ChatRequest)
            .where(ChatRequest.id == request.id, ChatRequest.status == ChatRequestStatus.PENDING)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            current = await self._reload(request.id)
            raise AlreadyProcessedError(request.id, ChatRequestStatus(current.status).value)

    async def _load_actionable(self, request_id: UUID, acting_user_id: UUID) -> ChatRequest:
        request = await self._load(request_id)
        if request is None:
            raise NotFoundError("Chat request", request_id)
        if request.receiver_id != acting_user_id:
            raise ForbiddenError("only the receiver can act on this chat request")
        if request.status != ChatRequestStatus.PENDING:
            raise AlreadyProcessedError(request.id, ChatRequestStatus(request.status).value)
        return request

    async def _find_pending(self, sender_id: UUID, receiver_id: UUID) -> ChatRequest | None:
        stmt = select(ChatRequest).where(
            ChatRequest.sender_id == sender_id,
            ChatRequest.receiver_id == receiver_id,
            ChatRequest.status == ChatRequestStatus.PENDING,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _load(self, request_id: UUID) -> ChatRequest | None:
        stmt = (
            select(ChatRequest)
            .where(ChatRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _reload(self, request_id: UUID) -> ChatRequest:
        request = await self._load(request_id)
        if request is None:
            raise NotFoundError("Chat request", request_id)
        return request

    def _to_domain(self, request: ChatRequest) -> ChatRequestData:
        """Convert ORM chat request to domain model."""
        return ChatRequestData(
            request_id=request.id,
            sender_id=request.sender_id,
            receiver_id=request.receiver_id,
            first_message=request.first_message,
            status=ChatRequestStatus(request.status),
            expires_at=request.expires_at,
            created_at=request.created_at,
        )

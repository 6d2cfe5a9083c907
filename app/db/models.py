"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.models.api import (
    ChatRequestStatus,
    MessageType,
    RelatedKind,
    Role,
    SubscriptionPlan,
    TransactionType,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _str_enum(enum_cls: type, name: str, length: int = 20) -> SQLEnum:
    """Store enums as their string values in a VARCHAR column."""
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=length,
        values_callable=lambda x: [e.value for e in x],
    )


# Message ids double as the in-conversation tie-break sequence
_MessageId = BigInteger().with_variant(Integer, "sqlite")


class User(Base):
    """
    ORM model for users table.

    Only the columns the conversation and credit core reads or writes.
    `credits` is the materialized balance of credit_transactions.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(_str_enum(Role, "user_role"), nullable=False, default=Role.REGULAR)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Balance
    credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_credits_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_credit_spent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Subscription
    subscription_plan: Mapped[SubscriptionPlan] = mapped_column(
        _str_enum(SubscriptionPlan, "subscription_plan"),
        nullable=False,
        default=SubscriptionPlan.FREE,
    )
    subscription_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Derived membership flag, owned by VipEligibilityEngine
    vip_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    vip_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
        CheckConstraint("total_credits_spent >= 0", name="ck_users_total_spent_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, credits={self.credits}, plan={self.subscription_plan})>"


class Conversation(Base):
    """
    ORM model for conversations table.

    One row per unordered participant pair; user_1_id is always the lower id.
    """

    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_1_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_2_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    unread_count_user_1: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unread_count_user_2: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_1_id", "user_2_id", name="uq_conversations_pair"),
        CheckConstraint("user_1_id < user_2_id", name="ck_conversations_canonical_order"),
        CheckConstraint("unread_count_user_1 >= 0", name="ck_conversations_unread_1_non_negative"),
        CheckConstraint("unread_count_user_2 >= 0", name="ck_conversations_unread_2_non_negative"),
        Index("idx_conversations_user_2", "user_2_id"),
        Index("idx_conversations_last_message_at", "last_message_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, user_1_id={self.user_1_id}, "
            f"user_2_id={self.user_2_id})>"
        )


class Message(Base):
    """
    ORM model for messages table.

    Rows are never physically removed by normal flow; deletion is a flag.
    """

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(_MessageId, primary_key=True, autoincrement=True)

    # Nullable only for rows written before conversations existed
    conversation_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=True
    )
    sender_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    media_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    message_type: Mapped[MessageType] = mapped_column(
        _str_enum(MessageType, "message_type"), nullable=False, default=MessageType.TEXT
    )

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_intro_message: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("sender_id <> receiver_id", name="ck_messages_distinct_participants"),
        CheckConstraint("credits_used >= 0", name="ck_messages_credits_used_non_negative"),
        Index("idx_messages_conversation_created", "conversation_id", "created_at"),
        Index("idx_messages_sender_receiver", "sender_id", "receiver_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id}, conversation_id={self.conversation_id}, "
            f"sender_id={self.sender_id}, type={self.message_type})>"
        )


class ChatRequest(Base):
    """
    ORM model for chat_requests table.

    Status moves out of pending exactly once.
    """

    __tablename__ = "chat_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    sender_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    first_message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ChatRequestStatus] = mapped_column(
        _str_enum(ChatRequestStatus, "chat_request_status"),
        nullable=False,
        default=ChatRequestStatus.PENDING,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("sender_id <> receiver_id", name="ck_chat_requests_distinct_participants"),
        Index("idx_chat_requests_receiver_status", "receiver_id", "status"),
        Index("idx_chat_requests_sender_status", "sender_id", "status"),
        Index("idx_chat_requests_status_expires", "status", "expires_at"),
        Index(
            "uq_chat_requests_pending_pair",
            "sender_id",
            "receiver_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ChatRequest(id={self.id}, sender_id={self.sender_id}, "
            f"receiver_id={self.receiver_id}, status={self.status})>"
        )


class Block(Base):
    """
    ORM model for blocks table.

    Rows are directional; gating treats them as symmetric.
    """

    __tablename__ = "blocks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    blocker_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    blocked_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("blocker_id", "blocked_id", name="uq_blocks_pair"),
        CheckConstraint("blocker_id <> blocked_id", name="ck_blocks_not_self"),
        Index("idx_blocks_blocked", "blocked_id"),
    )

    def __repr__(self) -> str:
        return f"<Block(blocker_id={self.blocker_id}, blocked_id={self.blocked_id})>"


class CreditTransaction(Base):
    """
    ORM model for credit_transactions table.

    Append-only ledger. Sum of amounts per user equals users.credits.
    """

    __tablename__ = "credit_transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    transaction_type: Mapped[TransactionType] = mapped_column(
        _str_enum(TransactionType, "transaction_type"), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Balance snapshot (denormalized for auditing)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    related_kind: Mapped[RelatedKind | None] = mapped_column(
        _str_enum(RelatedKind, "related_kind"), nullable=True
    )
    related_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_credit_transactions_amount_non_zero"),
        CheckConstraint("balance_after >= 0", name="ck_credit_transactions_balance_non_negative"),
        CheckConstraint(
            "(transaction_type = 'usage' AND amount < 0) OR (transaction_type <> 'usage' AND amount > 0)",
            name="ck_credit_transactions_sign_matches_type",
        ),
        Index("idx_credit_transactions_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(id={self.id}, user_id={self.user_id}, "
            f"type={self.transaction_type}, amount={self.amount})>"
        )


class SystemSetting(Base):
    """
    ORM model for system_settings table.

    CRM-managed overrides keyed by name.
    """

    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return f"<SystemSetting(key={self.key})>"

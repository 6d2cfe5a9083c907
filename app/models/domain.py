"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any
from uuid import UUID

from app.models.api import (
    Capability,
    ChatRequestStatus,
    MessageType,
    NotificationType,
    RelatedKind,
    Role,
    SubscriptionPlan,
    TransactionType,
)

# ============================================================================
# Auth
# ============================================================================

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.REGULAR: frozenset({Capability.MESSAGING}),
    Role.TALENT: frozenset({Capability.MESSAGING}),
    Role.STREAMER: frozenset({Capability.MESSAGING}),
    Role.ADMIN: frozenset(Capability),
}


def role_has_capability(role: Role, capability: Capability) -> bool:
    """Single source of truth for role checks."""
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as vouched for by the auth token."""

    user_id: UUID
    role: Role = Role.REGULAR

    def can(self, capability: Capability) -> bool:
        return role_has_capability(self.role, capability)


# ============================================================================
# Conversations & Messages
# ============================================================================


def canonical_pair(user_a: UUID, user_b: UUID) -> tuple[UUID, UUID]:
    """Order two participant ids so an unordered pair maps to one storage key."""
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


@dataclass(frozen=True)
class ConversationData:
    """Immutable conversation snapshot."""

    conversation_id: UUID
    user_1_id: UUID
    user_2_id: UUID
    last_message: str | None
    last_message_at: datetime | None
    unread_count_user_1: int
    unread_count_user_2: int
    created_at: datetime

    def __post_init__(self) -> None:
        if not self.user_1_id < self.user_2_id:
            raise ValueError("Conversation participants must be stored in canonical order")

    def has_participant(self, user_id: UUID) -> bool:
        return user_id in (self.user_1_id, self.user_2_id)

    def other_participant(self, user_id: UUID) -> UUID:
        if user_id == self.user_1_id:
            return self.user_2_id
        if user_id == self.user_2_id:
            return self.user_1_id
        raise ValueError(f"{user_id} is not a participant of {self.conversation_id}")

    def unread_for(self, user_id: UUID) -> int:
        if user_id == self.user_1_id:
            return self.unread_count_user_1
        if user_id == self.user_2_id:
            return self.unread_count_user_2
        raise ValueError(f"{user_id} is not a participant of {self.conversation_id}")


@dataclass(frozen=True)
class MessageData:
    """Immutable message snapshot."""

    message_id: int
    conversation_id: UUID | None
    sender_id: UUID
    receiver_id: UUID
    content: str | None
    media_url: str | None
    message_type: MessageType
    is_read: bool
    read_at: datetime | None
    is_deleted: bool
    deleted_at: datetime | None
    is_intro_message: bool
    credits_used: int
    created_at: datetime


@dataclass(frozen=True)
class ConversationSummary:
    """A conversation as seen from one participant's inbox."""

    conversation: ConversationData
    other_user_id: UUID
    unread_count: int
    last_message: MessageData | None


# ============================================================================
# Chat Requests & Blocks
# ============================================================================


@dataclass(frozen=True)
class ChatRequestData:
    """Immutable chat request snapshot."""

    request_id: UUID
    sender_id: UUID
    receiver_id: UUID
    first_message: str
    status: ChatRequestStatus
    expires_at: datetime | None
    created_at: datetime

    @property
    def is_pending(self) -> bool:
        return self.status == ChatRequestStatus.PENDING


@dataclass(frozen=True)
class AcceptedChatRequest:
    """Outcome of accepting a chat request."""

    request: ChatRequestData
    conversation: ConversationData
    first_message: MessageData


@dataclass(frozen=True)
class BlockData:
    """Directional block row."""

    block_id: UUID
    blocker_id: UUID
    blocked_id: UUID
    created_at: datetime


# ============================================================================
# Credits & VIP
# ============================================================================


@dataclass(frozen=True)
class Relation:
    """What a ledger entry refers to."""

    kind: RelatedKind
    related_id: str | None = None


@dataclass(frozen=True)
class CreditTransactionData:
    """Immutable ledger entry."""

    transaction_id: UUID
    user_id: UUID
    transaction_type: TransactionType
    amount: int
    balance_after: int
    description: str | None
    relation: Relation | None
    created_at: datetime


@dataclass(frozen=True)
class TransactionPage:
    """One page of a user's ledger, newest first."""

    items: list[CreditTransactionData]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True)
class SpendResult:
    """Outcome of a successful spend."""

    transaction: CreditTransactionData
    balance_after: int
    vip_active: bool


@dataclass(frozen=True)
class BalanceData:
    """Materialized balance and subscription state."""

    user_id: UUID
    credits: int
    subscription_plan: SubscriptionPlan
    subscription_expires_at: datetime | None
    total_credits_spent: int


@dataclass(frozen=True)
class SubscriptionChange:
    """Outcome of subscribing to (or cancelling) a plan."""

    user_id: UUID
    plan: SubscriptionPlan
    credits_added: int
    balance_after: int
    expires_at: datetime | None
    vip_active: bool


@dataclass(frozen=True)
class WindowSpend:
    """Usage spend inside the trailing VIP window."""

    total: int
    oldest_transaction_at: datetime | None

    def __post_init__(self) -> None:
        if self.total < 0:
            raise ValueError(f"Window spend cannot be negative: {self.total}")


@dataclass(frozen=True)
class VipStatus:
    """Result of a VIP recalculation."""

    user_id: UUID
    vip_active: bool
    vip_expires_at: datetime | None


@dataclass(frozen=True)
class VipProgress:
    """Read-only VIP progress view."""

    premium_active: bool
    vip_active: bool
    vip_expires_at: datetime | None
    credits_spent_in_window: int
    credits_required: int
    remaining_to_vip: int
    deadline_date: str
    total_credits_spent: int


@dataclass(frozen=True)
class CreditSettings:
    """Typed view of the credit tunables."""

    chat_message: int = 0
    voice_call_per_minute: int = 0
    video_call_per_minute: int = 0
    photo_view_credits: int = 15
    video_view_credits: int = 15
    voice_message_credits: int = 10
    vip_credits_required: int = 160

    def __post_init__(self) -> None:
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"{f.name} cannot be negative")

    def merged(self, overrides: Mapping[str, Any] | None) -> "CreditSettings":
        """
        Apply stored overrides on top of these values.

        Unknown keys are ignored; non-integer or negative values keep the current value.
        """
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        changes: dict[str, int] = {}
        for key, value in overrides.items():
            if key not in known:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                continue
            changes[key] = value
        return replace(self, **changes)

    def as_overrides(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# ============================================================================
# Notifications
# ============================================================================


@dataclass(frozen=True)
class NotificationEvent:
    """Typed event handed to the notification collaborator."""

    event_type: NotificationType
    recipient_id: UUID
    actor_id: UUID | None
    related_id: UUID | int | None = None
    related_kind: str | None = None
    preview: str | None = None

    def to_payload(self) -> dict[str, str | None]:
        """Wire form for webhook delivery."""
        return {
            "event_type": self.event_type.value,
            "recipient_id": str(self.recipient_id),
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "related_id": str(self.related_id) if self.related_id is not None else None,
            "related_kind": self.related_kind,
            "preview": self.preview,
        }

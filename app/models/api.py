"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class Role(str, Enum):
    """Closed set of account roles carried in the auth token."""

    REGULAR = "regular"
    TALENT = "talent"
    STREAMER = "streamer"
    ADMIN = "admin"


class Capability(str, Enum):
    """Actions gated by role."""

    MESSAGING = "messaging"
    MANAGE_CREDITS = "manage_credits"
    MANAGE_SETTINGS = "manage_settings"
    RUN_MAINTENANCE = "run_maintenance"


class MessageType(str, Enum):
    """Message type enumeration."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    VOICE = "voice"
    EMAIL = "email"
    INTRO = "intro"
    GIFT = "gift"


class ChatRequestStatus(str, Enum):
    """Chat request lifecycle. Anything but PENDING is terminal."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class TransactionType(str, Enum):
    """Credit transaction type enumeration."""

    PURCHASE = "purchase"
    SUBSCRIPTION = "subscription"
    USAGE = "usage"
    REFUND = "refund"
    REFILL = "refill"


class RelatedKind(str, Enum):
    """What a credit transaction was spent on or granted for."""

    MESSAGE = "message"
    CALL = "call"
    GIFT = "gift"
    SUBSCRIPTION = "subscription"
    OTHER = "other"


class SubscriptionPlan(str, Enum):
    """Subscription plans, lowest first."""

    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    VIP = "vip"

    @property
    def rank(self) -> int:
        return list(SubscriptionPlan).index(self)

    @property
    def is_premium_or_above(self) -> bool:
        return self.rank >= SubscriptionPlan.PREMIUM.rank


class NotificationType(str, Enum):
    """Events handed to the notification collaborator."""

    NEW_MESSAGE = "new_message"
    CHAT_REQUEST = "chat_request"
    CHAT_REQUEST_ACCEPTED = "chat_request_accepted"
    CHAT_REQUEST_REJECTED = "chat_request_rejected"
    GIFT_RECEIVED = "gift_received"
    CONTACT_UPDATE = "contact_update"


# ============================================================================
# Chat Request Models
# ============================================================================


class CreateChatRequestRequest(BaseModel):
    """POST /v1/chat-requests request body."""

    receiver_id: UUID
    first_message: str = Field(..., min_length=1, max_length=5000)

    @field_validator("first_message")
    @classmethod
    def validate_first_message(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("first_message cannot be blank")
        return v


class ChatRequestResponse(BaseModel):
    """Chat request as returned to clients."""

    id: UUID
    sender_id: UUID
    receiver_id: UUID
    first_message: str
    status: ChatRequestStatus
    expires_at: datetime | None
    created_at: datetime


class ChatRequestAcceptedResponse(BaseModel):
    """PUT /v1/chat-requests/{id}/accept response."""

    request_id: UUID
    conversation_id: UUID
    message_id: int


# ============================================================================
# Message Models
# ============================================================================


class SendMessageRequest(BaseModel):
    """POST /v1/messages request body."""

    receiver_id: UUID
    content: str | None = Field(None, max_length=10000)
    media_url: str | None = Field(None, max_length=500)
    message_type: MessageType = MessageType.TEXT
    conversation_id: UUID | None = None

    @field_validator("message_type", mode="before")
    @classmethod
    def normalize_legacy_type(cls, v: object) -> object:
        """Older clients send 'chat' for plain text messages."""
        if v == "chat":
            return MessageType.TEXT.value
        return v

    @model_validator(mode="after")
    def require_content_or_media(self) -> "SendMessageRequest":
        if not self.content and not self.media_url:
            raise ValueError("content or media_url is required")
        return self


class SendIntroRequest(BaseModel):
    """POST /v1/messages/intro request body."""

    receiver_ids: list[UUID] = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=5000)


class MessageResponse(BaseModel):
    """Message as returned to clients."""

    id: int
    conversation_id: UUID | None
    sender_id: UUID
    receiver_id: UUID
    content: str | None
    media_url: str | None
    message_type: MessageType
    is_read: bool
    read_at: datetime | None
    is_intro_message: bool
    credits_used: int
    created_at: datetime


class ConversationSummaryResponse(BaseModel):
    """One entry of GET /v1/conversations."""

    conversation_id: UUID
    other_user_id: UUID
    unread_count: int
    last_message: MessageResponse | None
    last_message_at: datetime | None
    created_at: datetime


class StatusMessageResponse(BaseModel):
    """Plain acknowledgement."""

    message: str


# ============================================================================
# Block Models
# ============================================================================


class BlockUserRequest(BaseModel):
    """POST /v1/blocks request body."""

    user_id: UUID


class BlockResponse(BaseModel):
    """Block row as returned to clients."""

    id: UUID
    blocker_id: UUID
    blocked_id: UUID
    created_at: datetime


# ============================================================================
# Credit Models
# ============================================================================


class BalanceResponse(BaseModel):
    """GET /v1/credits/balance response."""

    credits: int
    subscription_plan: SubscriptionPlan
    subscription_expires_at: datetime | None
    total_credits_spent: int


class TransactionItem(BaseModel):
    """Single ledger row."""

    id: UUID
    transaction_type: TransactionType
    amount: int
    balance_after: int
    description: str | None
    related_kind: RelatedKind | None
    related_id: str | None
    created_at: datetime


class TransactionListResponse(BaseModel):
    """GET /v1/credits/transactions response."""

    transactions: list[TransactionItem]
    page: int
    limit: int
    total: int
    pages: int


class SpendCreditsRequest(BaseModel):
    """POST /v1/credits/spend request body."""

    amount: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=255)
    related_kind: RelatedKind | None = None
    related_id: str | None = Field(None, max_length=64)

    @model_validator(mode="after")
    def relation_is_complete(self) -> "SpendCreditsRequest":
        if self.related_id is not None and self.related_kind is None:
            raise ValueError("related_kind is required when related_id is set")
        return self


class SpendCreditsResponse(BaseModel):
    """POST /v1/credits/spend response."""

    transaction_id: UUID
    amount: int
    balance_after: int
    vip_active: bool


class SubscribeRequest(BaseModel):
    """POST /v1/credits/subscribe request body."""

    plan: SubscriptionPlan


class SubscribeResponse(BaseModel):
    """POST /v1/credits/subscribe response."""

    subscription_plan: SubscriptionPlan
    credits_added: int
    total_credits: int


class GrantCreditsRequest(BaseModel):
    """POST /v1/admin/credits/grant request body."""

    user_id: UUID
    amount: int = Field(..., gt=0)
    transaction_type: TransactionType = TransactionType.PURCHASE
    description: str = Field(..., min_length=1, max_length=255)

    @field_validator("transaction_type")
    @classmethod
    def not_usage(cls, v: TransactionType) -> TransactionType:
        if v == TransactionType.USAGE:
            raise ValueError("usage transactions are created by spending, not granting")
        return v


# ============================================================================
# VIP Models
# ============================================================================


class VipProgressResponse(BaseModel):
    """GET /v1/vip/progress response."""

    premium_active: bool
    vip_active: bool
    vip_expires_at: datetime | None
    credits_spent_last_30_days: int
    credits_required: int
    remaining_to_vip: int
    deadline_date: str
    total_credits_spent: int


# ============================================================================
# Admin Models
# ============================================================================


class CreditSettingsModel(BaseModel):
    """Credit tunables exposed to the CRM."""

    chat_message: int = Field(..., ge=0)
    voice_call_per_minute: int = Field(..., ge=0)
    video_call_per_minute: int = Field(..., ge=0)
    photo_view_credits: int = Field(..., ge=0)
    video_view_credits: int = Field(..., ge=0)
    voice_message_credits: int = Field(..., ge=0)
    vip_credits_required: int = Field(..., ge=0)


class CreditSettingsUpdate(BaseModel):
    """PUT /v1/admin/settings/credits request body - only provided fields change."""

    chat_message: int | None = Field(None, ge=0)
    voice_call_per_minute: int | None = Field(None, ge=0)
    video_call_per_minute: int | None = Field(None, ge=0)
    photo_view_credits: int | None = Field(None, ge=0)
    video_view_credits: int | None = Field(None, ge=0)
    voice_message_credits: int | None = Field(None, ge=0)
    vip_credits_required: int | None = Field(None, ge=0)


class SweepResponse(BaseModel):
    """POST /v1/admin/chat-requests/sweep response."""

    expired: int

"""Initial conversation and credit schema.

Revision ID: 2026_03_02_0001
Revises:
Create Date: 2026-03-02

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_03_02_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def _user_fk(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name, sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=nullable
    )


def upgrade() -> None:
    """Create users, conversations, messages, chat_requests, blocks, ledger and settings."""

    # ========================================================================
    # users (only the columns this service owns or reads)
    # ========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="regular"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("credits", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_credits_spent", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("last_credit_spent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_plan", sa.String(20), nullable=False, server_default="free"),
        sa.Column("subscription_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("vip_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("vip_expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
        sa.CheckConstraint("total_credits_spent >= 0", name="ck_users_total_spent_non_negative"),
    )

    # ========================================================================
    # conversations - one row per unordered pair, lower id first
    # ========================================================================
    op.create_table(
        "conversations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk("user_1_id"),
        _user_fk("user_2_id"),
        sa.Column("last_message", sa.Text(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unread_count_user_1", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unread_count_user_2", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_1_id", "user_2_id", name="uq_conversations_pair"),
        sa.CheckConstraint("user_1_id < user_2_id", name="ck_conversations_canonical_order"),
        sa.CheckConstraint("unread_count_user_1 >= 0", name="ck_conversations_unread_1_non_negative"),
        sa.CheckConstraint("unread_count_user_2 >= 0", name="ck_conversations_unread_2_non_negative"),
    )
    op.create_index("idx_conversations_user_2", "conversations", ["user_2_id"])
    op.create_index("idx_conversations_last_message_at", "conversations", ["last_message_at"])

    # ========================================================================
    # messages
    # ========================================================================
    op.create_table(
        "messages",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column(
            "conversation_id",
            sa.Uuid(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        _user_fk("sender_id"),
        _user_fk("receiver_id"),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("media_url", sa.String(500), nullable=True),
        sa.Column("message_type", sa.String(20), nullable=False, server_default="text"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_intro_message", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("sender_id <> receiver_id", name="ck_messages_distinct_participants"),
        sa.CheckConstraint("credits_used >= 0", name="ck_messages_credits_used_non_negative"),
    )
    op.create_index(
        "idx_messages_conversation_created", "messages", ["conversation_id", "created_at"]
    )
    op.create_index("idx_messages_sender_receiver", "messages", ["sender_id", "receiver_id"])

    # ========================================================================
    # chat_requests - at most one pending request per ordered pair
    # ========================================================================
    op.create_table(
        "chat_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk("sender_id"),
        _user_fk("receiver_id"),
        sa.Column("first_message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "sender_id <> receiver_id", name="ck_chat_requests_distinct_participants"
        ),
    )
    op.create_index(
        "idx_chat_requests_receiver_status", "chat_requests", ["receiver_id", "status"]
    )
    op.create_index("idx_chat_requests_sender_status", "chat_requests", ["sender_id", "status"])
    op.create_index("idx_chat_requests_status_expires", "chat_requests", ["status", "expires_at"])
    op.create_index(
        "uq_chat_requests_pending_pair",
        "chat_requests",
        ["sender_id", "receiver_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    # ========================================================================
    # blocks
    # ========================================================================
    op.create_table(
        "blocks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk("blocker_id"),
        _user_fk("blocked_id"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("blocker_id", "blocked_id", name="uq_blocks_pair"),
        sa.CheckConstraint("blocker_id <> blocked_id", name="ck_blocks_not_self"),
    )
    op.create_index("idx_blocks_blocked", "blocks", ["blocked_id"])

    # ========================================================================
    # credit_transactions - append-only ledger
    # ========================================================================
    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk("user_id"),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("related_kind", sa.String(20), nullable=True),
        sa.Column("related_id", sa.String(64), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("amount <> 0", name="ck_credit_transactions_amount_non_zero"),
        sa.CheckConstraint(
            "balance_after >= 0", name="ck_credit_transactions_balance_non_negative"
        ),
        sa.CheckConstraint(
            "(transaction_type = 'usage' AND amount < 0) "
            "OR (transaction_type <> 'usage' AND amount > 0)",
            name="ck_credit_transactions_sign_matches_type",
        ),
    )
    op.create_index(
        "idx_credit_transactions_user_created", "credit_transactions", ["user_id", "created_at"]
    )

    # ========================================================================
    # system_settings - CRM-managed overrides
    # ========================================================================
    op.create_table(
        "system_settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.JSON().with_variant(JSONB(), "postgresql"), nullable=False),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )


def downgrade() -> None:
    """Drop everything created above."""
    op.drop_table("system_settings")
    op.drop_index("idx_credit_transactions_user_created", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_index("idx_blocks_blocked", table_name="blocks")
    op.drop_table("blocks")
    op.drop_index("uq_chat_requests_pending_pair", table_name="chat_requests")
    op.drop_index("idx_chat_requests_status_expires", table_name="chat_requests")
    op.drop_index("idx_chat_requests_sender_status", table_name="chat_requests")
    op.drop_index("idx_chat_requests_receiver_status", table_name="chat_requests")
    op.drop_table("chat_requests")
    op.drop_index("idx_messages_sender_receiver", table_name="messages")
    op.drop_index("idx_messages_conversation_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("idx_conversations_last_message_at", table_name="conversations")
    op.drop_index("idx_conversations_user_2", table_name="conversations")
    op.drop_table("conversations")
    op.drop_table("users")

"""
Tests for MessageStore.

Send, read state, soft delete, intros and paid messages against a real database.
"""

import asyncio
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import Conversation, CreditTransaction, Message
from app.exceptions import (
    ForbiddenError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from app.models.api import MessageType, RelatedKind, SubscriptionPlan, TransactionType
from app.models.domain import CreditSettings, MessageData
from app.services.blocks import BlockRegistry
from app.services.conversations import ConversationDirectory
from app.services.credit_settings import StaticCreditSettingsProvider
from app.services.credits import CreditLedger
from app.services.messages import MessageStore, preview_for
from app.services.vip import VipEligibilityEngine
from conftest import FailingNotifier, RecordingNotifier, UserFactory, load_user


class TestPreview:
    def test_text_is_truncated(self) -> None:
        assert preview_for("x" * 500, MessageType.TEXT) == "x" * 200

    def test_media_only_uses_type_label(self) -> None:
        assert preview_for(None, MessageType.IMAGE) == "[image]"
        assert preview_for("", MessageType.VOICE) == "[voice]"

    def test_media_only_text_type_is_attachment(self) -> None:
        assert preview_for(None, MessageType.TEXT) == "[attachment]"


class TestSend:
    """Tests for sending messages."""

    async def test_first_message_creates_conversation(
        self,
        message_store: MessageStore,
        directory: ConversationDirectory,
        alice: UUID,
        bob: UUID,
    ) -> None:
        message = await message_store.send(alice, bob, content="hello")

        conversation = await directory.find_pair(alice, bob)
        assert conversation is not None
        assert message.conversation_id == conversation.conversation_id
        assert conversation.last_message == "hello"
        assert conversation.unread_for(bob) == 1
        assert conversation.unread_for(alice) == 0

    async def test_requires_content_or_media(
        self, message_store: MessageStore, alice: UUID, bob: UUID
    ) -> None:
        with pytest.raises(ValidationError):
            await message_store.send(alice, bob)

    async def test_cannot_message_self(self, message_store: MessageStore, alice: UUID) -> None:
        with pytest.raises(ValidationError):
            await message_store.send(alice, alice, content="me")

    async def test_unknown_receiver(self, message_store: MessageStore, alice: UUID) -> None:
        with pytest.raises(NotFoundError):
            await message_store.send(alice, uuid4(), content="anyone?")

    async def test_blocked_either_direction(
        self, message_store: MessageStore, blocks: BlockRegistry, alice: UUID, bob: UUID
    ) -> None:
        await blocks.block(alice, bob)

        with pytest.raises(ForbiddenError):
            await message_store.send(alice, bob, content="hi")
        with pytest.raises(ForbiddenError):
            await message_store.send(bob, alice, content="hi")

    async def test_media_only_message(
        self,
        message_store: MessageStore,
        directory: ConversationDirectory,
        alice: UUID,
        bob: UUID,
    ) -> None:
        message = await message_store.send(
            alice, bob, media_url="https://cdn.example.com/p.jpg", message_type=MessageType.IMAGE
        )

        assert message.content == ""
        assert message.media_url == "https://cdn.example.com/p.jpg"
        conversation = await directory.find_pair(alice, bob)
        assert conversation is not None
        assert conversation.last_message == "[image]"

    async def test_explicit_conversation_must_include_sender(
        self,
        message_store: MessageStore,
        alice: UUID,
        bob: UUID,
        carol: UUID,
    ) -> None:
        first = await message_store.send(alice, bob, content="hi")
        assert first.conversation_id is not None

        with pytest.raises(ForbiddenError):
            await message_store.send(
                carol, bob, content="sneaky", conversation_id=first.conversation_id
            )

    async def test_explicit_conversation_must_match_receiver(
        self,
        message_store: MessageStore,
        alice: UUID,
        bob: UUID,
        carol: UUID,
    ) -> None:
        first = await message_store.send(alice, bob, content="hi")

        with pytest.raises(ValidationError):
            await message_store.send(
                alice, carol, content="wrong thread", conversation_id=first.conversation_id
            )

    async def test_emits_new_message_event(
        self, message_store: MessageStore, notifier: RecordingNotifier, alice: UUID, bob: UUID
    ) -> None:
        message = await message_store.send(alice, bob, content="ping")

        [event] = notifier.of_type("new_message")
        assert event.recipient_id == bob
        assert event.actor_id == alice
        assert event.related_id == message.message_id
        assert event.preview == "ping"

    async def test_notification_failure_does_not_fail_send(
        self,
        db_session: AsyncSession,
        blocks: BlockRegistry,
        directory: ConversationDirectory,
        ledger: CreditLedger,
        credit_settings_provider: StaticCreditSettingsProvider,
        alice: UUID,
        bob: UUID,
    ) -> None:
        failing = FailingNotifier()
        store = MessageStore(
            db_session, blocks, directory, ledger, credit_settings_provider, failing
        )

        message = await store.send(alice, bob, content="still delivered")

        assert failing.calls > 0
        assert [m.message_id for m in await store.list_for_conversation(
            message.conversation_id, bob
        )] == [message.message_id]

    async def test_concurrent_first_messages_share_one_conversation(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        credit_settings_provider: StaticCreditSettingsProvider,
        notifier: RecordingNotifier,
        alice: UUID,
        bob: UUID,
    ) -> None:
        """Racing first messages land in one conversation and every one is counted unread."""

        async def send_from_own_session(i: int) -> MessageData:
            async with session_factory() as session:
                store = MessageStore(
                    session,
                    BlockRegistry(session),
                    ConversationDirectory(session),
                    CreditLedger(session, VipEligibilityEngine(session, credit_settings_provider)),
                    credit_settings_provider,
                    notifier,
                )
                return await store.send(bob, alice, content=f"hi #{i}")

        sent = await asyncio.gather(*(send_from_own_session(i) for i in range(8)))

        assert len({m.conversation_id for m in sent}) == 1
        async with session_factory() as session:
            [conversation] = (await session.execute(select(Conversation))).scalars().all()
        unread_alice, unread_bob = (
            (conversation.unread_count_user_1, conversation.unread_count_user_2)
            if conversation.user_1_id == alice
            else (conversation.unread_count_user_2, conversation.unread_count_user_1)
        )
        assert unread_alice == 8
        assert unread_bob == 0


class TestPaidMessages:
    """A configured per-message cost is charged atomically with the send."""

    @pytest.fixture
    def paid_store(
        self,
        db_session: AsyncSession,
        blocks: BlockRegistry,
        directory: ConversationDirectory,
        ledger: CreditLedger,
        notifier: RecordingNotifier,
    ) -> MessageStore:
        provider = StaticCreditSettingsProvider(CreditSettings(chat_message=5))
        return MessageStore(db_session, blocks, directory, ledger, provider, notifier)

    async def test_charges_sender(
        self,
        paid_store: MessageStore,
        ledger: CreditLedger,
        session_factory: async_sessionmaker[AsyncSession],
        alice: UUID,
        bob: UUID,
    ) -> None:
        await ledger.credit(alice, 12, TransactionType.PURCHASE, "Starter pack")

        message = await paid_store.send(alice, bob, content="paid hello")

        assert message.credits_used == 5
        user = await load_user(session_factory, alice)
        assert user.credits == 7
        history = await ledger.history_of(alice)
        usage = history.items[0]
        assert usage.transaction_type == TransactionType.USAGE
        assert usage.amount == -5
        assert usage.relation is not None
        assert usage.relation.kind == RelatedKind.MESSAGE
        assert usage.relation.related_id == str(message.message_id)

    async def test_insufficient_credits_writes_nothing(
        self,
        paid_store: MessageStore,
        session_factory: async_sessionmaker[AsyncSession],
        make_user: UserFactory,
        bob: UUID,
    ) -> None:
        broke = await make_user(credits=3)

        with pytest.raises(InsufficientCreditsError):
            await paid_store.send(broke, bob, content="can't afford")

        async with session_factory() as session:
            messages = (await session.execute(select(func.count(Message.id)))).scalar_one()
            transactions = (
                await session.execute(select(func.count(CreditTransaction.id)))
            ).scalar_one()
        assert messages == 0
        assert transactions == 0
        assert (await load_user(session_factory, broke)).credits == 3


class TestIntro:
    """Tests for multi-receiver intro messages."""

    async def test_sends_one_intro_per_receiver(
        self,
        message_store: MessageStore,
        directory: ConversationDirectory,
        alice: UUID,
        bob: UUID,
        carol: UUID,
    ) -> None:
        sent = await message_store.send_intro(alice, [bob, carol, bob], "Hi there!")

        assert {m.receiver_id for m in sent} == {bob, carol}
        assert all(m.is_intro_message and m.message_type == MessageType.INTRO for m in sent)
        assert all(m.credits_used == 0 for m in sent)
        for receiver in (bob, carol):
            conversation = await directory.find_pair(alice, receiver)
            assert conversation is not None
            assert conversation.unread_for(receiver) == 1

    async def test_blocked_receiver_stops_whole_intro(
        self,
        message_store: MessageStore,
        blocks: BlockRegistry,
        directory: ConversationDirectory,
        alice: UUID,
        bob: UUID,
        carol: UUID,
    ) -> None:
        await blocks.block(carol, alice)

        with pytest.raises(ForbiddenError):
            await message_store.send_intro(alice, [bob, carol], "Hi!")

        assert await directory.find_pair(alice, bob) is None

    async def test_receiver_limit(
        self, message_store: MessageStore, alice: UUID
    ) -> None:
        message_store.intro_max_receivers = 2

        with pytest.raises(ValidationError):
            await message_store.send_intro(alice, [uuid4(), uuid4(), uuid4()], "Hi!")

    async def test_self_in_receivers(
        self, message_store: MessageStore, alice: UUID, bob: UUID
    ) -> None:
        with pytest.raises(ValidationError):
            await message_store.send_intro(alice, [bob, alice], "Hi!")


class TestListForConversation:
    """Listing is a read that marks the caller's incoming messages read."""

    async def test_lists_oldest_first_and_marks_read(
        self,
        message_store: MessageStore,
        directory: ConversationDirectory,
        alice: UUID,
        bob: UUID,
    ) -> None:
        m1 = await message_store.send(alice, bob, content="1")
        m2 = await message_store.send(bob, alice, content="2")
        m3 = await message_store.send(alice, bob, content="3")
        assert m1.conversation_id is not None

        listed = await message_store.list_for_conversation(m1.conversation_id, bob)

        assert [m.message_id for m in listed] == [m1.message_id, m2.message_id, m3.message_id]
        to_bob = [m for m in listed if m.receiver_id == bob]
        assert all(m.is_read and m.read_at is not None for m in to_bob)
        # Bob's own message to Alice stays unread
        assert [m.is_read for m in listed if m.receiver_id == alice] == [False]

        conversation = await directory.find_pair(alice, bob)
        assert conversation is not None
        assert conversation.unread_for(bob) == 0
        assert conversation.unread_for(alice) == 1

    async def test_non_participant_forbidden(
        self, message_store: MessageStore, alice: UUID, bob: UUID, carol: UUID
    ) -> None:
        message = await message_store.send(alice, bob, content="private")
        assert message.conversation_id is not None

        with pytest.raises(ForbiddenError):
            await message_store.list_for_conversation(message.conversation_id, carol)

    async def test_list_between_resolves_by_user(
        self, message_store: MessageStore, alice: UUID, bob: UUID
    ) -> None:
        sent = await message_store.send(alice, bob, content="by user id")

        listed = await message_store.list_between(bob, alice)

        assert [m.message_id for m in listed] == [sent.message_id]
        assert listed[0].is_read is True


class TestMarkRead:
    """Tests for single-message read receipts."""

    async def test_mark_read_decrements_once(
        self,
        message_store: MessageStore,
        directory: ConversationDirectory,
        alice: UUID,
        bob: UUID,
    ) -> None:
        first = await message_store.send(alice, bob, content="1")
        await message_store.send(alice, bob, content="2")

        marked = await message_store.mark_read(first.message_id, bob)
        again = await message_store.mark_read(first.message_id, bob)

        assert marked.is_read is True
        assert again.read_at == marked.read_at
        conversation = await directory.find_pair(alice, bob)
        assert conversation is not None
        assert conversation.unread_for(bob) == 1

    async def test_counter_never_negative(
        self,
        message_store: MessageStore,
        directory: ConversationDirectory,
        alice: UUID,
        bob: UUID,
    ) -> None:
        message = await message_store.send(alice, bob, content="1")
        assert message.conversation_id is not None
        await message_store.list_for_conversation(message.conversation_id, bob)

        await message_store.mark_read(message.message_id, bob)

        conversation = await directory.find_pair(alice, bob)
        assert conversation is not None
        assert conversation.unread_for(bob) == 0

    async def test_only_receiver_can_mark_read(
        self, message_store: MessageStore, alice: UUID, bob: UUID
    ) -> None:
        message = await message_store.send(alice, bob, content="1")

        with pytest.raises(ForbiddenError):
            await message_store.mark_read(message.message_id, alice)

    async def test_unknown_message(self, message_store: MessageStore, alice: UUID) -> None:
        with pytest.raises(NotFoundError):
            await message_store.mark_read(999_999, alice)


class TestSoftDelete:
    """Deleted messages disappear from listings but keep their row."""

    async def test_deleted_message_hidden_but_persisted(
        self,
        message_store: MessageStore,
        session_factory: async_sessionmaker[AsyncSession],
        alice: UUID,
        bob: UUID,
    ) -> None:
        keep = await message_store.send(alice, bob, content="keep")
        gone = await message_store.send(alice, bob, content="delete me")
        assert keep.conversation_id is not None

        deleted = await message_store.soft_delete(gone.message_id, alice)
        listed = await message_store.list_for_conversation(keep.conversation_id, alice)

        assert deleted.is_deleted is True
        assert [m.message_id for m in listed] == [keep.message_id]
        async with session_factory() as session:
            row = await session.get(Message, gone.message_id)
        assert row is not None
        assert row.is_deleted is True
        assert row.deleted_at is not None

    async def test_receiver_may_delete(
        self, message_store: MessageStore, alice: UUID, bob: UUID
    ) -> None:
        message = await message_store.send(alice, bob, content="x")

        assert (await message_store.soft_delete(message.message_id, bob)).is_deleted is True

    async def test_outsider_cannot_delete(
        self, message_store: MessageStore, alice: UUID, bob: UUID, carol: UUID
    ) -> None:
        message = await message_store.send(alice, bob, content="x")

        with pytest.raises(ForbiddenError):
            await message_store.soft_delete(message.message_id, carol)

    async def test_delete_does_not_touch_unread_counter(
        self,
        message_store: MessageStore,
        directory: ConversationDirectory,
        alice: UUID,
        bob: UUID,
    ) -> None:
        message = await message_store.send(alice, bob, content="x")

        await message_store.soft_delete(message.message_id, alice)

        conversation = await directory.find_pair(alice, bob)
        assert conversation is not None
        assert conversation.unread_for(bob) == 1


class TestFreeMessages:
    async def test_free_messages_need_no_credits(
        self,
        message_store: MessageStore,
        make_user: UserFactory,
        bob: UUID,
    ) -> None:
        sender = await make_user(credits=0, plan=SubscriptionPlan.FREE)

        message = await message_store.send(sender, bob, content="free")

        assert message.credits_used == 0

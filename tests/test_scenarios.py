"""
End-to-end flows across the services on a real database.

Each check reads state back in a fresh session so it sees what was committed.
"""

from uuid import UUID

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import Conversation, CreditTransaction, Message
from app.exceptions import ForbiddenError, InsufficientCreditsError
from app.models.api import TransactionType
from app.services.blocks import BlockRegistry
from app.services.chat_requests import ChatRequestWorkflow
from app.services.credits import CreditLedger
from app.services.messages import MessageStore
from conftest import load_user


async def conversations_between(
    session_factory: async_sessionmaker[AsyncSession], a: UUID, b: UUID
) -> list[Conversation]:
    async with session_factory() as session:
        stmt = select(Conversation).where(
            Conversation.user_1_id.in_([a, b]), Conversation.user_2_id.in_([a, b])
        )
        return list((await session.execute(stmt)).scalars())


async def messages_in(
    session_factory: async_sessionmaker[AsyncSession], conversation_id: UUID
) -> list[Message]:
    async with session_factory() as session:
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.id)
        )
        return list((await session.execute(stmt)).scalars())


class TestChatRequestToConversation:
    """A request, accepted, then a back-and-forth."""

    async def test_accept_opens_conversation_with_first_message(
        self, session_factory, workflow: ChatRequestWorkflow, alice: UUID, bob: UUID
    ):
        """Accepting creates exactly one conversation holding the first message."""
        request = await workflow.create(alice, bob, "hi")
        await workflow.accept(request.request_id, bob)

        [conversation] = await conversations_between(session_factory, alice, bob)
        assert conversation.last_message == "hi"

        [message] = await messages_in(session_factory, conversation.id)
        assert message.sender_id == alice
        assert message.receiver_id == bob
        assert message.content == "hi"

    async def test_reading_clears_unread(
        self,
        session_factory,
        workflow: ChatRequestWorkflow,
        message_store: MessageStore,
        alice: UUID,
        bob: UUID,
    ):
        """Unread count follows inbound messages and resets when read."""
        request = await workflow.create(alice, bob, "hi")
        accepted = await workflow.accept(request.request_id, bob)
        conversation_id = accepted.conversation.conversation_id

        for text in ("one", "two", "three"):
            await message_store.send(bob, alice, content=text)

        [conversation] = await conversations_between(session_factory, alice, bob)
        alice_is_user_1 = conversation.user_1_id == alice
        unread = conversation.unread_count_user_1 if alice_is_user_1 else conversation.unread_count_user_2
        assert unread == 3

        await message_store.list_for_conversation(conversation_id, alice)

        [conversation] = await conversations_between(session_factory, alice, bob)
        unread = conversation.unread_count_user_1 if alice_is_user_1 else conversation.unread_count_user_2
        assert unread == 0
        from_bob = [
            m for m in await messages_in(session_factory, conversation_id) if m.sender_id == bob
        ]
        assert len(from_bob) == 3
        assert all(m.is_read for m in from_bob)


class TestBlockedMessaging:
    async def test_blocked_user_cannot_message_blocker(
        self, blocks: BlockRegistry, message_store: MessageStore, alice: UUID, bob: UUID
    ):
        """A block stops messages in the other direction too."""
        await blocks.block(alice, bob)

        with pytest.raises(ForbiddenError):
            await message_store.send(bob, alice, content="hello")


class TestSpendUntilEmpty:
    async def test_second_spend_refused(self, session_factory, ledger: CreditLedger, alice: UUID):
        """A refused spend leaves balance and ledger untouched."""
        await ledger.credit(alice, 50, TransactionType.PURCHASE, "Starter pack")

        result = await ledger.spend(alice, 30, "Video call")
        assert result.balance_after == 20
        assert result.transaction.amount == -30

        with pytest.raises(InsufficientCreditsError):
            await ledger.spend(alice, 30, "Video call")

        user = await load_user(session_factory, alice)
        assert user.credits == 20
        async with session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(CreditTransaction)
                .where(CreditTransaction.user_id == alice)
            )
        assert count == 2

"""
API Routes - FastAPI endpoints for conversations, chat requests, blocks, credits and VIP.

NO DICTIONARIES - All requests/responses use Pydantic models.
The caller's identity always comes from the bearer token, never from the body.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.dependencies import (
    get_block_registry,
    get_chat_request_workflow,
    get_conversation_directory,
    get_credit_ledger,
    get_credit_reader,
    get_message_store,
    get_principal,
    get_vip_reader,
    require_capability,
)
from app.api.errors import http_error_for
from app.exceptions import ChatCoreError
from app.models.api import (
    BalanceResponse,
    BlockResponse,
    BlockUserRequest,
    Capability,
    ChatRequestAcceptedResponse,
    ChatRequestResponse,
    ConversationSummaryResponse,
    CreateChatRequestRequest,
    MessageResponse,
    SendIntroRequest,
    SendMessageRequest,
    SpendCreditsRequest,
    SpendCreditsResponse,
    StatusMessageResponse,
    SubscribeRequest,
    SubscribeResponse,
    TransactionItem,
    TransactionListResponse,
    VipProgressResponse,
)
from app.models.domain import (
    BlockData,
    ChatRequestData,
    ConversationSummary,
    CreditTransactionData,
    MessageData,
    Principal,
    Relation,
)
from app.services.blocks import BlockRegistry
from app.services.chat_requests import ChatRequestWorkflow
from app.services.conversations import ConversationDirectory
from app.services.credits import CreditLedger
from app.services.messages import MessageStore
from app.services.vip import VipEligibilityEngine

router = APIRouter()

messaging_user = require_capability(Capability.MESSAGING)


# ============================================================================
# Response builders
# ============================================================================


def message_response(message: MessageData) -> MessageResponse:
    return MessageResponse(
        id=message.message_id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        content=message.content,
        media_url=message.media_url,
        message_type=message.message_type,
        is_read=message.is_read,
        read_at=message.read_at,
        is_intro_message=message.is_intro_message,
        credits_used=message.credits_used,
        created_at=message.created_at,
    )


def chat_request_response(request: ChatRequestData) -> ChatRequestResponse:
    return ChatRequestResponse(
        id=request.request_id,
        sender_id=request.sender_id,
        receiver_id=request.receiver_id,
        first_message=request.first_message,
        status=request.status,
        expires_at=request.expires_at,
        created_at=request.created_at,
    )


def summary_response(summary: ConversationSummary) -> ConversationSummaryResponse:
    return ConversationSummaryResponse(
        conversation_id=summary.conversation.conversation_id,
        other_user_id=summary.other_user_id,
        unread_count=summary.unread_count,
        last_message=message_response(summary.last_message) if summary.last_message else None,
        last_message_at=summary.conversation.last_message_at,
        created_at=summary.conversation.created_at,
    )


def block_response(block: BlockData) -> BlockResponse:
    return BlockResponse(
        id=block.block_id,
        blocker_id=block.blocker_id,
        blocked_id=block.blocked_id,
        created_at=block.created_at,
    )


def transaction_item(transaction: CreditTransactionData) -> TransactionItem:
    return TransactionItem(
        id=transaction.transaction_id,
        transaction_type=transaction.transaction_type,
        amount=transaction.amount,
        balance_after=transaction.balance_after,
        description=transaction.description,
        related_kind=transaction.relation.kind if transaction.relation else None,
        related_id=transaction.relation.related_id if transaction.relation else None,
        created_at=transaction.created_at,
    )


# ============================================================================
# Chat Requests
# ============================================================================


@router.post(
    "/v1/chat-requests",
    response_model=ChatRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_chat_request(
    request: CreateChatRequestRequest,
    principal: Principal = Depends(messaging_user),
    workflow: ChatRequestWorkflow = Depends(get_chat_request_workflow),
) -> ChatRequestResponse:
    """
    Open a chat request to a user with no conversation yet.

    409 when a conversation already exists (send a message instead) or a
    request to this user is still pending.
    """
    try:
        created = await workflow.create(
            principal.user_id, request.receiver_id, request.first_message
        )
    except ChatCoreError as exc:
        raise http_error_for(exc, "create_chat_request") from exc
    return chat_request_response(created)


@router.get("/v1/chat-requests", response_model=list[ChatRequestResponse])
async def list_pending_chat_requests(
    principal: Principal = Depends(messaging_user),
    workflow: ChatRequestWorkflow = Depends(get_chat_request_workflow),
) -> list[ChatRequestResponse]:
    """Pending requests addressed to the caller, newest first."""
    pending = await workflow.list_pending_for(principal.user_id)
    return [chat_request_response(r) for r in pending]


@router.put("/v1/chat-requests/{request_id}/accept", response_model=ChatRequestAcceptedResponse)
async def accept_chat_request(
    request_id: UUID,
    principal: Principal = Depends(messaging_user),
    workflow: ChatRequestWorkflow = Depends(get_chat_request_workflow),
) -> ChatRequestAcceptedResponse:
    """Accept a pending request; the first message lands in the (new) conversation."""
    try:
        accepted = await workflow.accept(request_id, principal.user_id)
    except ChatCoreError as exc:
        raise http_error_for(exc, "accept_chat_request") from exc
    return ChatRequestAcceptedResponse(
        request_id=accepted.request.request_id,
        conversation_id=accepted.conversation.conversation_id,
        message_id=accepted.first_message.message_id,
    )


@router.put("/v1/chat-requests/{request_id}/reject", response_model=ChatRequestResponse)
async def reject_chat_request(
    request_id: UUID,
    principal: Principal = Depends(messaging_user),
    workflow: ChatRequestWorkflow = Depends(get_chat_request_workflow),
) -> ChatRequestResponse:
    try:
        rejected = await workflow.reject(request_id, principal.user_id)
    except ChatCoreError as exc:
        raise http_error_for(exc, "reject_chat_request") from exc
    return chat_request_response(rejected)


# ============================================================================
# Messages & Conversations
# ============================================================================


@router.post(
    "/v1/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    request: SendMessageRequest,
    principal: Principal = Depends(messaging_user),
    store: MessageStore = Depends(get_message_store),
) -> MessageResponse:
    """
    Send a message by receiver id, optionally pinned to a conversation id.

    Media must already be uploaded; only its URL is stored.
    """
    try:
        message = await store.send(
            principal.user_id,
            request.receiver_id,
            content=request.content,
            media_url=request.media_url,
            conversation_id=request.conversation_id,
            message_type=request.message_type,
        )
    except ChatCoreError as exc:
        raise http_error_for(exc, "send_message") from exc
    return message_response(message)


@router.post(
    "/v1/messages/intro",
    response_model=list[MessageResponse],
    status_code=status.HTTP_201_CREATED,
)
async def send_intro_messages(
    request: SendIntroRequest,
    principal: Principal = Depends(messaging_user),
    store: MessageStore = Depends(get_message_store),
) -> list[MessageResponse]:
    """Send one intro message to several users."""
    try:
        messages = await store.send_intro(principal.user_id, request.receiver_ids, request.content)
    except ChatCoreError as exc:
        raise http_error_for(exc, "send_intro_messages") from exc
    return [message_response(m) for m in messages]


@router.get("/v1/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: UUID | None = Query(None),
    user_id: UUID | None = Query(None),
    principal: Principal = Depends(messaging_user),
    store: MessageStore = Depends(get_message_store),
) -> list[MessageResponse]:
    """
    Messages of one conversation, oldest first.

    Addressed by conversation_id, or by the other participant's user_id.
    Reading marks the caller's incoming messages as read.
    """
    try:
        if conversation_id is not None:
            messages = await store.list_for_conversation(conversation_id, principal.user_id)
        elif user_id is not None:
            messages = await store.list_between(principal.user_id, user_id)
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="conversation_id or user_id is required",
            )
    except ChatCoreError as exc:
        raise http_error_for(exc, "list_messages") from exc
    return [message_response(m) for m in messages]


@router.put("/v1/messages/{message_id}/read", response_model=MessageResponse)
async def mark_message_read(
    message_id: int,
    principal: Principal = Depends(messaging_user),
    store: MessageStore = Depends(get_message_store),
) -> MessageResponse:
    try:
        message = await store.mark_read(message_id, principal.user_id)
    except ChatCoreError as exc:
        raise http_error_for(exc, "mark_message_read") from exc
    return message_response(message)


@router.delete("/v1/messages/{message_id}", response_model=StatusMessageResponse)
async def delete_message(
    message_id: int,
    principal: Principal = Depends(messaging_user),
    store: MessageStore = Depends(get_message_store),
) -> StatusMessageResponse:
    try:
        await store.soft_delete(message_id, principal.user_id)
    except ChatCoreError as exc:
        raise http_error_for(exc, "delete_message") from exc
    return StatusMessageResponse(message="Message deleted")


@router.get("/v1/conversations", response_model=list[ConversationSummaryResponse])
async def list_conversations(
    principal: Principal = Depends(messaging_user),
    directory: ConversationDirectory = Depends(get_conversation_directory),
) -> list[ConversationSummaryResponse]:
    """The caller's inbox, most recently active first."""
    summaries = await directory.summaries_for(principal.user_id)
    return [summary_response(s) for s in summaries]


# ============================================================================
# Blocks
# ============================================================================


@router.post(
    "/v1/blocks",
    response_model=BlockResponse,
    status_code=status.HTTP_201_CREATED,
)
async def block_user(
    request: BlockUserRequest,
    principal: Principal = Depends(get_principal),
    blocks: BlockRegistry = Depends(get_block_registry),
) -> BlockResponse:
    """Block a user. Blocking twice is a no-op."""
    try:
        block = await blocks.block(principal.user_id, request.user_id)
    except ChatCoreError as exc:
        raise http_error_for(exc, "block_user") from exc
    return block_response(block)


@router.delete("/v1/blocks/{user_id}", response_model=StatusMessageResponse)
async def unblock_user(
    user_id: UUID,
    principal: Principal = Depends(get_principal),
    blocks: BlockRegistry = Depends(get_block_registry),
) -> StatusMessageResponse:
    removed = await blocks.unblock(principal.user_id, user_id)
    return StatusMessageResponse(message="User unblocked" if removed else "User was not blocked")


@router.get("/v1/blocks", response_model=list[BlockResponse])
async def list_blocked_users(
    principal: Principal = Depends(get_principal),
    blocks: BlockRegistry = Depends(get_block_registry),
) -> list[BlockResponse]:
    return [block_response(b) for b in await blocks.list_blocked_by(principal.user_id)]


# ============================================================================
# Credits
# ============================================================================


@router.get("/v1/credits/balance", response_model=BalanceResponse)
async def get_balance(
    principal: Principal = Depends(get_principal),
    ledger: CreditLedger = Depends(get_credit_reader),
) -> BalanceResponse:
    """Read operation - uses the replica when configured."""
    try:
        balance = await ledger.balance_of(principal.user_id)
    except ChatCoreError as exc:
        raise http_error_for(exc, "get_balance") from exc
    return BalanceResponse(
        credits=balance.credits,
        subscription_plan=balance.subscription_plan,
        subscription_expires_at=balance.subscription_expires_at,
        total_credits_spent=balance.total_credits_spent,
    )


@router.get("/v1/credits/transactions", response_model=TransactionListResponse)
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    ledger: CreditLedger = Depends(get_credit_reader),
) -> TransactionListResponse:
    """The caller's ledger, newest first."""
    try:
        history = await ledger.history_of(principal.user_id, page=page, limit=limit)
    except ChatCoreError as exc:
        raise http_error_for(exc, "list_transactions") from exc
    return TransactionListResponse(
        transactions=[transaction_item(t) for t in history.items],
        page=history.page,
        limit=history.limit,
        total=history.total,
        pages=history.pages,
    )


@router.post("/v1/credits/spend", response_model=SpendCreditsResponse)
async def spend_credits(
    request: SpendCreditsRequest,
    principal: Principal = Depends(get_principal),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> SpendCreditsResponse:
    """
    Spend credits on a call, gift or media view.

    402 with the current balance when it can't cover the amount.
    """
    relation = None
    if request.related_kind is not None:
        relation = Relation(kind=request.related_kind, related_id=request.related_id)

    try:
        result = await ledger.spend(
            principal.user_id, request.amount, request.description, relation
        )
    except ChatCoreError as exc:
        raise http_error_for(exc, "spend_credits") from exc
    return SpendCreditsResponse(
        transaction_id=result.transaction.transaction_id,
        amount=result.transaction.amount,
        balance_after=result.balance_after,
        vip_active=result.vip_active,
    )


@router.post("/v1/credits/subscribe", response_model=SubscribeResponse)
async def subscribe(
    request: SubscribeRequest,
    principal: Principal = Depends(get_principal),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> SubscribeResponse:
    try:
        change = await ledger.subscribe(principal.user_id, request.plan)
    except ChatCoreError as exc:
        raise http_error_for(exc, "subscribe") from exc
    return SubscribeResponse(
        subscription_plan=change.plan,
        credits_added=change.credits_added,
        total_credits=change.balance_after,
    )


@router.post("/v1/credits/cancel-subscription", response_model=SubscribeResponse)
async def cancel_subscription(
    principal: Principal = Depends(get_principal),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> SubscribeResponse:
    try:
        change = await ledger.cancel_subscription(principal.user_id)
    except ChatCoreError as exc:
        raise http_error_for(exc, "cancel_subscription") from exc
    return SubscribeResponse(
        subscription_plan=change.plan,
        credits_added=0,
        total_credits=change.balance_after,
    )


# ============================================================================
# VIP
# ============================================================================


@router.get("/v1/vip/progress", response_model=VipProgressResponse)
async def get_vip_progress(
    principal: Principal = Depends(get_principal),
    vip: VipEligibilityEngine = Depends(get_vip_reader),
) -> VipProgressResponse:
    """Spend in the trailing window against the VIP threshold."""
    try:
        progress = await vip.progress(principal.user_id)
    except ChatCoreError as exc:
        raise http_error_for(exc, "get_vip_progress") from exc
    return VipProgressResponse(
        premium_active=progress.premium_active,
        vip_active=progress.vip_active,
        vip_expires_at=progress.vip_expires_at,
        credits_spent_last_30_days=progress.credits_spent_in_window,
        credits_required=progress.credits_required,
        remaining_to_vip=progress.remaining_to_vip,
        deadline_date=progress.deadline_date,
        total_credits_spent=progress.total_credits_spent,
    )

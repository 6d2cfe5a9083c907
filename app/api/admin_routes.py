"""
Admin API routes for managing credits and messaging maintenance.

Protected by the bearer token; each route requires an admin-only capability.
"""

from fastapi import APIRouter, Depends, status

from app.api.dependencies import (
    get_chat_request_workflow,
    get_credit_ledger,
    get_credit_settings,
    require_capability,
)
from app.api.errors import http_error_for
from app.api.routes import transaction_item
from app.exceptions import ChatCoreError
from app.models.api import (
    Capability,
    CreditSettingsModel,
    CreditSettingsUpdate,
    GrantCreditsRequest,
    SweepResponse,
    TransactionItem,
)
from app.models.domain import CreditSettings, Principal
from app.observability.logging import get_logger
from app.services.chat_requests import ChatRequestWorkflow
from app.services.credit_settings import StoredCreditSettingsProvider
from app.services.credits import CreditLedger

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["admin"])


def _settings_model(credit_settings: CreditSettings) -> CreditSettingsModel:
    return CreditSettingsModel(**credit_settings.as_overrides())


@router.post(
    "/credits/grant",
    response_model=TransactionItem,
    status_code=status.HTTP_201_CREATED,
)
async def grant_credits(
    request: GrantCreditsRequest,
    admin: Principal = Depends(require_capability(Capability.MANAGE_CREDITS)),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> TransactionItem:
    """Add credits to a user (purchase, refund or refill)."""
    try:
        transaction = await ledger.credit(
            request.user_id,
            request.amount,
            request.transaction_type,
            request.description,
        )
    except ChatCoreError as exc:
        raise http_error_for(exc, "grant_credits") from exc

    logger.info(
        "admin_credits_granted",
        admin_id=str(admin.user_id),
        user_id=str(request.user_id),
        amount=request.amount,
        transaction_type=request.transaction_type.value,
    )
    return transaction_item(transaction)


@router.get("/settings/credits", response_model=CreditSettingsModel)
async def get_credit_settings_view(
    _admin: Principal = Depends(require_capability(Capability.MANAGE_SETTINGS)),
    provider: StoredCreditSettingsProvider = Depends(get_credit_settings),
) -> CreditSettingsModel:
    """Current credit tunables (defaults merged with stored overrides)."""
    return _settings_model(await provider.current())


@router.put("/settings/credits", response_model=CreditSettingsModel)
async def update_credit_settings(
    request: CreditSettingsUpdate,
    admin: Principal = Depends(require_capability(Capability.MANAGE_SETTINGS)),
    provider: StoredCreditSettingsProvider = Depends(get_credit_settings),
) -> CreditSettingsModel:
    """Change some tunables; omitted fields keep their current value."""
    changes = request.model_dump(exclude_none=True)
    updated = await provider.update(changes)
    logger.info("admin_credit_settings_updated", admin_id=str(admin.user_id), changed=sorted(changes))
    return _settings_model(updated)


@router.post("/chat-requests/sweep", response_model=SweepResponse)
async def sweep_expired_chat_requests(
    admin: Principal = Depends(require_capability(Capability.RUN_MAINTENANCE)),
    workflow: ChatRequestWorkflow = Depends(get_chat_request_workflow),
) -> SweepResponse:
    """Expire lapsed pending chat requests now instead of waiting for the sweeper."""
    expired = await workflow.sweep_expired()
    logger.info("admin_sweep_triggered", admin_id=str(admin.user_id), expired=expired)
    return SweepResponse(expired=expired)

"""
Tests for Admin API Routes.

Tests credit grants, credit settings and the chat request sweep, plus the
capability checks guarding them.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import (
    get_chat_request_workflow,
    get_credit_ledger,
    get_credit_settings,
    get_principal,
)
from app.exceptions import NotFoundError
from app.models.api import TransactionType
from app.models.domain import CreditSettings, CreditTransactionData


@pytest.fixture
def admin_client(app, override, admin_principal) -> TestClient:
    override(get_principal, admin_principal)
    return TestClient(app)


@pytest.fixture
def settings_provider(override) -> AsyncMock:
    provider = AsyncMock()
    provider.current.return_value = CreditSettings()
    override(get_credit_settings, provider)
    return provider


class TestGrantCredits:
    """Tests for POST /v1/admin/credits/grant."""

    def test_grant(self, admin_client: TestClient, override):
        """Grants go through the ledger and return the new row."""
        user_id = uuid4()
        ledger = AsyncMock()
        ledger.credit.return_value = CreditTransactionData(
            transaction_id=uuid4(),
            user_id=user_id,
            transaction_type=TransactionType.REFUND,
            amount=50,
            balance_after=150,
            description="Refund for dropped call",
            relation=None,
            created_at=datetime(2026, 6, 1, tzinfo=UTC),
        )
        override(get_credit_ledger, ledger)

        response = admin_client.post(
            "/v1/admin/credits/grant",
            json={
                "user_id": str(user_id),
                "amount": 50,
                "transaction_type": "refund",
                "description": "Refund for dropped call",
            },
        )

        assert response.status_code == 201
        assert response.json()["balance_after"] == 150
        assert response.json()["transaction_type"] == "refund"
        ledger.credit.assert_awaited_once_with(
            user_id, 50, TransactionType.REFUND, "Refund for dropped call"
        )

    def test_grant_usage_rejected(self, admin_client: TestClient, override):
        """Usage rows only come from spending."""
        ledger = AsyncMock()
        override(get_credit_ledger, ledger)

        response = admin_client.post(
            "/v1/admin/credits/grant",
            json={
                "user_id": str(uuid4()),
                "amount": 5,
                "transaction_type": "usage",
                "description": "nope",
            },
        )

        assert response.status_code == 422
        ledger.credit.assert_not_awaited()

    def test_grant_unknown_user_is_404(self, admin_client: TestClient, override):
        """Unknown users -> 404."""
        user_id = uuid4()
        ledger = AsyncMock()
        ledger.credit.side_effect = NotFoundError("User", user_id)
        override(get_credit_ledger, ledger)

        response = admin_client.post(
            "/v1/admin/credits/grant",
            json={"user_id": str(user_id), "amount": 5, "description": "gift"},
        )

        assert response.status_code == 404

    def test_regular_user_forbidden(self, client: TestClient, override):
        """Members cannot grant credits."""
        ledger = AsyncMock()
        override(get_credit_ledger, ledger)

        response = client.post(
            "/v1/admin/credits/grant",
            json={"user_id": str(uuid4()), "amount": 5, "description": "gift"},
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Missing required capability: manage_credits"
        ledger.credit.assert_not_awaited()


class TestCreditSettingsRoutes:
    """Tests for /v1/admin/settings/credits."""

    def test_get(self, admin_client: TestClient, settings_provider: AsyncMock):
        """Current settings are returned in full."""
        response = admin_client.get("/v1/admin/settings/credits")

        assert response.status_code == 200
        assert response.json() == CreditSettings().as_overrides()

    def test_put_only_sends_provided_fields(
        self, admin_client: TestClient, settings_provider: AsyncMock
    ):
        """Omitted fields are not part of the change."""
        settings_provider.update.return_value = CreditSettings(chat_message=2)

        response = admin_client.put("/v1/admin/settings/credits", json={"chat_message": 2})

        assert response.status_code == 200
        assert response.json()["chat_message"] == 2
        assert response.json()["photo_view_credits"] == 15
        settings_provider.update.assert_awaited_once_with({"chat_message": 2})

    def test_put_negative_rejected(self, admin_client: TestClient, settings_provider: AsyncMock):
        """Costs cannot go negative."""
        response = admin_client.put("/v1/admin/settings/credits", json={"vip_credits_required": -1})

        assert response.status_code == 422
        settings_provider.update.assert_not_awaited()

    def test_regular_user_forbidden(self, client: TestClient, settings_provider: AsyncMock):
        """Members cannot read the tunables."""
        response = client.get("/v1/admin/settings/credits")

        assert response.status_code == 403


class TestSweepRoute:
    """Tests for POST /v1/admin/chat-requests/sweep."""

    def test_sweep(self, admin_client: TestClient, override):
        """Reports how many requests were expired."""
        workflow = AsyncMock()
        workflow.sweep_expired.return_value = 3
        override(get_chat_request_workflow, workflow)

        response = admin_client.post("/v1/admin/chat-requests/sweep")

        assert response.status_code == 200
        assert response.json() == {"expired": 3}

    def test_regular_user_forbidden(self, client: TestClient, override):
        """Members cannot run maintenance."""
        workflow = AsyncMock()
        override(get_chat_request_workflow, workflow)

        response = client.post("/v1/admin/chat-requests/sweep")

        assert response.status_code == 403
        workflow.sweep_expired.assert_not_awaited()

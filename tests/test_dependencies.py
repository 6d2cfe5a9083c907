"""
Tests for API Dependencies.

Tests authentication, authorization and collaborator wiring.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from app.api.dependencies import (
    get_credit_settings,
    get_notifier,
    get_principal,
    get_token_service,
    require_capability,
)
from app.models.api import Capability, Role
from app.models.domain import Principal
from app.services.auth_tokens import AccessTokenService
from app.services.credit_settings import StoredCreditSettingsProvider
from app.services.notifications import LogNotificationSender
from conftest import RecordingNotifier


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def request_with_state(**state) -> MagicMock:
    request = MagicMock()
    request.app.state = SimpleNamespace(**state)
    return request


class TestGetPrincipal:
    """Tests for get_principal dependency."""

    @pytest.fixture
    def token_service(self):
        return get_token_service()

    async def test_missing_header_raises_401(self, token_service):
        """No Authorization header gives 401 with a Bearer challenge."""
        with pytest.raises(HTTPException) as exc_info:
            await get_principal(credentials=None, token_service=token_service)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Authorization header required"
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    async def test_valid_token(self, token_service):
        """A valid token resolves to the caller's principal."""
        user_id = uuid4()
        token = token_service.issue(user_id, Role.STREAMER)

        principal = await get_principal(credentials=bearer(token), token_service=token_service)

        assert principal == Principal(user_id=user_id, role=Role.STREAMER)

    async def test_invalid_token_raises_401(self, token_service):
        """Verification failures become 401 with the failure reason."""
        with pytest.raises(HTTPException) as exc_info:
            await get_principal(credentials=bearer("garbage"), token_service=token_service)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "invalid token"

    async def test_token_signed_elsewhere_rejected(self, token_service):
        """Tokens signed with another secret are refused."""
        foreign = AccessTokenService("some-other-secret-that-is-32-chars-long").issue(uuid4())

        with pytest.raises(HTTPException) as exc_info:
            await get_principal(credentials=bearer(foreign), token_service=token_service)

        assert exc_info.value.status_code == 401


class TestRequireCapability:
    """Tests for require_capability dependency factory."""

    async def test_allows_when_role_has_capability(self):
        """Regular users may message."""
        checker = require_capability(Capability.MESSAGING)
        principal = Principal(user_id=uuid4(), role=Role.REGULAR)

        assert await checker(principal=principal) is principal

    async def test_denies_missing_capability(self):
        """Regular users may not grant credits."""
        checker = require_capability(Capability.MANAGE_CREDITS)

        with pytest.raises(HTTPException) as exc_info:
            await checker(principal=Principal(user_id=uuid4(), role=Role.REGULAR))

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Missing required capability: manage_credits"

    @pytest.mark.parametrize("capability", list(Capability))
    async def test_admin_passes_every_check(self, capability):
        """Admins hold every capability."""
        checker = require_capability(capability)
        admin = Principal(user_id=uuid4(), role=Role.ADMIN)

        assert await checker(principal=admin) is admin


class TestCollaborators:
    """Tests for app.state-backed collaborators."""

    def test_notifier_from_app_state(self):
        """The lifespan-configured sender is used when present."""
        notifier = RecordingNotifier()

        assert get_notifier(request_with_state(notifier=notifier)) is notifier

    def test_notifier_falls_back_to_log_sender(self):
        """Without lifespan setup, events go to the log."""
        assert isinstance(get_notifier(request_with_state()), LogNotificationSender)

    def test_credit_settings_from_app_state(self):
        """The shared provider on app.state is reused."""
        provider = MagicMock(spec=StoredCreditSettingsProvider)

        assert get_credit_settings(request_with_state(credit_settings=provider)) is provider

    def test_credit_settings_created_lazily(self):
        """A provider is built and cached when the lifespan didn't run."""
        request = request_with_state()

        provider = get_credit_settings(request)

        assert isinstance(provider, StoredCreditSettingsProvider)
        assert request.app.state.credit_settings is provider
        assert get_credit_settings(request) is provider

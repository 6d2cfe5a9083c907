"""
Access token verification.

Tokens are issued by the account service and carry the user id (`sub`) and role.
This service only verifies them; `issue` exists for local tooling and tests.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt

from app.exceptions import AuthenticationError
from app.models.api import Role
from app.models.domain import Principal
from app.observability.logging import get_logger

logger = get_logger(__name__)


class AccessTokenService:
    """HS256 JWT verification for user bearer tokens."""

    def __init__(self, jwt_secret: str, algorithm: str = "HS256", expire_hours: int = 24):
        self.jwt_secret = jwt_secret
        self.algorithm = algorithm
        self.expire_hours = expire_hours

    def issue(self, user_id: UUID, role: Role = Role.REGULAR) -> str:
        """Create a token for a user."""
        now = datetime.now(UTC)
        payload = {
            "sub": str(user_id),
            "role": role.value,
            "iat": now,
            "exp": now + timedelta(hours=self.expire_hours),
        }
        return jwt.encode(payload, self.jwt_secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Principal:
        """
        Verify a token and build the caller's principal.

        Raises:
            AuthenticationError: bad signature, expired, or malformed claims
        """
        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            logger.warning("access_token_expired")
            raise AuthenticationError("token expired") from e
        except jwt.InvalidTokenError as e:
            logger.warning("access_token_invalid", error=str(e))
            raise AuthenticationError("invalid token") from e

        try:
            user_id = UUID(str(payload["sub"]))
        except ValueError as e:
            raise AuthenticationError("subject is not a user id") from e

        raw_role = payload.get("role") or Role.REGULAR.value
        try:
            role = Role(raw_role)
        except ValueError as e:
            logger.warning("access_token_unknown_role", role=str(raw_role))
            raise AuthenticationError(f"unknown role: {raw_role}") from e

        return Principal(user_id=user_id, role=role)

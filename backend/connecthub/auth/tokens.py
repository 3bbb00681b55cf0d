"""JWT issuance and verification for access and refresh tokens.

Access tokens are short-lived (15 minutes by default) and are what a client
presents when it opens the chat WebSocket or calls the chat API. Refresh
tokens are long-lived (7 days) and are only ever exchanged for a new access
token.

Both classes are HS256-signed with separate secrets and carry a ``typ`` claim,
so one can never be accepted in place of the other. Every verification
failure collapses to :class:`InvalidToken`; the actual cause is only logged
at DEBUG level.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from connecthub.config import AppSettings
from connecthub.errors import InvalidToken

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


class TokenClaims(BaseModel):
    """Identity claims carried by a token.

    Attributes:
        userId: Subject identifier (the user account reference).
        role: Role tag (``user`` or ``company``).
    """
    userId: str = Field(..., min_length=1, description="Subject identifier")
    role: str = Field(default="user", description="Role tag")


class TokenVerifier:
    """Issues and verifies signed tokens. Pure; performs no I/O."""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        issuer: str = "ConnectHub",
        audience: str = "connecthub-users",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ) -> None:
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl, REFRESH: refresh_ttl}
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "TokenVerifier":
        jwt_secrets = settings.secrets.jwt
        return cls(
            access_secret=jwt_secrets.access_secret,
            refresh_secret=jwt_secrets.refresh_secret,
            algorithm=jwt_secrets.algorithm,
            issuer=settings.auth.issuer,
            audience=settings.auth.audience,
            access_ttl=timedelta(minutes=settings.auth.access_expire_minutes),
            refresh_ttl=timedelta(days=settings.auth.refresh_expire_days),
        )

    # -----------------------------------------------------------------------
    # Issuance
    # -----------------------------------------------------------------------

    def issue_access(self, claims: TokenClaims, now: Optional[datetime] = None) -> str:
        return self._issue(ACCESS, claims, now)

    def issue_refresh(self, claims: TokenClaims, now: Optional[datetime] = None) -> str:
        return self._issue(REFRESH, claims, now)

    def _issue(self, token_type: str, claims: TokenClaims, now: Optional[datetime]) -> str:
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            **claims.model_dump(),
            "typ": token_type,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": issued_at,
            "exp": issued_at + self._ttls[token_type],
        }
        return jwt.encode(payload, self._secrets[token_type], algorithm=self.algorithm)

    # -----------------------------------------------------------------------
    # Verification
    # -----------------------------------------------------------------------

    def verify_access(self, token: str) -> TokenClaims:
        return self._verify(ACCESS, token)

    def verify_refresh(self, token: str) -> TokenClaims:
        return self._verify(REFRESH, token)

    def refresh_access(self, refresh_token: str) -> str:
        """Exchange a valid refresh token for a fresh access token."""
        return self.issue_access(self.verify_refresh(refresh_token))

    def _verify(self, token_type: str, token: str) -> TokenClaims:
        if not token or not isinstance(token, str):
            raise InvalidToken()
        try:
            payload = jwt.decode(
                token,
                self._secrets[token_type],
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "iss", "aud"]},
            )
            if payload.get("typ") != token_type:
                raise jwt.InvalidTokenError(f"expected {token_type} token")
            return TokenClaims(userId=payload.get("userId", ""), role=payload.get("role", "user"))
        except (jwt.PyJWTError, PydanticValidationError) as e:
            logger.debug("[Auth] %s token rejected: %s", token_type, e)
            raise InvalidToken() from None

"""FastAPI dependencies for bearer-token authentication."""
import logging
from typing import Optional

from fastapi import Header

from connecthub.config import get_config
from connecthub.errors import AuthenticationError

from .tokens import TokenClaims, TokenVerifier

logger = logging.getLogger(__name__)

_verifier: Optional[TokenVerifier] = None


def get_token_verifier() -> TokenVerifier:
    """Return the global TokenVerifier, building it from config on first use."""
    global _verifier
    if _verifier is None:
        _verifier = TokenVerifier.from_settings(get_config())
    return _verifier


def set_token_verifier(verifier: Optional[TokenVerifier]) -> None:
    """Set (or clear) the global TokenVerifier."""
    global _verifier
    _verifier = verifier


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def current_identity(authorization: Optional[str] = Header(None)) -> TokenClaims:
    """Resolve the caller's identity from the Authorization header.

    Raises:
        AuthenticationError: If the header is missing or not a bearer token.
        InvalidToken: If the token fails verification.
    """
    token = extract_bearer(authorization)
    if token is None:
        raise AuthenticationError("Not authorized, no token")
    return get_token_verifier().verify_access(token)

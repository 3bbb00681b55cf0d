"""Error taxonomy shared by the gateway, the HTTP chat API and the services.

Every error carries a human-readable message and the HTTP status code used
when it surfaces through the REST layer. WebSocket handlers translate them
into ``message:error`` events instead.
"""
from typing import List, Optional


class ChatError(Exception):
    """Base exception for chat errors."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(ChatError):
    """Raised when a credential is missing, malformed or expired."""
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=401)


class InvalidToken(AuthenticationError):
    """Raised for every token verification failure.

    The cause (expiry, signature, issuer...) is deliberately not part of the
    message.
    """
    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class ValidationError(ChatError):
    """Raised when a payload does not match the expected shape."""
    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        self.errors = errors or []
        super().__init__(message, status_code=400)

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        """Build from a ``pydantic.ValidationError``.

        The first error becomes the message; all of them are kept as
        ``{"field", "message"}`` entries.
        """
        errors = []
        for err in exc.errors():
            # Custom validators raise ValueError; show their text without
            # pydantic's "Value error, " prefix.
            ctx_error = (err.get("ctx") or {}).get("error")
            text = str(ctx_error) if ctx_error is not None else err.get("msg", "Invalid value")
            field = ".".join(str(part) for part in err.get("loc", ()))
            errors.append({"field": field, "message": text})
        message = errors[0]["message"] if errors else "Invalid payload"
        return cls(message, errors=errors)


class NotFoundError(ChatError):
    """Raised when a message or conversation does not exist."""
    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class StoreUnavailable(ChatError):
    """Raised when the conversation store cannot complete an operation."""
    def __init__(self, message: str = "Message store unavailable"):
        super().__init__(message, status_code=503)


class CacheUnavailable(ChatError):
    """Raised when the recent-message cache cannot be reached."""
    def __init__(self, message: str = "Cache unavailable"):
        super().__init__(message, status_code=503)

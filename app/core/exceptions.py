from fastapi import status
from typing import Any, Dict, List, Optional


class APIError(Exception):
    """Base for errors that map onto a JSON error envelope."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[List[Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.errors = errors or []
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    @property
    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(APIError):
    """Malformed or rejected input. The message is shown to the caller."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class AuthError(APIError):
    """Bad credentials or an unusable token.

    The message is deliberately generic; callers must not be able to tell
    which check failed.
    """

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication failed"


class ForbiddenError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class RateLimitError(APIError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(self, retry_after: int, limit: Optional[int] = None, message: Optional[str] = None):
        retry_after = max(1, int(retry_after))
        super().__init__(message, errors=[{"retry_after": retry_after}])
        self.retry_after = retry_after
        self.limit = limit

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Retry-After": str(self.retry_after),
            "X-RateLimit-Remaining": "0",
        }
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
        return headers


class InternalError(APIError):
    """Server-side failure. The message never reaches the client."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"


class EmailAlreadyExists(ValidationError):
    default_message = "User with this email already exists"


class InvalidCredentials(AuthError):
    default_message = "Invalid email or password"


class InvalidToken(AuthError):
    default_message = "Invalid or expired token"


class InvalidResetToken(ValidationError):
    default_message = "Invalid or expired reset token"


class WeakPassword(ValidationError):
    default_message = "Password does not meet the strength requirements"

"""Command failure taxonomy shared by services, routes and workers."""

from __future__ import annotations

# purpose: give every command failure a stable code and HTTP status
# status: active


class ShopwatchError(RuntimeError):
    """Base error for registry commands."""

    code = "error"
    status_code = 400
    retryable = False


class ValidationError(ShopwatchError):
    """Raised when input is malformed or out of range."""

    code = "validation_error"
    status_code = 422


class AuthorizationError(ShopwatchError):
    """Raised when the policy evaluator denies a command."""

    code = "authorization_error"
    status_code = 403


class NotFoundError(ShopwatchError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"
    status_code = 404


class ConflictError(ShopwatchError):
    """Raised on uniqueness violations and concurrent modification."""

    code = "conflict"
    status_code = 409


class InvalidTransition(ConflictError):
    """Raised when a lifecycle transition is not in the machine's table."""

    code = "invalid_transition"

    def __init__(self, entity: str, action: str, current: str) -> None:
        super().__init__(f"cannot {action} {entity} in status '{current}'")
        self.entity = entity
        self.action = action
        self.current = current


class RateLimitError(ShopwatchError):
    """Raised when an actor exceeds its request limit for an action."""

    code = "rate_limited"
    status_code = 429
    retryable = True

    def __init__(self, message: str, retry_after: int = 1) -> None:
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))


class TransientError(ShopwatchError):
    """Raised when storage or a transport is temporarily unavailable."""

    code = "transient_error"
    status_code = 503
    retryable = True

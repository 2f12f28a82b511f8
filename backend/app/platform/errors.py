"""Domain error taxonomy shared by services and mapped to HTTP in main.py."""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for errors a caller is expected to act on."""

    status_code = 400
    code = "domain_error"

    def __init__(self, message: str, *, code: str | None = None, extra: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = extra or {}

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class AuthorizationError(DomainError):
    """Caller is not the owner or lacks the role."""

    status_code = 403
    code = "forbidden"


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class StateError(DomainError):
    """Wrong attempt or invite status, or time expired."""

    status_code = 400
    code = "invalid_state"


class InsufficientCreditsError(DomainError):
    status_code = 402
    code = "insufficient_credits"


class RateLimitedError(DomainError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int):
        super().__init__(message, extra={"retryAfter": retry_after})
        self.retry_after = retry_after


class UpstreamError(DomainError):
    """Remote sandbox unreachable, failing or too slow."""

    status_code = 502
    code = "upstream_error"


class ConsistencyError(DomainError):
    """Stored state contradicts an expected invariant (e.g. missing reservation)."""

    status_code = 500
    code = "consistency_error"

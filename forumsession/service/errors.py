from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for session-layer exceptions.

    Each exception class carries an HTTP-style ``status_code`` and a stable
    ``error_code`` so the cookie endpoint can render it and UI callers can
    branch on it:
    - validation_error (400)
    - bad_gateway (502)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class RedirectNegotiationError(ServiceError):
    """The login redirect or remote logout round-trip failed (502)."""
    status_code = 502
    error_code = "bad_gateway"


__all__ = [
    "ServiceError",
    "ValidationError",
    "RedirectNegotiationError",
]

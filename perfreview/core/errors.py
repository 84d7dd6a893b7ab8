from __future__ import annotations

from typing import Any


class PerfReviewError(Exception):
    """
    Base for every error the engine raises on purpose.

    `status_code` is what the HTTP boundary answers with; `code` is a stable
    machine-readable tag clients can switch on.
    """

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(PerfReviewError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(PerfReviewError):
    status_code = 401
    code = "authentication_error"


class AuthorizationError(PerfReviewError):
    status_code = 403
    code = "authorization_error"


class NotFoundError(PerfReviewError):
    # also used for rows outside the caller's organization
    status_code = 404
    code = "not_found"


class ConflictError(PerfReviewError):
    status_code = 409
    code = "conflict"


class StateError(PerfReviewError):
    status_code = 409
    code = "invalid_state"


_BY_STATUS: dict[int, type[PerfReviewError]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}


def error_for_status(status_code: int, detail: Any) -> PerfReviewError:
    """Rebuild an engine error from an HTTP error response body."""
    message = "Request failed"
    details: dict[str, Any] = {}
    if isinstance(detail, dict):
        message = str(detail.get("message", message))
        details = {k: v for k, v in detail.items() if k not in ("code", "message")}
        if status_code == 409 and detail.get("code") == StateError.code:
            return StateError(message, details=details)
    elif detail is not None:
        message = str(detail)

    cls = _BY_STATUS.get(status_code, PerfReviewError)
    return cls(message, details=details)

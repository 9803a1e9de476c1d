"""Error taxonomy shared by the API, the realtime hub and the client.

Every error carries an HTTP status and a stable machine ``code`` so the
client can map a response back onto the same class it was raised as.
"""

from typing import Any, Dict, Optional


class TimeTrackError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            detail["details"] = self.details
        return detail


class ValidationError(TimeTrackError):
    """Bad input shape or range (e.g. ``hours`` outside (0, 24])."""

    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidStateError(TimeTrackError):
    """Operation not allowed in the entity's current state."""

    status_code = 400
    code = "INVALID_STATE"


class ConflictError(TimeTrackError):
    """Invariant violation: timer already running, double stop."""

    status_code = 409
    code = "CONFLICT"


class NotFoundError(TimeTrackError):
    """Unknown entity, or one owned by somebody else."""

    status_code = 404
    code = "NOT_FOUND"


class AuthError(TimeTrackError):
    status_code = 401
    code = "AUTH_ERROR"

    TOKEN_MISSING = "token_missing"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    USER_NOT_FOUND = "user_not_found"
    SERVER_MISCONFIGURED = "server_misconfigured"

    def __init__(self, message: str, reason: str = TOKEN_INVALID):
        super().__init__(message, details={"reason": reason})
        self.reason = reason


class TransientIOError(TimeTrackError):
    """Storage or network hiccup; safe to retry later."""

    status_code = 503
    code = "TRANSIENT_IO"


_BY_CODE = {
    cls.code: cls
    for cls in (ValidationError, InvalidStateError, ConflictError, NotFoundError, AuthError, TransientIOError)
}

_BY_STATUS = {
    400: ValidationError,
    401: AuthError,
    403: AuthError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}


def error_from_response(status_code: int, detail: Any) -> TimeTrackError:
    """Rebuild a typed error from an HTTP status and response ``detail``."""
    message = f"HTTP {status_code}"
    code = None
    reason = None
    details = None
    if isinstance(detail, dict):
        message = str(detail.get("message") or message)
        code = detail.get("code")
        details = detail.get("details") or None
        reason = details.get("reason") if isinstance(details, dict) else None
    elif isinstance(detail, str):
        message = detail

    cls = _BY_CODE.get(code) if code else None
    if cls is None:
        if status_code >= 500:
            cls = TransientIOError
        else:
            cls = _BY_STATUS.get(status_code, ValidationError)

    if cls is AuthError:
        return AuthError(message, reason=reason or AuthError.TOKEN_INVALID)
    return cls(message, details=details)

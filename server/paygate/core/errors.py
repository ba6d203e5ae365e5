"""Request failure taxonomy.

Every error is terminal for the request that raised it. The ``message`` is
what the caller sees; diagnostic detail belongs in the logs only.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "InternalError"
    status_code = 500
    message = "internal server error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.message)
        self.detail = detail

    def to_body(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class MissingFields(AuthError):
    code = "MissingFields"
    status_code = 400
    message = "missing required fields"


class Expired(AuthError):
    code = "Expired"
    status_code = 400
    message = "timestamp expired"


class Unauthorized(AuthError):
    code = "Unauthorized"
    status_code = 403
    message = "unauthorized device"


class SignatureMismatch(AuthError):
    code = "SignatureMismatch"
    status_code = 403
    message = "invalid signature"


class RateLimited(AuthError):
    code = "RateLimited"
    status_code = 429
    message = "too many requests"

    def __init__(self, retry_after: int, detail: str = "") -> None:
        super().__init__(detail)
        self.retry_after = retry_after

    def to_body(self) -> dict:
        body = super().to_body()
        body["retryAfter"] = self.retry_after
        return body


class InternalError(AuthError):
    pass


class Conflict(AuthError):
    code = "Conflict"
    status_code = 409
    message = "device already registered"


class NotFound(AuthError):
    code = "NotFound"
    status_code = 404
    message = "device not found"


class DuplicatePayment(Conflict):
    message = "payment already received"

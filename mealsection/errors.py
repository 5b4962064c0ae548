from __future__ import annotations


class ServiceError(Exception):
    """Base for failures a service reports back to its caller.

    Each subclass carries the HTTP status and the machine-readable code the
    API error handler renders as ``{"ok": false, "error": code, ...}``.
    """

    status = 500
    code = "SERVICE_ERROR"

    def __init__(self, message: str = "", *, code: str | None = None, details: dict | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "status": int(self.status),
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    status = 400
    code = "VALIDATION_ERROR"


class Unauthorized(ServiceError):
    status = 401
    code = "UNAUTHORIZED"


class Forbidden(ServiceError):
    status = 403
    code = "FORBIDDEN"


class NotFound(ServiceError):
    status = 404
    code = "NOT_FOUND"


class InsufficientBalance(ServiceError):
    status = 400
    code = "INSUFFICIENT_BALANCE"


class Conflict(ServiceError):
    status = 409
    code = "CONFLICT"


class InvalidTransition(Conflict):
    code = "INVALID_STATUS_TRANSITION"


class SignatureInvalid(ServiceError):
    status = 401
    code = "INVALID_SIGNATURE"


class UpstreamFailure(ServiceError):
    status = 502
    code = "UPSTREAM_FAILURE"

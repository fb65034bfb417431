from __future__ import annotations

from typing import Any, Dict, Optional


class ApiError(Exception):
    """An error that is rendered to the client as ``{error, details?, ...}``."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(
        self,
        error: Optional[str] = None,
        *,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.error = error or self.default_message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        self.extra = dict(extra or {})
        super().__init__(self.error)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class BadRequest(ApiError):
    status_code = 400
    default_message = "Bad request"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class MethodNotAllowed(ApiError):
    status_code = 405
    default_message = "Method not allowed"


class Conflict(ApiError):
    status_code = 409
    default_message = "Conflict"


class PayloadTooLarge(ApiError):
    status_code = 413
    default_message = "Payload too large"


class ServiceUnavailable(ApiError):
    status_code = 503
    default_message = "Service unavailable"


class UpstreamFailure(ApiError):
    status_code = 502
    default_message = "Upstream request failed"


class InternalError(ApiError):
    status_code = 500
    default_message = "Internal server error"

"""Error taxonomy shared by every route handler.

Each class is an ``HTTPException`` so it can be raised anywhere inside a
request and rendered by the single handler registered in ``main``, which
turns it into ``{"error": ..., "field": ...}``.
"""
from fastapi import HTTPException, status


class ApiError(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(
            status_code=self.status_code,
            detail=message or self.default_message,
            headers=headers,
        )
        self.field = field


class BadRequest(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class Unauthorized(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class InternalError(ApiError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"


class NotConfigured(ApiError):
    status_code = status.HTTP_501_NOT_IMPLEMENTED
    default_message = "Service not configured"


class UpstreamError(ApiError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment provider request failed"


def error_body(message: str, field: str | None = None) -> dict[str, str]:
    body = {"error": message}
    if field:
        body["field"] = field
    return body

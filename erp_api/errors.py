import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

from erp_api.cookies import CookieService
from erp_api.settings import get_settings

logger = logging.getLogger(__name__)


class ApiError(HTTPException):
    error = "Error"
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        clear_cookies: bool = False,
        headers: dict[str, str] | None = None,
        **extra: Any,
    ):
        super().__init__(status_code=status_code or self.default_status, detail=message, headers=headers)
        self.message = message
        self.clear_cookies = clear_cookies
        self.extra = extra

    def to_body(self) -> dict:
        body = {"success": False, "error": self.error, "message": self.message}
        body.update(self.extra)
        return body


class AuthenticationError(ApiError):
    error = "Unauthorized"
    default_status = status.HTTP_401_UNAUTHORIZED


class AccountLockedError(ApiError):
    error = "Locked"
    default_status = status.HTTP_423_LOCKED


class AccountDeactivatedError(ApiError):
    error = "Forbidden"
    default_status = status.HTTP_403_FORBIDDEN


class EmailVerificationRequiredError(ApiError):
    error = "Forbidden"
    default_status = status.HTTP_403_FORBIDDEN


class AuthorizationError(ApiError):
    error = "Forbidden"
    default_status = status.HTTP_403_FORBIDDEN


class ValidationError(ApiError):
    error = "Bad Request"
    default_status = status.HTTP_400_BAD_REQUEST


class NotFoundError(ApiError):
    error = "Not Found"
    default_status = status.HTTP_404_NOT_FOUND


class ConflictError(ApiError):
    error = "Conflict"
    default_status = status.HTTP_409_CONFLICT


class InternalError(ApiError):
    error = "Internal Server Error"
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    response = JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(exc.to_body()),
        headers=exc.headers,
    )
    if exc.clear_cookies:
        CookieService(get_settings()).clear_all_auth_cookies(response)
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        ".".join(str(part) for part in err.get("loc", ()) if part != "body") + ": " + err.get("msg", "")
        for err in exc.errors()
    ]
    return await api_error_handler(request, ValidationError("Request validation failed", errors=errors))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return await api_error_handler(request, InternalError("Internal server error"))

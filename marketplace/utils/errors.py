import enum
import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace.config import settings
from marketplace.utils.responses import error_body

logger = logging.getLogger("marketplace.errors")


class ErrorCode(str, enum.Enum):
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


STATUS_CODES = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
}


class AppError(HTTPException):
    """HTTPException with a machine-readable error code."""

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.message = message
        self.details = details

    @classmethod
    def bad_request(cls, message: str, details: Optional[dict] = None) -> "AppError":
        return cls(400, ErrorCode.BAD_REQUEST, message, details)

    @classmethod
    def unauthorized(cls, message: str = "Unauthorized") -> "AppError":
        return cls(401, ErrorCode.UNAUTHORIZED, message)

    @classmethod
    def forbidden(cls, message: str = "Forbidden") -> "AppError":
        return cls(403, ErrorCode.FORBIDDEN, message)

    @classmethod
    def not_found(cls, message: str = "Resource not found") -> "AppError":
        return cls(404, ErrorCode.NOT_FOUND, message)

    @classmethod
    def conflict(cls, message: str, details: Optional[dict] = None) -> "AppError":
        return cls(409, ErrorCode.CONFLICT, message, details)

    @classmethod
    def internal(cls, message: str = "Internal server error") -> "AppError":
        return cls(500, ErrorCode.INTERNAL_ERROR, message)

    @classmethod
    def external_service(cls, service: str, message: str) -> "AppError":
        return cls(
            502,
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            f"External service error ({service}): {message}",
            {"service": service},
        )


def _respond(request: Request, status_code: int, code: str, message: str, details=None, stack=None):
    body = error_body(message, code, details, path=request.url.path)
    if stack is not None:
        body["stack"] = stack
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def app_error_handler(request: Request, exc: AppError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, "%s %s -> %s %s", request.method, request.url.path, exc.code.value, exc.message)
    return _respond(request, exc.status_code, exc.code.value, exc.message, exc.details)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    return _respond(request, exc.status_code, code.value, str(exc.detail))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = {
        "errors": [
            {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
            for err in exc.errors()
        ]
    }
    return _respond(request, 400, ErrorCode.VALIDATION_ERROR.value, "Validation failed", details)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error %s %s", request.method, request.url.path)
    stack = None
    if not settings.is_production:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return _respond(request, 500, ErrorCode.INTERNAL_ERROR.value, "Internal server error", stack=stack)


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

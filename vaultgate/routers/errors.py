from __future__ import annotations
import logging
from typing import Any
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from ..errors import DEFAULT_MESSAGES, ErrorCode, ServiceError

logger = logging.getLogger(__name__)

STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.EMAIL_EXISTS: 409,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.MFA_REQUIRED: 403,
    ErrorCode.INVALID_MFA: 401,
    ErrorCode.TOKEN_EXPIRED: 401,
    ErrorCode.INVALID_REFRESH: 401,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.MFA_SETUP_INCOMPLETE: 400,
    ErrorCode.USER_SETUP_INCOMPLETE: 400,
    ErrorCode.MFA_ALREADY_ENABLED: 409,
    ErrorCode.WRONG_PASSWORD: 401,
    ErrorCode.WRONG_OTP: 401,
    ErrorCode.NO_PASSWORD: 400,
    ErrorCode.NO_OTP: 400,
    ErrorCode.DISABLED: 410,
    ErrorCode.EXPIRED: 410,
    ErrorCode.LIMIT_REACHED: 410,
    ErrorCode.NOT_YET_OPEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.METHOD_NOT_ALLOWED: 405,
    ErrorCode.FILE_NOT_IN_SHARE: 404,
    ErrorCode.VALIDATION_FAILED: 422,
    ErrorCode.INTERNAL_ERROR: 500,
}

# framework-raised HTTP errors (unknown route, wrong method) mapped onto the closed set
_CODE_BY_STATUS = {
    401: ErrorCode.UNAUTHORIZED,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    422: ErrorCode.VALIDATION_FAILED,
}


def error_body(code: ErrorCode, message: str, details: dict[str, Any] | None = None) -> dict:
    error: dict[str, Any] = {"code": code.value, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


def _validation_details(exc: RequestValidationError) -> dict[str, Any]:
    # drop "input"/"ctx" so submitted passwords are never echoed back
    fields = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return {"fields": fields}


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        status = STATUS_BY_CODE[exc.code]
        return JSONResponse(status_code=status, content=error_body(exc.code, exc.message, exc.details))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        code = ErrorCode.VALIDATION_FAILED
        return JSONResponse(
            status_code=STATUS_BY_CODE[code],
            content=error_body(code, DEFAULT_MESSAGES[code], _validation_details(exc)),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        code = _CODE_BY_STATUS.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
        message = exc.detail if isinstance(exc.detail, str) else DEFAULT_MESSAGES[code]
        return JSONResponse(status_code=exc.status_code, content=error_body(code, message))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        code = ErrorCode.INTERNAL_ERROR
        settings = request.app.state.settings
        message = DEFAULT_MESSAGES[code] if settings.is_production else str(exc) or DEFAULT_MESSAGES[code]
        return JSONResponse(status_code=500, content=error_body(code, message))

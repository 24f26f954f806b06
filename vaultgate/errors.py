from __future__ import annotations
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Closed set of failures the trust boundary can report."""

    EMAIL_EXISTS = "EMAIL_EXISTS"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    MFA_REQUIRED = "MFA_REQUIRED"
    INVALID_MFA = "INVALID_MFA"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_REFRESH = "INVALID_REFRESH"
    UNAUTHORIZED = "UNAUTHORIZED"
    MFA_SETUP_INCOMPLETE = "MFA_SETUP_INCOMPLETE"
    USER_SETUP_INCOMPLETE = "USER_SETUP_INCOMPLETE"
    MFA_ALREADY_ENABLED = "MFA_ALREADY_ENABLED"
    WRONG_PASSWORD = "WRONG_PASSWORD"
    WRONG_OTP = "WRONG_OTP"
    NO_PASSWORD = "NO_PASSWORD"
    NO_OTP = "NO_OTP"
    DISABLED = "DISABLED"
    EXPIRED = "EXPIRED"
    LIMIT_REACHED = "LIMIT_REACHED"
    NOT_YET_OPEN = "NOT_YET_OPEN"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    FILE_NOT_IN_SHARE = "FILE_NOT_IN_SHARE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


DEFAULT_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.EMAIL_EXISTS: "Email already registered",
    ErrorCode.INVALID_CREDENTIALS: "Invalid credentials",
    ErrorCode.MFA_REQUIRED: "MFA code required",
    ErrorCode.INVALID_MFA: "Invalid MFA code",
    ErrorCode.TOKEN_EXPIRED: "Access token is invalid or expired",
    ErrorCode.INVALID_REFRESH: "Invalid or expired refresh token",
    ErrorCode.UNAUTHORIZED: "Missing or invalid authorization header",
    ErrorCode.MFA_SETUP_INCOMPLETE: "MFA setup not initiated",
    ErrorCode.USER_SETUP_INCOMPLETE: "User setup incomplete",
    ErrorCode.MFA_ALREADY_ENABLED: "MFA is already enabled",
    ErrorCode.WRONG_PASSWORD: "Invalid password",
    ErrorCode.WRONG_OTP: "Invalid OTP",
    ErrorCode.NO_PASSWORD: "Link has no password",
    ErrorCode.NO_OTP: "Link has no OTP",
    ErrorCode.DISABLED: "Share link has been disabled",
    ErrorCode.EXPIRED: "Share link has expired",
    ErrorCode.LIMIT_REACHED: "Download limit reached",
    ErrorCode.NOT_YET_OPEN: "Share link is not open yet",
    ErrorCode.NOT_FOUND: "Resource not found",
    ErrorCode.METHOD_NOT_ALLOWED: "Method not allowed",
    ErrorCode.FILE_NOT_IN_SHARE: "File not found in shared folder",
    ErrorCode.VALIDATION_FAILED: "Request validation failed",
    ErrorCode.INTERNAL_ERROR: "Internal server error",
}


class ServiceError(Exception):
    """A typed domain failure. The HTTP status is decided at the boundary."""

    def __init__(self, code: ErrorCode, message: str | None = None, details: dict[str, Any] | None = None):
        self.code = code
        self.message = message or DEFAULT_MESSAGES[code]
        self.details = details
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"ServiceError({self.code.value}, {self.message!r})"

from __future__ import annotations
import datetime as dt
from typing import Annotated, Literal
from pydantic import AfterValidator, BaseModel, EmailStr, Field, model_validator


class CamelModel(BaseModel):
    model_config = {"populate_by_name": True, "alias_generator": lambda s: ''.join([s.split('_')[0]] + [w.capitalize() for w in s.split('_')[1:]])}


def _as_utc(value: dt.datetime) -> dt.datetime:
    # stored timestamps are naive UTC
    return value.replace(tzinfo=dt.timezone.utc) if value.tzinfo is None else value.astimezone(dt.timezone.utc)

UtcDatetime = Annotated[dt.datetime, AfterValidator(_as_utc)]

# ---- Auth

class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=100)

class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)
    totp_code: str | None = None

class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(min_length=1)

class AccountSummary(CamelModel):
    id: int
    email: str
    name: str
    role: str
    mfa_enabled: bool = False
    storage_quota: int | None = None
    storage_used: int | None = None

class AuthResponse(CamelModel):
    account: AccountSummary
    access_token: str
    refresh_token: str

class TokenPairResponse(CamelModel):
    access_token: str
    refresh_token: str

class SessionInfo(CamelModel):
    id: int
    created_at: UtcDatetime | None = None
    expires_at: UtcDatetime | None = None
    ip: str | None = None
    user_agent: str | None = None

class DeleteResponse(CamelModel):
    deleted: int

# ---- MFA

class MfaSetupResponse(CamelModel):
    secret: str
    provisioning_uri: str

class EnableMfaRequest(CamelModel):
    totp_code: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")

class PasswordConfirmRequest(CamelModel):
    password_confirm: str = Field(min_length=1)
    totp_code: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")

class RecoveryCodesResponse(CamelModel):
    recovery_codes: list[str]

class RecoveryCodeStatusResponse(CamelModel):
    total: int
    remaining: int

# ---- Sharing (owner)

class CreateShareLinkRequest(CamelModel):
    file_id: int | None = None
    folder_id: int | None = None
    permission: Literal["viewer", "editor"] = "viewer"
    password: str | None = Field(default=None, min_length=1)
    opens_at: dt.datetime | None = None
    expires_at: dt.datetime | None = None
    expires_in: float | None = Field(default=None, gt=0)  # hours
    max_downloads: int | None = Field(default=None, gt=0)
    otp_enabled: bool = False

    @model_validator(mode="after")
    def _one_resource(self):
        if (self.file_id is None) == (self.folder_id is None):
            raise ValueError("Either fileId or folderId is required, not both")
        return self

class ShareLinkInfo(CamelModel):
    id: int
    token: str
    file_id: int | None = None
    folder_id: int | None = None
    permission: str
    has_password: bool
    otp_enabled: bool
    opens_at: UtcDatetime | None = None
    expires_at: UtcDatetime | None = None
    max_downloads: int | None = None
    download_count: int
    is_active: bool
    created_at: UtcDatetime | None = None

class CreatedShareLinkResponse(ShareLinkInfo):
    share_url: str
    otp_code: str | None = None

# ---- Sharing (public)

class SharedFile(CamelModel):
    id: int
    name: str
    mime_type: str | None = None
    size: int

class SharedFolder(CamelModel):
    id: int
    name: str
    files: list[SharedFile]

class ShareLinkViewResponse(CamelModel):
    permission: str
    requires_password: bool
    requires_otp: bool
    opens_at: UtcDatetime | None = None
    expires_at: UtcDatetime | None = None
    download_count: int
    max_downloads: int | None = None
    file: SharedFile | None = None
    folder: SharedFolder | None = None

class VerifyPasswordRequest(CamelModel):
    password: str = Field(min_length=1)

class VerifyOtpRequest(CamelModel):
    otp: str = Field(min_length=1)

class ShareActionRequest(CamelModel):
    file_id: int | None = None
    password: str | None = None
    otp: str | None = None

class DownloadResponse(CamelModel):
    retrieval_handle: str
    file_name: str
    expires_in: int

class PreviewResponse(CamelModel):
    retrieval_handle: str
    file_name: str
    mime_type: str | None = None
    size: int
    expires_in: int

# ---- Sharing (account grants)

class GrantPermissionRequest(CamelModel):
    file_id: int | None = None
    folder_id: int | None = None
    user_id: int
    role: Literal["viewer", "editor", "owner"]
    expires_at: dt.datetime | None = None

    @model_validator(mode="after")
    def _one_resource(self):
        if (self.file_id is None) == (self.folder_id is None):
            raise ValueError("Either fileId or folderId is required, not both")
        return self

class Grantee(CamelModel):
    id: int
    name: str
    email: str

class PermissionInfo(CamelModel):
    id: int
    file_id: int | None = None
    folder_id: int | None = None
    role: str
    granted_by: int
    granted_to: Grantee
    expires_at: UtcDatetime | None = None
    created_at: UtcDatetime | None = None

class EmptyResponse(CamelModel):
    pass

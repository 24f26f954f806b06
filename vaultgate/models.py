from __future__ import annotations
import datetime as dt
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from .db import Base


def utcnow() -> dt.datetime:
    return dt.datetime.utcnow()


class Account(Base):
    __tablename__ = "accounts"
    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="member")  # admin, member, guest

    password_hash = Column(String, nullable=True)

    # MFA: totp_secret is set while enrollment is pending and kept once enabled
    mfa_enabled = Column(Boolean, nullable=False, default=False)
    totp_secret = Column(String, nullable=True)

    # Storage quota and usage (in bytes)
    storage_quota = Column(BigInteger, default=5368709120)  # 5GB default
    storage_used = Column(BigInteger, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class AccountSession(Base):
    """One refresh-token grant. Rotated in place on refresh, deleted on logout."""

    __tablename__ = "sessions"
    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    refresh_token = Column(String, unique=True, index=True, nullable=False)
    ip = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)


class RecoveryCode(Base):
    __tablename__ = "recovery_codes"
    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String, nullable=False)  # argon2 hash, plaintext is never stored
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Folder(Base):
    __tablename__ = "folders"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class File(Base):
    __tablename__ = "files"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    folder_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)
    name = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    size = Column(BigInteger, nullable=False, default=0)
    storage_key = Column(String, nullable=False)
    is_trashed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)


class ShareLink(Base):
    __tablename__ = "share_links"
    __table_args__ = (
        CheckConstraint(
            "(file_id IS NULL) != (folder_id IS NULL)",
            name="ck_share_links_one_resource",
        ),
    )
    id = Column(Integer, primary_key=True)
    file_id = Column(Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=True)
    folder_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True)
    token = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=True)
    permission = Column(String, nullable=False, default="viewer")  # viewer, editor
    otp_enabled = Column(Boolean, nullable=False, default=False)
    otp_code = Column(String, nullable=True)
    opens_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    max_downloads = Column(Integer, nullable=True)
    download_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)


class ShareAccessLog(Base):
    """Append-only audit trail of anonymous share-link access attempts."""

    __tablename__ = "share_access_logs"
    id = Column(Integer, primary_key=True)
    share_link_id = Column(Integer, ForeignKey("share_links.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String, nullable=False)  # view, password_verify, otp_verify, download
    ip = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Permission(Base):
    """Account-to-account grant on a file or folder, made by its owner."""

    __tablename__ = "permissions"
    __table_args__ = (
        CheckConstraint(
            "(file_id IS NULL) != (folder_id IS NULL)",
            name="ck_permissions_one_resource",
        ),
    )
    id = Column(Integer, primary_key=True)
    file_id = Column(Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=True, index=True)
    folder_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True)
    granted_to = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    granted_by = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    role = Column(String, nullable=False)  # viewer, editor, owner
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

"""
Public share-link gate.

Anonymous access to a shared file or folder is decided by four ordered
checks (disabled, not yet open, expired, download limit) that short-circuit
on the first failure, followed by two independent secondary gates (password
and OTP). Nothing is remembered between requests: ``download`` and
``preview`` carry the gate credentials themselves.

Owners also manage their links here, along with direct grants of a file or
folder to another account.
"""
from __future__ import annotations

import datetime as dt
import hmac
import logging
import secrets
import string
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings
from .errors import ErrorCode, ServiceError
from .models import Account, File, Folder, Permission, ShareAccessLog, ShareLink
from .s3 import ObjectStore
from .security import PasswordHasher

logger = logging.getLogger(__name__)

OTP_LENGTH = 6
LINK_TOKEN_BYTES = 32
PERMISSIONS = ("viewer", "editor")
GRANT_ROLES = ("viewer", "editor", "owner")


class ShareAction(str, Enum):
    VIEW = "view"
    PASSWORD_VERIFY = "password_verify"
    OTP_VERIFY = "otp_verify"
    DOWNLOAD = "download"


@dataclass(frozen=True)
class ClientInfo:
    ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class ShareLinkView:
    link: ShareLink
    file: File | None
    folder: Folder | None
    folder_files: list[File]

    @property
    def requires_password(self) -> bool:
        return bool(self.link.password_hash)

    @property
    def requires_otp(self) -> bool:
        return bool(self.link.otp_enabled)


@dataclass(frozen=True)
class RetrievalHandle:
    url: str
    file: File
    expires_in: int


@dataclass(frozen=True)
class CreatedShareLink:
    link: ShareLink
    share_url: str
    otp_code: str | None


@dataclass(frozen=True)
class GrantedPermission:
    permission: Permission
    grantee: Account


def _naive_utc(value: dt.datetime | None) -> dt.datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc).replace(tzinfo=None)


def _iso(value: dt.datetime | None) -> str | None:
    return value.replace(tzinfo=dt.timezone.utc).isoformat() if value else None


def _same(candidate: str, expected: str) -> bool:
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


class ShareLinkGate:
    def __init__(
        self,
        settings: Settings,
        hasher: PasswordHasher,
        store: ObjectStore,
        clock: Callable[[], dt.datetime] = dt.datetime.utcnow,
    ):
        self._frontend_url = settings.frontend_url.rstrip("/")
        self._url_ttl = settings.share_download_url_ttl
        self._hasher = hasher
        self._store = store
        self.clock = clock

    # ---- gate

    def check_access(self, link: ShareLink, now: dt.datetime | None = None) -> None:
        """Ordered primary checks. The first failing check wins."""
        now = now or self.clock()
        if not link.is_active:
            raise ServiceError(ErrorCode.DISABLED)
        if link.opens_at and link.opens_at > now:
            raise ServiceError(
                ErrorCode.NOT_YET_OPEN,
                details={"opensAt": _iso(link.opens_at)},
            )
        if link.expires_at and link.expires_at < now:
            raise ServiceError(ErrorCode.EXPIRED)
        if link.max_downloads is not None and link.download_count >= link.max_downloads:
            raise ServiceError(ErrorCode.LIMIT_REACHED)

    def _enforce_secondary_gates(self, link: ShareLink, password: str | None, otp: str | None) -> None:
        if link.password_hash and not (password and self._hasher.verify(password, link.password_hash)):
            raise ServiceError(ErrorCode.WRONG_PASSWORD)
        if link.otp_enabled and not (otp and link.otp_code and _same(otp, link.otp_code)):
            raise ServiceError(ErrorCode.WRONG_OTP)

    def _get_link(self, db: Session, token: str) -> ShareLink:
        link = db.query(ShareLink).filter(ShareLink.token == token).one_or_none()
        if not link:
            raise ServiceError(ErrorCode.NOT_FOUND, "Share link not found")
        return link

    def _audit(self, db: Session, link: ShareLink, action: ShareAction, client: ClientInfo) -> None:
        link_id = link.id
        try:
            db.add(
                ShareAccessLog(
                    share_link_id=link_id,
                    action=action.value,
                    ip=client.ip,
                    user_agent=client.user_agent,
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Failed to record {action.value} audit entry for share link {link_id}")

    def _resolve_file(self, db: Session, link: ShareLink, file_id: int | None) -> File:
        if link.file_id is not None:
            if file_id is not None and file_id != link.file_id:
                raise ServiceError(ErrorCode.FILE_NOT_IN_SHARE)
            file = db.get(File, link.file_id)
            if not file or file.is_trashed:
                raise ServiceError(ErrorCode.NOT_FOUND, "Shared file not found")
            return file
        if file_id is None:
            raise ServiceError(ErrorCode.FILE_NOT_IN_SHARE, "fileId is required for folder links")
        file = (
            db.query(File)
            .filter(
                File.id == file_id,
                File.folder_id == link.folder_id,
                File.is_trashed.is_(False),
            )
            .one_or_none()
        )
        if not file:
            raise ServiceError(ErrorCode.FILE_NOT_IN_SHARE)
        return file

    def _count_download(self, db: Session, link: ShareLink) -> None:
        link_id = link.id
        result = db.execute(
            update(ShareLink)
            .where(
                ShareLink.id == link_id,
                ShareLink.is_active.is_(True),
                or_(
                    ShareLink.max_downloads.is_(None),
                    ShareLink.download_count < ShareLink.max_downloads,
                ),
            )
            .values(download_count=ShareLink.download_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # the link changed under us; report whichever check now fails
            db.rollback()
            current = db.query(ShareLink).filter(ShareLink.id == link_id).one_or_none()
            if current is None:
                raise ServiceError(ErrorCode.NOT_FOUND, "Share link not found")
            self.check_access(current)
            raise ServiceError(ErrorCode.LIMIT_REACHED)
        db.commit()
        db.refresh(link)

    # ---- anonymous actions

    def view_metadata(self, db: Session, token: str, client: ClientInfo = ClientInfo()) -> ShareLinkView:
        link = self._get_link(db, token)
        # attempts are audited even when a check below withholds the content
        self._audit(db, link, ShareAction.VIEW, client)
        self.check_access(link)
        file = db.get(File, link.file_id) if link.file_id is not None else None
        folder = db.get(Folder, link.folder_id) if link.folder_id is not None else None
        folder_files: list[File] = []
        if folder is not None:
            folder_files = (
                db.query(File)
                .filter(File.folder_id == folder.id, File.is_trashed.is_(False))
                .order_by(File.name)
                .all()
            )
        return ShareLinkView(link=link, file=file, folder=folder, folder_files=folder_files)

    def verify_password(self, db: Session, token: str, candidate: str, client: ClientInfo = ClientInfo()) -> None:
        link = self._get_link(db, token)
        self._audit(db, link, ShareAction.PASSWORD_VERIFY, client)
        self.check_access(link)
        if not link.password_hash:
            raise ServiceError(ErrorCode.NO_PASSWORD)
        if not self._hasher.verify(candidate, link.password_hash):
            logger.warning(f"Wrong password for share link {link.id}")
            raise ServiceError(ErrorCode.WRONG_PASSWORD)

    def verify_otp(self, db: Session, token: str, candidate: str, client: ClientInfo = ClientInfo()) -> None:
        link = self._get_link(db, token)
        self._audit(db, link, ShareAction.OTP_VERIFY, client)
        self.check_access(link)
        if not link.otp_enabled or not link.otp_code:
            raise ServiceError(ErrorCode.NO_OTP)
        if not _same(candidate, link.otp_code):
            logger.warning(f"Wrong OTP for share link {link.id}")
            raise ServiceError(ErrorCode.WRONG_OTP)

    def download(
        self,
        db: Session,
        token: str,
        file_id: int | None = None,
        password: str | None = None,
        otp: str | None = None,
        client: ClientInfo = ClientInfo(),
    ) -> RetrievalHandle:
        link = self._get_link(db, token)
        # state may have changed since the metadata view
        self.check_access(link)
        self._enforce_secondary_gates(link, password, otp)
        file = self._resolve_file(db, link, file_id)
        url = self._store.presign_get(file.storage_key, self._url_ttl, filename=file.name)
        self._count_download(db, link)
        logger.info(f"Share link {link.id} download {link.download_count}/{link.max_downloads or '-'} of file {file.id}")
        self._audit(db, link, ShareAction.DOWNLOAD, client)
        return RetrievalHandle(url=url, file=file, expires_in=self._url_ttl)

    def preview(
        self,
        db: Session,
        token: str,
        file_id: int | None = None,
        password: str | None = None,
        otp: str | None = None,
    ) -> RetrievalHandle:
        """Like ``download`` but does not spend an allotted download."""
        link = self._get_link(db, token)
        self.check_access(link)
        self._enforce_secondary_gates(link, password, otp)
        file = self._resolve_file(db, link, file_id)
        url = self._store.presign_get(file.storage_key, self._url_ttl)
        return RetrievalHandle(url=url, file=file, expires_in=self._url_ttl)

    # ---- owner actions

    def _owned_resource(self, db: Session, owner: Account, file_id: int | None, folder_id: int | None) -> File | Folder:
        if file_id is not None:
            resource = db.get(File, file_id)
            if not resource or resource.owner_id != owner.id or resource.is_trashed:
                raise ServiceError(ErrorCode.NOT_FOUND, "File not found")
            return resource
        resource = db.get(Folder, folder_id)
        if not resource or resource.owner_id != owner.id:
            raise ServiceError(ErrorCode.NOT_FOUND, "Folder not found")
        return resource

    @staticmethod
    def generate_otp() -> str:
        return "".join(secrets.choice(string.digits) for _ in range(OTP_LENGTH))

    def create_link(
        self,
        db: Session,
        owner: Account,
        *,
        file_id: int | None = None,
        folder_id: int | None = None,
        permission: str = "viewer",
        password: str | None = None,
        opens_at: dt.datetime | None = None,
        expires_at: dt.datetime | None = None,
        expires_in_hours: float | None = None,
        max_downloads: int | None = None,
        otp_enabled: bool = False,
    ) -> CreatedShareLink:
        if (file_id is None) == (folder_id is None):
            raise ServiceError(ErrorCode.VALIDATION_FAILED, "Exactly one of fileId or folderId is required")
        if permission not in PERMISSIONS:
            raise ServiceError(ErrorCode.VALIDATION_FAILED, f"Unknown permission: {permission}")
        self._owned_resource(db, owner, file_id, folder_id)

        if expires_at is None and expires_in_hours:
            expires_at = self.clock() + dt.timedelta(hours=expires_in_hours)
        otp_code = self.generate_otp() if otp_enabled else None
        link = ShareLink(
            file_id=file_id,
            folder_id=folder_id,
            token=secrets.token_urlsafe(LINK_TOKEN_BYTES),
            password_hash=self._hasher.hash(password) if password else None,
            permission=permission,
            otp_enabled=otp_enabled,
            otp_code=otp_code,
            opens_at=_naive_utc(opens_at),
            expires_at=_naive_utc(expires_at),
            max_downloads=max_downloads,
            created_by=owner.id,
        )
        db.add(link)
        db.commit()
        logger.info(f"Account {owner.id} created share link {link.id}")
        return CreatedShareLink(
            link=link,
            share_url=f"{self._frontend_url}/share/{link.token}",
            otp_code=otp_code,
        )

    def _owned_link(self, db: Session, owner: Account, link_id: int) -> ShareLink:
        link = db.get(ShareLink, link_id)
        if not link or link.created_by != owner.id:
            raise ServiceError(ErrorCode.NOT_FOUND, "Share link not found")
        return link

    def list_links(self, db: Session, owner: Account) -> list[ShareLink]:
        return (
            db.query(ShareLink)
            .filter(ShareLink.created_by == owner.id)
            .order_by(ShareLink.created_at.desc())
            .all()
        )

    def disable_link(self, db: Session, owner: Account, link_id: int) -> ShareLink:
        link = self._owned_link(db, owner, link_id)
        link.is_active = False
        db.commit()
        logger.info(f"Account {owner.id} disabled share link {link.id}")
        return link

    def delete_link(self, db: Session, owner: Account, link_id: int) -> None:
        link = self._owned_link(db, owner, link_id)
        db.delete(link)
        db.commit()
        logger.info(f"Account {owner.id} deleted share link {link_id}")

    # ---- account-to-account grants

    def grant_permission(
        self,
        db: Session,
        owner: Account,
        *,
        grantee_id: int,
        role: str,
        file_id: int | None = None,
        folder_id: int | None = None,
        expires_at: dt.datetime | None = None,
    ) -> GrantedPermission:
        """Grant ``role`` on one of the owner's resources. Re-granting updates the existing row."""
        if (file_id is None) == (folder_id is None):
            raise ServiceError(ErrorCode.VALIDATION_FAILED, "Exactly one of fileId or folderId is required")
        if role not in GRANT_ROLES:
            raise ServiceError(ErrorCode.VALIDATION_FAILED, f"Unknown role: {role}")
        self._owned_resource(db, owner, file_id, folder_id)
        if grantee_id == owner.id:
            raise ServiceError(ErrorCode.VALIDATION_FAILED, "Cannot grant a permission to yourself")
        grantee = db.get(Account, grantee_id)
        if not grantee:
            raise ServiceError(ErrorCode.NOT_FOUND, "Account not found")
        expires_at = _naive_utc(expires_at)
        if expires_at is not None and expires_at <= self.clock():
            raise ServiceError(ErrorCode.VALIDATION_FAILED, "expiresAt must be in the future")

        grant = (
            db.query(Permission)
            .filter(
                Permission.granted_to == grantee.id,
                Permission.file_id.is_(None) if file_id is None else Permission.file_id == file_id,
                Permission.folder_id.is_(None) if folder_id is None else Permission.folder_id == folder_id,
            )
            .one_or_none()
        )
        if grant is None:
            grant = Permission(file_id=file_id, folder_id=folder_id, granted_to=grantee.id)
            db.add(grant)
        grant.granted_by = owner.id
        grant.role = role
        grant.expires_at = expires_at
        db.commit()
        logger.info(f"Account {owner.id} granted {role} to account {grantee.id} (permission {grant.id})")
        return GrantedPermission(permission=grant, grantee=grantee)

    def list_permissions(
        self,
        db: Session,
        owner: Account,
        resource_id: int,
        kind: str | None = None,
    ) -> list[GrantedPermission]:
        """Grants on the owner's file and/or folder with this id. ``kind`` narrows to one of them."""
        scopes = []
        if kind in (None, "file"):
            file = db.get(File, resource_id)
            if file and file.owner_id == owner.id:
                scopes.append(Permission.file_id == resource_id)
        if kind in (None, "folder"):
            folder = db.get(Folder, resource_id)
            if folder and folder.owner_id == owner.id:
                scopes.append(Permission.folder_id == resource_id)
        if not scopes:
            raise ServiceError(ErrorCode.NOT_FOUND, "Resource not found")
        rows = (
            db.query(Permission, Account)
            .join(Account, Account.id == Permission.granted_to)
            .filter(or_(*scopes))
            .order_by(Permission.created_at, Permission.id)
            .all()
        )
        return [GrantedPermission(permission=grant, grantee=grantee) for grant, grantee in rows]

    def revoke_permission(self, db: Session, owner: Account, permission_id: int) -> None:
        grant = db.get(Permission, permission_id)
        if grant is not None:
            if grant.file_id is not None:
                resource = db.get(File, grant.file_id)
            else:
                resource = db.get(Folder, grant.folder_id)
            if resource is not None and resource.owner_id == owner.id:
                db.delete(grant)
                db.commit()
                logger.info(f"Account {owner.id} revoked permission {permission_id}")
                return
        raise ServiceError(ErrorCode.NOT_FOUND, "Permission not found")

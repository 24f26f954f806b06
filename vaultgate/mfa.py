"""
TOTP multi-factor authentication with single-use recovery codes.

Enrollment is two-step: ``begin_enrollment`` stores an untrusted secret and
``confirm_enrollment`` flips ``mfa_enabled`` only once the user proves
possession of it. Recovery-code plaintext leaves this module exactly once,
inside a ``RecoveryCodeBatch``; only argon2 hashes are persisted.
"""
from __future__ import annotations

import datetime as dt
import logging
import secrets
import string
from dataclasses import dataclass

import pyotp
from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from .config import Settings
from .errors import ErrorCode, ServiceError
from .models import Account, RecoveryCode
from .security import PasswordHasher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MfaEnrollment:
    secret: str
    provisioning_uri: str


@dataclass(frozen=True)
class RecoveryCodeBatch:
    """Plaintext recovery codes, handed out once at enable/regenerate time."""

    codes: tuple[str, ...]


@dataclass(frozen=True)
class RecoveryCodeStatus:
    total: int
    remaining: int


class MfaManager:
    RECOVERY_CODE_COUNT = 10
    RECOVERY_CODE_LENGTH = 8
    RECOVERY_CODE_ALPHABET = string.ascii_uppercase + string.digits
    SECRET_LENGTH = 32
    # accept the previous and next 30-second step to absorb clock skew
    VALID_WINDOW = 1

    def __init__(self, settings: Settings, hasher: PasswordHasher):
        self._issuer = settings.mfa_issuer
        self._hasher = hasher

    # ---- helpers

    def verify_totp(self, secret: str | None, code: str | None) -> bool:
        if not secret or not code:
            return False
        return pyotp.TOTP(secret).verify(code.strip(), valid_window=self.VALID_WINDOW)

    @classmethod
    def generate_recovery_code(cls) -> str:
        return "".join(secrets.choice(cls.RECOVERY_CODE_ALPHABET) for _ in range(cls.RECOVERY_CODE_LENGTH))

    def _replace_recovery_codes(self, db: Session, account: Account, *, enable: bool) -> RecoveryCodeBatch:
        codes = tuple(self.generate_recovery_code() for _ in range(self.RECOVERY_CODE_COUNT))
        hashes = [self._hasher.hash(code) for code in codes]
        # delete-old, insert-new and the enable flag share one transaction
        try:
            db.execute(
                delete(RecoveryCode)
                .where(RecoveryCode.account_id == account.id)
                .execution_options(synchronize_session=False)
            )
            db.add_all([RecoveryCode(account_id=account.id, code_hash=h) for h in hashes])
            if enable:
                account.mfa_enabled = True
            db.commit()
        except Exception:
            db.rollback()
            raise
        return RecoveryCodeBatch(codes=codes)

    def _require_password_and_totp(self, account: Account, password_confirm: str, code: str) -> None:
        if not account.password_hash or not account.totp_secret:
            raise ServiceError(ErrorCode.USER_SETUP_INCOMPLETE)
        if not self._hasher.verify(password_confirm, account.password_hash):
            logger.warning(f"Password confirmation failed for account {account.id}")
            raise ServiceError(ErrorCode.WRONG_PASSWORD, "Invalid password confirmation")
        if not self.verify_totp(account.totp_secret, code):
            logger.warning(f"TOTP confirmation failed for account {account.id}")
            raise ServiceError(ErrorCode.INVALID_MFA)

    # ---- operations

    def begin_enrollment(self, db: Session, account: Account) -> MfaEnrollment:
        if account.mfa_enabled:
            raise ServiceError(ErrorCode.MFA_ALREADY_ENABLED)
        secret = pyotp.random_base32(self.SECRET_LENGTH)
        account.totp_secret = secret
        db.commit()
        uri = pyotp.TOTP(secret).provisioning_uri(name=account.email, issuer_name=self._issuer)
        logger.info(f"Started MFA enrollment for account {account.id}")
        return MfaEnrollment(secret=secret, provisioning_uri=uri)

    def confirm_enrollment(self, db: Session, account: Account, code: str) -> RecoveryCodeBatch:
        if account.mfa_enabled:
            raise ServiceError(ErrorCode.MFA_ALREADY_ENABLED)
        if not account.totp_secret:
            raise ServiceError(ErrorCode.MFA_SETUP_INCOMPLETE)
        if not self.verify_totp(account.totp_secret, code):
            raise ServiceError(ErrorCode.INVALID_MFA, "Invalid TOTP code")
        batch = self._replace_recovery_codes(db, account, enable=True)
        logger.info(f"Enabled MFA for account {account.id}")
        return batch

    def verify_login(self, db: Session, account: Account, submitted: str) -> bool:
        if self.verify_totp(account.totp_secret, submitted):
            return True
        candidate = (submitted or "").strip().upper()
        if len(candidate) != self.RECOVERY_CODE_LENGTH:
            return False
        unused = (
            db.query(RecoveryCode)
            .filter(RecoveryCode.account_id == account.id, RecoveryCode.used.is_(False))
            .all()
        )
        for record in unused:
            if not self._hasher.verify(candidate, record.code_hash):
                continue
            result = db.execute(
                update(RecoveryCode)
                .where(RecoveryCode.id == record.id, RecoveryCode.used.is_(False))
                .values(used=True, used_at=dt.datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount != 1:
                # spent by a concurrent login
                return False
            logger.info(f"Account {account.id} authenticated with recovery code {record.id}")
            return True
        return False

    def regenerate_recovery_codes(
        self, db: Session, account: Account, password_confirm: str, code: str
    ) -> RecoveryCodeBatch:
        self._require_password_and_totp(account, password_confirm, code)
        batch = self._replace_recovery_codes(db, account, enable=False)
        logger.info(f"Regenerated recovery codes for account {account.id}")
        return batch

    def disable(self, db: Session, account: Account, password_confirm: str, code: str) -> None:
        self._require_password_and_totp(account, password_confirm, code)
        try:
            db.execute(
                delete(RecoveryCode)
                .where(RecoveryCode.account_id == account.id)
                .execution_options(synchronize_session=False)
            )
            account.mfa_enabled = False
            account.totp_secret = None
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(f"Disabled MFA for account {account.id}")

    def recovery_code_status(self, db: Session, account: Account) -> RecoveryCodeStatus:
        total = db.query(RecoveryCode).filter(RecoveryCode.account_id == account.id).count()
        remaining = (
            db.query(RecoveryCode)
            .filter(RecoveryCode.account_id == account.id, RecoveryCode.used.is_(False))
            .count()
        )
        return RecoveryCodeStatus(total=total, remaining=remaining)

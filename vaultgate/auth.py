from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ErrorCode, ServiceError
from .mfa import MfaManager
from .models import Account
from .security import PasswordHasher
from .tokens import TokenIssuer, TokenPair

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    account: Account
    tokens: TokenPair


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Register/login/refresh/logout.

    Login always checks the password before MFA, and MFA before a session is
    issued; a failed MFA attempt never creates a session.
    """

    def __init__(self, hasher: PasswordHasher, tokens: TokenIssuer, mfa: MfaManager):
        self._hasher = hasher
        self._tokens = tokens
        self._mfa = mfa
        self._dummy_hash: str | None = None

    def _burn_hash(self, password: str) -> None:
        # unknown emails cost the same as a wrong password
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash("vaultgate-timing-equalizer")
        self._hasher.verify(password, self._dummy_hash)

    def register(
        self,
        db: Session,
        email: str,
        password: str,
        name: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        email = normalize_email(email)
        if db.query(Account).filter(Account.email == email).first():
            raise ServiceError(ErrorCode.EMAIL_EXISTS)
        account = Account(email=email, name=name, password_hash=self._hasher.hash(password))
        db.add(account)
        try:
            db.commit()
        except IntegrityError as exc:
            # lost a race with a concurrent registration
            db.rollback()
            raise ServiceError(ErrorCode.EMAIL_EXISTS) from exc
        logger.info(f"Registered account {account.id}")
        tokens = self._tokens.issue_session(db, account, ip=ip, user_agent=user_agent)
        return AuthResult(account=account, tokens=tokens)

    def login(
        self,
        db: Session,
        email: str,
        password: str,
        totp_code: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        account = db.query(Account).filter(Account.email == normalize_email(email)).first()
        if not account or not account.password_hash:
            self._burn_hash(password)
            raise ServiceError(ErrorCode.INVALID_CREDENTIALS)
        if not self._hasher.verify(password, account.password_hash):
            logger.warning(f"Password mismatch for account {account.id}")
            raise ServiceError(ErrorCode.INVALID_CREDENTIALS)

        if account.mfa_enabled and account.totp_secret:
            if not totp_code:
                raise ServiceError(ErrorCode.MFA_REQUIRED)
            if not self._mfa.verify_login(db, account, totp_code):
                logger.warning(f"MFA verification failed for account {account.id}")
                raise ServiceError(ErrorCode.INVALID_MFA)

        tokens = self._tokens.issue_session(db, account, ip=ip, user_agent=user_agent)
        return AuthResult(account=account, tokens=tokens)

    def refresh(self, db: Session, refresh_token: str) -> TokenPair:
        return self._tokens.refresh(db, refresh_token)

    def logout(self, db: Session, refresh_token: str) -> None:
        self._tokens.revoke(db, refresh_token)

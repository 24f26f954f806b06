"""Access-token signing and refresh-token session management.

Access tokens are short-lived HS256 JWTs and are never persisted. Refresh
tokens are opaque random strings stored on an ``AccountSession`` row; each
successful refresh overwrites the row's token so a rotated value can never be
replayed.
"""
from __future__ import annotations

import datetime as dt
import logging
import re
import secrets
from dataclasses import dataclass

import jwt
from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from .config import Settings
from .errors import ErrorCode, ServiceError
from .models import Account, AccountSession

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 48
DEFAULT_DURATION = dt.timedelta(days=7)

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> dt.timedelta:
    """Parse ``<int><unit>`` (unit one of s, m, h, d). Anything else means 7 days."""
    match = _DURATION_RE.match((value or "").strip())
    if not match:
        return DEFAULT_DURATION
    amount, unit = match.groups()
    return dt.timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AccessClaims:
    account_id: int
    email: str
    role: str
    issued_at: int
    expires_at: int


class TokenIssuer:
    def __init__(self, settings: Settings):
        self._secret = settings.jwt_secret
        self._issuer = settings.jwt_issuer
        self.access_ttl = parse_duration(settings.jwt_access_expiry)
        self.refresh_ttl = parse_duration(settings.jwt_refresh_expiry)

    # ---- access tokens

    def issue_access_token(self, account_id: int, email: str, role: str) -> str:
        now = dt.datetime.now(dt.timezone.utc)
        payload = {
            "sub": str(account_id),
            "email": email,
            "role": role,
            "iss": self._issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + self.access_ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm="HS256")

    def decode_access_token(self, token: str) -> AccessClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=["HS256"],
                issuer=self._issuer,
                options={"require": ["sub", "exp", "iat"], "verify_aud": False},
            )
            return AccessClaims(
                account_id=int(payload["sub"]),
                email=payload.get("email", ""),
                role=payload.get("role", ""),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
            )
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as exc:
            raise ServiceError(ErrorCode.TOKEN_EXPIRED) from exc

    # ---- refresh sessions

    def issue_session(
        self,
        db: Session,
        account: Account,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        refresh_token = secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
        sess = AccountSession(
            account_id=account.id,
            refresh_token=refresh_token,
            ip=ip,
            user_agent=user_agent,
            expires_at=dt.datetime.utcnow() + self.refresh_ttl,
        )
        db.add(sess)
        db.commit()
        logger.info(f"Issued session {sess.id} for account {account.id}")
        access_token = self.issue_access_token(account.id, account.email, account.role)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def refresh(self, db: Session, refresh_token: str) -> TokenPair:
        now = dt.datetime.utcnow()
        new_token = secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
        # One conditional UPDATE: of two concurrent refreshes with the same
        # token, only one can match the old value.
        result = db.execute(
            update(AccountSession)
            .where(
                AccountSession.refresh_token == refresh_token,
                AccountSession.expires_at > now,
            )
            .values(refresh_token=new_token, expires_at=now + self.refresh_ttl)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            logger.warning("Rejected refresh with unknown, expired or already rotated token")
            raise ServiceError(ErrorCode.INVALID_REFRESH)
        db.commit()

        sess = db.query(AccountSession).filter(AccountSession.refresh_token == new_token).one()
        account = db.get(Account, sess.account_id)
        logger.info(f"Rotated session {sess.id} for account {account.id}")
        access_token = self.issue_access_token(account.id, account.email, account.role)
        return TokenPair(access_token=access_token, refresh_token=new_token)

    def revoke(self, db: Session, refresh_token: str) -> int:
        result = db.execute(
            delete(AccountSession)
            .where(AccountSession.refresh_token == refresh_token)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount or 0

    def revoke_all(self, db: Session, account_id: int) -> int:
        result = db.execute(
            delete(AccountSession)
            .where(AccountSession.account_id == account_id)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info(f"Revoked all sessions for account {account_id}")
        return result.rowcount or 0

    def list_sessions(self, db: Session, account_id: int) -> list[AccountSession]:
        return (
            db.query(AccountSession)
            .filter(
                AccountSession.account_id == account_id,
                AccountSession.expires_at > dt.datetime.utcnow(),
            )
            .order_by(AccountSession.created_at.desc())
            .all()
        )

    def revoke_session(self, db: Session, account_id: int, session_id: int) -> int:
        result = db.execute(
            delete(AccountSession)
            .where(AccountSession.id == session_id, AccountSession.account_id == account_id)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount or 0

    def purge_expired(self, db: Session) -> int:
        result = db.execute(
            delete(AccountSession)
            .where(AccountSession.expires_at <= dt.datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount or 0

from __future__ import annotations
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session
from .config import Settings
from .db import get_db
from .errors import ErrorCode, ServiceError
from .models import Account

auth_scheme = HTTPBearer(auto_error=False)


class PasswordHasher:
    """argon2id hashing for account passwords, share-link passwords and recovery codes."""

    def __init__(self, settings: Settings):
        self._context = CryptContext(
            schemes=["argon2"],
            deprecated="auto",
            argon2__type="id",
            argon2__memory_cost=settings.argon2_memory_cost,
            argon2__rounds=settings.argon2_time_cost,
            argon2__parallelism=settings.argon2_parallelism,
        )

    def hash(self, secret: str) -> str:
        return self._context.hash(secret)

    def verify(self, secret: str, hashed: str | None) -> bool:
        if not hashed:
            return False
        try:
            return self._context.verify(secret, hashed)
        except ValueError:
            # malformed or foreign hash
            return False


def get_current_account(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(auth_scheme),
    db: Session = Depends(get_db),
) -> Account:
    if not creds or not creds.scheme or creds.scheme.lower() != "bearer" or not creds.credentials:
        raise ServiceError(ErrorCode.UNAUTHORIZED)
    claims = request.app.state.token_issuer.decode_access_token(creds.credentials)
    account = db.get(Account, claims.account_id)
    if not account:
        raise ServiceError(ErrorCode.TOKEN_EXPIRED)
    return account

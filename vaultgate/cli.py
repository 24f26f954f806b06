from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from .auth import normalize_email
from .config import Settings, load_settings
from .db import build_engine, build_session_factory, ensure_tables
from .models import Account, RecoveryCode
from .security import PasswordHasher
from .tokens import TokenIssuer


class _Context:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = build_engine(settings.database_url)
        ensure_tables(self.engine)
        self.session_factory = build_session_factory(self.engine)

    def open_session(self):
        return self.session_factory()


def _fail(message: str, code: int = 1):
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(code)


def _read_password(password: Optional[str]) -> str:
    if password:
        return password
    pw1 = getpass.getpass("New password: ")
    pw2 = getpass.getpass("Confirm password: ")
    if pw1 != pw2:
        _fail("passwords do not match", 2)
    return pw1


def _find_account(db, email: str) -> Account:
    account = db.query(Account).filter(Account.email == normalize_email(email)).first()
    if not account:
        _fail(f"account '{email}' not found")
    return account


def init_db(ctx: _Context):
    # tables are created when the context is built
    print(f"Database ready: {ctx.settings.database_url}")


def create_user(ctx: _Context, email: str, password: Optional[str], name: Optional[str], role: str):
    password = _read_password(password)
    if len(password) < 8:
        _fail("password must be at least 8 characters", 2)
    email = normalize_email(email)
    db = ctx.open_session()
    try:
        account = Account(
            email=email,
            name=name or email.split("@")[0],
            role=role,
            password_hash=PasswordHasher(ctx.settings).hash(password),
        )
        db.add(account)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            _fail("account already exists")
        print(f"Created account id={account.id} email={account.email} role={account.role}")
    finally:
        db.close()


def reset_password(ctx: _Context, email: str, password: Optional[str]):
    password = _read_password(password)
    db = ctx.open_session()
    try:
        account = _find_account(db, email)
        account.password_hash = PasswordHasher(ctx.settings).hash(password)
        db.commit()
        revoked = TokenIssuer(ctx.settings).revoke_all(db, account.id)
        print(f"Password updated; {revoked} session(s) revoked.")
    finally:
        db.close()


def reset_mfa(ctx: _Context, email: str):
    db = ctx.open_session()
    try:
        account = _find_account(db, email)
        db.execute(delete(RecoveryCode).where(RecoveryCode.account_id == account.id))
        account.mfa_enabled = False
        account.totp_secret = None
        db.commit()
        print(f"MFA reset for {account.email}.")
    finally:
        db.close()


def purge_sessions(ctx: _Context):
    db = ctx.open_session()
    try:
        purged = TokenIssuer(ctx.settings).purge_expired(db)
        print(f"Purged {purged} expired session(s).")
    finally:
        db.close()


def list_sessions(ctx: _Context, email: str):
    db = ctx.open_session()
    try:
        account = _find_account(db, email)
        sessions = TokenIssuer(ctx.settings).list_sessions(db, account.id)
        for s in sessions:
            print(f"id={s.id} created_at={s.created_at} expires_at={s.expires_at} ip={s.ip or '-'} ua={s.user_agent or '-'}")
        if not sessions:
            print("(no sessions)")
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vaultgate", description="vaultgate account administration")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_init = sub.add_parser("init-db", help="Create database tables")
    p_init.set_defaults(func=lambda ctx, a: init_db(ctx))

    p_cu = sub.add_parser("create-user", help="Create an account")
    p_cu.add_argument("email")
    p_cu.add_argument("--password", help="Prompted for when omitted")
    p_cu.add_argument("--name")
    p_cu.add_argument("--role", default="member", choices=["member", "admin"])
    p_cu.set_defaults(func=lambda ctx, a: create_user(ctx, a.email, a.password, a.name, a.role))

    p_rp = sub.add_parser("reset-password", help="Set a new password and revoke all sessions")
    p_rp.add_argument("email")
    p_rp.add_argument("--password", help="Prompted for when omitted")
    p_rp.set_defaults(func=lambda ctx, a: reset_password(ctx, a.email, a.password))

    p_rm = sub.add_parser("reset-mfa", help="Turn MFA off and drop recovery codes")
    p_rm.add_argument("email")
    p_rm.set_defaults(func=lambda ctx, a: reset_mfa(ctx, a.email))

    p_ps = sub.add_parser("purge-sessions", help="Delete expired refresh sessions")
    p_ps.set_defaults(func=lambda ctx, a: purge_sessions(ctx))

    p_ls = sub.add_parser("list-sessions", help="List live sessions of an account")
    p_ls.add_argument("email")
    p_ls.set_defaults(func=lambda ctx, a: list_sessions(ctx, a.email))
    return parser


def main(argv=None, settings: Settings | None = None):
    args = build_parser().parse_args(argv)
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level.upper())
    ctx = _Context(settings)
    try:
        args.func(ctx, args)
    finally:
        ctx.engine.dispose()


if __name__ == "__main__":
    main()

import datetime as dt

import pytest

from vaultgate.cli import main
from vaultgate.db import build_engine, build_session_factory
from vaultgate.models import Account, AccountSession, RecoveryCode
from vaultgate.security import PasswordHasher


@pytest.fixture()
def session(settings):
    main(["init-db"], settings=settings)
    engine = build_engine(settings.database_url)
    db = build_session_factory(engine)()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


def test_init_db(settings, capsys):
    main(["init-db"], settings=settings)
    assert "Database ready" in capsys.readouterr().out


def test_create_user(settings, session, capsys):
    main(["create-user", "Admin@Example.com", "--password", "admin-password", "--role", "admin"], settings=settings)
    out = capsys.readouterr().out
    assert "email=admin@example.com role=admin" in out
    account = session.query(Account).one()
    assert account.name == "admin"
    assert PasswordHasher(settings).verify("admin-password", account.password_hash)


def test_create_user_duplicate(settings, session, capsys):
    main(["create-user", "a@example.com", "--password", "password-1"], settings=settings)
    with pytest.raises(SystemExit) as exc:
        main(["create-user", "a@example.com", "--password", "password-2"], settings=settings)
    assert exc.value.code == 1
    assert "already exists" in capsys.readouterr().err


def test_create_user_short_password(settings, session):
    with pytest.raises(SystemExit) as exc:
        main(["create-user", "a@example.com", "--password", "short"], settings=settings)
    assert exc.value.code == 2


def test_reset_password_revokes_sessions(settings, session, capsys):
    main(["create-user", "a@example.com", "--password", "old-password"], settings=settings)
    account = session.query(Account).one()
    session.add(AccountSession(account_id=account.id, refresh_token="r1", expires_at=dt.datetime.utcnow() + dt.timedelta(days=1)))
    session.commit()

    main(["reset-password", "a@example.com", "--password", "new-password"], settings=settings)
    assert "1 session(s) revoked" in capsys.readouterr().out
    session.expire_all()
    assert PasswordHasher(settings).verify("new-password", session.query(Account).one().password_hash)
    assert session.query(AccountSession).count() == 0


def test_reset_password_unknown_account(settings, session, capsys):
    with pytest.raises(SystemExit):
        main(["reset-password", "ghost@example.com", "--password", "whatever1"], settings=settings)
    assert "not found" in capsys.readouterr().err


def test_reset_mfa(settings, session):
    main(["create-user", "a@example.com", "--password", "password-1"], settings=settings)
    account = session.query(Account).one()
    account.mfa_enabled = True
    account.totp_secret = "JBSWY3DPEHPK3PXP"
    session.add(RecoveryCode(account_id=account.id, code_hash="x"))
    session.commit()

    main(["reset-mfa", "a@example.com"], settings=settings)
    session.expire_all()
    account = session.query(Account).one()
    assert account.mfa_enabled is False
    assert account.totp_secret is None
    assert session.query(RecoveryCode).count() == 0


def test_purge_and_list_sessions(settings, session, capsys):
    main(["create-user", "a@example.com", "--password", "password-1"], settings=settings)
    account = session.query(Account).one()
    now = dt.datetime.utcnow()
    session.add_all([
        AccountSession(account_id=account.id, refresh_token="live", ip="10.0.0.1", expires_at=now + dt.timedelta(days=1)),
        AccountSession(account_id=account.id, refresh_token="dead", ip="10.0.0.2", expires_at=now - dt.timedelta(days=1)),
    ])
    session.commit()
    capsys.readouterr()

    main(["list-sessions", "a@example.com"], settings=settings)
    out = capsys.readouterr().out
    assert "ip=10.0.0.1" in out
    assert "ip=10.0.0.2" not in out

    main(["purge-sessions"], settings=settings)
    assert "Purged 1 expired session(s)." in capsys.readouterr().out
    assert session.query(AccountSession).count() == 1

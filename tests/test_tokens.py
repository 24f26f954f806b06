import datetime as dt
import threading
from concurrent.futures import ThreadPoolExecutor

import jwt
import pytest

from vaultgate.errors import ErrorCode, ServiceError
from vaultgate.models import Account, AccountSession
from vaultgate.tokens import TokenIssuer, parse_duration


@pytest.mark.parametrize(
    "value,expected",
    [
        ("30s", dt.timedelta(seconds=30)),
        ("15m", dt.timedelta(minutes=15)),
        ("2h", dt.timedelta(hours=2)),
        ("7d", dt.timedelta(days=7)),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "abc", "10w", "1.5h", "-5m", "m15"])
def test_parse_duration_falls_back_to_seven_days(value):
    assert parse_duration(value) == dt.timedelta(days=7)


@pytest.fixture()
def issuer(settings):
    return TokenIssuer(settings)


@pytest.fixture()
def account(db):
    acc = Account(email="bob@example.com", name="Bob", password_hash="x")
    db.add(acc)
    db.commit()
    return acc


def test_access_token_claims_round_trip(issuer, settings):
    token = issuer.issue_access_token(42, "bob@example.com", "member")
    raw = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"], issuer=settings.jwt_issuer)
    assert raw["sub"] == "42"
    assert raw["iss"] == "vaultgate"
    assert raw["exp"] - raw["iat"] == 15 * 60

    claims = issuer.decode_access_token(token)
    assert claims.account_id == 42
    assert claims.email == "bob@example.com"
    assert claims.role == "member"


def test_token_signed_with_other_secret_is_rejected(issuer):
    forged = jwt.encode(
        {"sub": "1", "iss": "vaultgate", "iat": 0, "exp": 4102444800},
        "not-the-secret",
        algorithm="HS256",
    )
    with pytest.raises(ServiceError) as exc:
        issuer.decode_access_token(forged)
    assert exc.value.code is ErrorCode.TOKEN_EXPIRED


def test_expired_token_is_rejected(issuer, settings):
    now = dt.datetime.now(dt.timezone.utc)
    expired = jwt.encode(
        {
            "sub": "1",
            "iss": settings.jwt_issuer,
            "iat": int((now - dt.timedelta(hours=1)).timestamp()),
            "exp": int((now - dt.timedelta(minutes=1)).timestamp()),
        },
        settings.jwt_secret,
        algorithm="HS256",
    )
    with pytest.raises(ServiceError) as exc:
        issuer.decode_access_token(expired)
    assert exc.value.code is ErrorCode.TOKEN_EXPIRED


def test_garbage_token_is_rejected(issuer):
    with pytest.raises(ServiceError) as exc:
        issuer.decode_access_token("not.a.jwt")
    assert exc.value.code is ErrorCode.TOKEN_EXPIRED


def test_refresh_rotates_token(issuer, db, account):
    pair = issuer.issue_session(db, account, ip="10.0.0.1", user_agent="pytest")
    rotated = issuer.refresh(db, pair.refresh_token)
    assert rotated.refresh_token != pair.refresh_token
    assert issuer.decode_access_token(rotated.access_token).account_id == account.id

    # the old value cannot be replayed
    with pytest.raises(ServiceError) as exc:
        issuer.refresh(db, pair.refresh_token)
    assert exc.value.code is ErrorCode.INVALID_REFRESH
    assert db.query(AccountSession).count() == 1


def test_concurrent_refresh_rotates_once(issuer, app, db, account):
    pair = issuer.issue_session(db, account)
    barrier = threading.Barrier(8, timeout=10)

    def attempt(_):
        session = app.state.session_factory()
        try:
            barrier.wait()
            issuer.refresh(session, pair.refresh_token)
            return "ok"
        except ServiceError as exc:
            return exc.code.value
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(8)))
    assert outcomes.count("ok") == 1
    assert outcomes.count("INVALID_REFRESH") == 7
    assert db.query(AccountSession).count() == 1


def test_refresh_rejects_expired_session(issuer, db, account):
    pair = issuer.issue_session(db, account)
    sess = db.query(AccountSession).one()
    sess.expires_at = dt.datetime.utcnow() - dt.timedelta(seconds=1)
    db.commit()
    with pytest.raises(ServiceError) as exc:
        issuer.refresh(db, pair.refresh_token)
    assert exc.value.code is ErrorCode.INVALID_REFRESH


def test_refresh_rejects_unknown_token(issuer, db):
    with pytest.raises(ServiceError) as exc:
        issuer.refresh(db, "never-issued")
    assert exc.value.code is ErrorCode.INVALID_REFRESH


def test_revoke_is_idempotent(issuer, db, account):
    pair = issuer.issue_session(db, account)
    assert issuer.revoke(db, pair.refresh_token) == 1
    assert issuer.revoke(db, pair.refresh_token) == 0
    assert issuer.revoke(db, "never-issued") == 0


def test_list_and_purge_sessions(issuer, db, account):
    issuer.issue_session(db, account, ip="1.1.1.1")
    issuer.issue_session(db, account, ip="2.2.2.2")
    stale = db.query(AccountSession).filter(AccountSession.ip == "1.1.1.1").one()
    stale.expires_at = dt.datetime.utcnow() - dt.timedelta(days=1)
    db.commit()

    live = issuer.list_sessions(db, account.id)
    assert [s.ip for s in live] == ["2.2.2.2"]
    assert issuer.purge_expired(db) == 1
    assert db.query(AccountSession).count() == 1


def test_revoke_session_is_scoped_to_owner(issuer, db, account):
    issuer.issue_session(db, account)
    sess = db.query(AccountSession).one()
    assert issuer.revoke_session(db, account.id + 1, sess.id) == 0
    assert issuer.revoke_session(db, account.id, sess.id) == 1

import boto3
import pytest
from fastapi.testclient import TestClient

from vaultgate.config import Settings
from vaultgate.main import create_app
from vaultgate.models import File, Folder


class _DummyClient:
    def __init__(self):
        self.presigned = []

    def generate_presigned_url(self, ClientMethod, Params=None, ExpiresIn=3600, **kwargs):
        self.presigned.append((ClientMethod, Params or {}, ExpiresIn))
        params = Params or {}
        return f"https://s3.test/{params.get('Bucket')}/{params.get('Key')}?X-Amz-Expires={ExpiresIn}"

    def head_bucket(self, *args, **kwargs):
        return {}


DUMMY_S3 = _DummyClient()
boto3.client = lambda *args, **kwargs: DUMMY_S3


@pytest.fixture()
def s3_client():
    return DUMMY_S3


@pytest.fixture()
def settings(tmp_path):
    """Settings bound to an isolated SQLite database, with cheap argon2 parameters."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'vaultgate_test.db'}",
        jwt_secret="test-secret",
        argon2_memory_cost=1024,
        argon2_time_cost=1,
        argon2_parallelism=1,
        s3_bucket="test-bucket",
        frontend_url="https://vault.test",
    )


@pytest.fixture()
def app(settings):
    application = create_app(settings)
    try:
        yield application
    finally:
        application.state.engine.dispose()


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def db(app):
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def register(client):
    """Register an account over HTTP and return the response body."""

    def _register(email="alice@example.com", password="correct horse battery", name="Alice"):
        resp = client.post("/auth/register", json={"email": email, "password": password, "name": name})
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _register


@pytest.fixture()
def make_folder(db):
    def _make(owner_id, name="Holiday"):
        folder = Folder(owner_id=owner_id, name=name)
        db.add(folder)
        db.commit()
        return folder

    return _make


@pytest.fixture()
def make_file(db):
    def _make(owner_id, name="report.pdf", folder_id=None, size=1234, mime_type="application/pdf"):
        f = File(
            owner_id=owner_id,
            folder_id=folder_id,
            name=name,
            mime_type=mime_type,
            size=size,
            storage_key=f"{owner_id}/{name}",
        )
        db.add(f)
        db.commit()
        return f

    return _make

from __future__ import annotations
import datetime as dt
import logging
import os
from fastapi import FastAPI, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from .auth import AuthService
from .config import Settings, load_settings
from .db import build_engine, build_session_factory, ensure_tables
from .mfa import MfaManager
from .routers.auth import router as auth_router
from .routers.errors import install_exception_handlers
from .routers.sharing import router as sharing_router
from .s3 import ObjectStore
from .security import PasswordHasher
from .sharing import ShareLinkGate
from .tokens import TokenIssuer

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; every service gets its configuration from ``settings``.

    Serve with ``uvicorn --factory vaultgate.main:create_app``.
    """
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="vaultgate: accounts, MFA and gated share links")
    app.state.settings = settings

    engine = build_engine(settings.database_url)
    ensure_tables(engine)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)

    hasher = PasswordHasher(settings)
    tokens = TokenIssuer(settings)
    mfa = MfaManager(settings, hasher)
    store = ObjectStore(settings)
    app.state.token_issuer = tokens
    app.state.mfa_manager = mfa
    app.state.auth_service = AuthService(hasher, tokens, mfa)
    app.state.object_store = store
    app.state.share_gate = ShareLinkGate(settings, hasher, store)

    install_exception_handlers(app)
    app.include_router(auth_router)
    app.include_router(sharing_router)
    _add_health_routes(app)

    logger.info(f"{settings.app_name} started ({settings.environment})")
    return app


def _add_health_routes(app: FastAPI) -> None:
    @app.get("/ping")
    def ping():
        return {"status": "ok"}

    @app.get("/version")
    def version():
        """Return build/version information for the server."""
        return {
            "version": os.getenv("GIT_COMMIT", os.getenv("COMMIT", "unknown")),
            "build": os.getenv("BUILD_DATE", "unknown"),
        }

    @app.get("/healthz")
    def healthz(request: Request):
        """Run simple checks for the database and the object store."""
        try:
            with request.app.state.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            db_status = "ok"
        except SQLAlchemyError as e:
            db_status = f"error: {type(e).__name__}"
        s3_status = request.app.state.object_store.ping()
        server_time = int(dt.datetime.utcnow().timestamp() * 1_000_000)
        ok = db_status == "ok" and s3_status == "ok"
        return {
            "status": "ok" if ok else "error",
            "ok": ok,
            "db": db_status,
            "s3": s3_status,
            "serverTime": server_time,
        }


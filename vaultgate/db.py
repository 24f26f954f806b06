from __future__ import annotations
from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_conn, _record):
    # share_access_logs rows go with their link (ON DELETE CASCADE)
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args)
    if url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def ensure_tables(engine: Engine) -> None:
    # Import for side effects: registers every model on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db(request: Request):
    factory: sessionmaker = request.app.state.session_factory
    db: Session = factory()
    try:
        yield db
    finally:
        db.close()

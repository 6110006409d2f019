from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

_ENGINE: Engine | None = None
_ENGINE_URL: str | None = None
_SESSIONMAKER: sessionmaker | None = None

_SQLITE_FILE_PREFIX = "sqlite+pysqlite:///"


def _default_db_url() -> str:
    # Local-only default. Deployments set DATABASE_URL.
    return f"{_SQLITE_FILE_PREFIX}.local/tripdesk.db"


def _ensure_sqlite_parent(url: str) -> None:
    if not url.startswith(_SQLITE_FILE_PREFIX):
        return

    path = url[len(_SQLITE_FILE_PREFIX) :]
    if not path or path == ":memory:":
        return

    Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)


def get_engine() -> Engine:
    """Return a cached SQLAlchemy engine.

    The cache is keyed on DATABASE_URL so tests can point each run at its own sqlite file.
    """

    global _ENGINE, _ENGINE_URL, _SESSIONMAKER

    url = os.getenv("DATABASE_URL", _default_db_url())

    if _ENGINE is not None and _ENGINE_URL == url:
        return _ENGINE

    _ensure_sqlite_parent(url)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    _ENGINE = create_engine(url, future=True, connect_args=connect_args)
    _ENGINE_URL = url
    _SESSIONMAKER = sessionmaker(bind=_ENGINE, class_=Session, autocommit=False, autoflush=False)
    return _ENGINE


def db_session() -> Session:
    get_engine()  # builds _SESSIONMAKER on first use
    assert _SESSIONMAKER is not None
    return _SESSIONMAKER()

from __future__ import annotations

from collections.abc import Generator

from fastapi import Header, HTTPException
from services.api.app.db.database import db_session
from sqlalchemy.orm import Session

DEFAULT_SCOPE = "anonymous"


def get_db() -> Generator[Session, None, None]:
    db = db_session()
    try:
        yield db
    finally:
        db.close()


def get_scope(x_tripdesk_session: str | None = Header(default=None)) -> str:
    """Client session id that local state (snapshots, celebration guard) is scoped to."""

    scope = (x_tripdesk_session or "").strip()
    return scope or DEFAULT_SCOPE


def require_scope(x_tripdesk_session: str | None = Header(default=None)) -> str:
    """Like get_scope, but the booking flow has no shared default: the header must be set."""

    scope = (x_tripdesk_session or "").strip()
    if not scope:
        raise HTTPException(status_code=400, detail="X-Tripdesk-Session header is required")
    return scope

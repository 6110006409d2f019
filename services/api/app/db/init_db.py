from __future__ import annotations

import logging
import os

from services.api.app.db.database import get_engine
from services.api.app.db.models import Base

logger = logging.getLogger(__name__)


def init_db() -> None:
    if os.getenv("TRIPDESK_DB_AUTO_CREATE", "true").strip().lower() not in {"1", "true", "yes", "y"}:
        logger.debug("TRIPDESK_DB_AUTO_CREATE disabled; skipping create_all")
        return

    engine = get_engine()
    Base.metadata.create_all(bind=engine)

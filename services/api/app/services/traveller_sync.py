from __future__ import annotations

import logging
from datetime import datetime
from uuid import uuid4

from services.api.app.db.models import Traveller
from services.api.app.models.booking import SellDraftIn
from services.api.app.services.local_state import TRAVELLER_SYNC_KEY, LocalState
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _known_ids(state: LocalState, trace_id: str, offer_id: str) -> dict[str, str]:
    stored = state.get(TRAVELLER_SYNC_KEY) or {}
    # The record only applies to the offer it was written for.
    if stored.get("traceId") != trace_id or stored.get("offerId") != offer_id:
        return {}
    ids = stored.get("travellerIdsByPassenger") or {}
    return {str(k): str(v) for k, v in ids.items()}


def sync_travellers(db: Session, state: LocalState, draft: SellDraftIn) -> dict[int, str]:
    """Upsert one traveller row per passenger and remember which row belongs to which index.

    Repeated sells of the same trace/offer update the rows written the first time instead of
    creating duplicates.
    """

    known = _known_ids(state, draft.trace_id, draft.offer_id)
    now = datetime.utcnow()
    synced: dict[int, str] = {}

    for index, pax in enumerate(draft.passengers):
        traveller_id = known.get(str(index))
        row = db.get(Traveller, traveller_id) if traveller_id else None
        if row is None:
            row = Traveller(id=uuid4().hex, ptc=pax.ptc, given_name="", surname="", created_at=now)
            db.add(row)

        row.ptc = pax.ptc
        row.given_name = pax.given_name
        row.surname = pax.surname
        row.gender = pax.gender
        row.birthdate = pax.birthdate
        row.nationality = pax.nationality
        row.passport_number = pax.passport_number
        row.passport_expiry = pax.passport_expiry
        row.sell_count = (row.sell_count or 0) + 1
        row.updated_at = now
        synced[index] = row.id

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    state.put(
        TRAVELLER_SYNC_KEY,
        {
            "traceId": draft.trace_id,
            "offerId": draft.offer_id,
            "travellerIdsByPassenger": {str(i): tid for i, tid in synced.items()},
        },
    )
    logger.debug("synced %d traveller(s) for offer %s", len(synced), draft.offer_id)
    return synced

"""Special service request (SSR) filtering for the sell payload.

The supplier rejects the whole order when one SSR code is unknown, so codes are screened
before they go out. Rejections are returned to the caller with a reason and logged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

FALLBACK_SSR_CODES = frozenset({"WCHR", "VIP", "VVIP", "CIP", "MAAS", "FQTV"})
LOYALTY_SSR_CODE = "FQTV"

INVALID_FORMAT = "invalid_format"
UNKNOWN_CODE = "unknown_code"
MISSING_ACCOUNT_NUMBER = "missing_account_number"
NON_NUMERIC_ACCOUNT_NUMBER = "non_numeric_account_number"

_SSR_CODE_RE = re.compile(r"^[A-Z0-9]{3,5}$")


@dataclass(frozen=True, slots=True)
class SsrSelection:
    code: str
    remark: str | None = None
    account_number: str | None = None


@dataclass(frozen=True, slots=True)
class RejectedSsr:
    code: str
    reason: str


@dataclass(frozen=True, slots=True)
class SsrFilterResult:
    accepted: list[dict[str, Any]] = field(default_factory=list)
    rejected: list[RejectedSsr] = field(default_factory=list)


def filter_ssr(
    selections: Iterable[SsrSelection],
    *,
    offer_codes: Iterable[str] = (),
    airline_code: str | None = None,
) -> SsrFilterResult:
    known_by_offer = {c.strip().upper() for c in offer_codes if isinstance(c, str) and c.strip()}

    accepted: list[dict[str, Any]] = []
    rejected: list[RejectedSsr] = []

    for selection in selections:
        code = (selection.code or "").strip().upper()
        reason = _rejection_reason(code, selection, known_by_offer)
        if reason is not None:
            logger.warning("dropping SSR %r from sell payload: %s", selection.code, reason)
            rejected.append(RejectedSsr(code=selection.code, reason=reason))
            continue

        if code == LOYALTY_SSR_CODE:
            accepted.append(
                {
                    "ssrRemark": None,
                    "ssrCode": code,
                    "loyaltyProgramAccount": {
                        "airlineDesigCode": airline_code or "",
                        "accountNumber": (selection.account_number or "").strip(),
                    },
                }
            )
        else:
            accepted.append({"ssrRemark": selection.remark or None, "ssrCode": code})

    return SsrFilterResult(accepted=accepted, rejected=rejected)


def _rejection_reason(code: str, selection: SsrSelection, known_by_offer: set[str]) -> str | None:
    if not _SSR_CODE_RE.match(code):
        return INVALID_FORMAT
    if code not in known_by_offer and code not in FALLBACK_SSR_CODES:
        return UNKNOWN_CODE
    if code == LOYALTY_SSR_CODE:
        account = (selection.account_number or "").strip()
        if not account:
            return MISSING_ACCOUNT_NUMBER
        if not (account.isascii() and account.isdigit()):
            return NON_NUMERIC_ACCOUNT_NUMBER
    return None

import pytest
from services.api.app.services.ssr import (
    INVALID_FORMAT,
    MISSING_ACCOUNT_NUMBER,
    NON_NUMERIC_ACCOUNT_NUMBER,
    UNKNOWN_CODE,
    SsrSelection,
    filter_ssr,
)


def test_fallback_code_is_accepted_without_offer_list() -> None:
    result = filter_ssr([SsrSelection("wchr", remark="aisle")])

    assert result.accepted == [{"ssrRemark": "aisle", "ssrCode": "WCHR"}]
    assert result.rejected == []


def test_offer_code_is_accepted() -> None:
    result = filter_ssr([SsrSelection("BLND")], offer_codes=["BLND", "DEAF"])

    assert result.accepted == [{"ssrRemark": None, "ssrCode": "BLND"}]


def test_fqtv_with_numeric_account_builds_loyalty_entry() -> None:
    result = filter_ssr([SsrSelection("FQTV", account_number=" 123456 ")], airline_code="BG")

    assert result.accepted == [
        {
            "ssrRemark": None,
            "ssrCode": "FQTV",
            "loyaltyProgramAccount": {"airlineDesigCode": "BG", "accountNumber": "123456"},
        }
    ]


@pytest.mark.parametrize(
    ("selection", "reason"),
    [
        (SsrSelection("FQTV", account_number="ABC123"), NON_NUMERIC_ACCOUNT_NUMBER),
        (SsrSelection("FQTV", account_number="١٢٣"), NON_NUMERIC_ACCOUNT_NUMBER),
        (SsrSelection("FQTV"), MISSING_ACCOUNT_NUMBER),
        (SsrSelection("XYZ123456"), INVALID_FORMAT),
        (SsrSelection("W-CH"), INVALID_FORMAT),
        (SsrSelection("ZZZZ"), UNKNOWN_CODE),
    ],
)
def test_rejected_selections(selection: SsrSelection, reason: str) -> None:
    result = filter_ssr([selection], offer_codes=["BLND"], airline_code="BG")

    assert result.accepted == []
    assert [(r.code, r.reason) for r in result.rejected] == [(selection.code, reason)]


def test_mixed_selections_keep_valid_codes() -> None:
    result = filter_ssr(
        [SsrSelection("WCHR"), SsrSelection("XYZ123456"), SsrSelection("VIP")],
    )

    assert [a["ssrCode"] for a in result.accepted] == ["WCHR", "VIP"]
    assert [r.code for r in result.rejected] == ["XYZ123456"]

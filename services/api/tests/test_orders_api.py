from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient
from services.api.app.services.order_api_mock import mock_supplier


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    db_path = tmp_path / "tripdesk_orders.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("TRIPDESK_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("TRIPDESK_ORDER_API", "mock")
    monkeypatch.setenv("TRIPDESK_CONFIRM_DWELL_MS", "0")
    monkeypatch.setenv("TRIPDESK_CONFIRM_SUCCESS_CLOSE_MS", "0")
    monkeypatch.setenv("TRIPDESK_INSTANT_ISSUE_POLL_S", "3600")
    monkeypatch.delenv("TRIPDESK_MOCK_RESHOP_DRIFT", raising=False)
    mock_supplier.reset()

    from services.api.app.main import app

    with TestClient(app) as c:
        yield c
    mock_supplier.reset()


def _seed(
    status: str = "OnHold",
    *,
    hours: float | None = 24,
    fare_type: str = "Regular",
    total: float = 10000,
    settle_after: int | None = None,
) -> str:
    limit = None
    if hours is not None:
        limit = (datetime.now(timezone.utc) + timedelta(hours=hours)).replace(microsecond=0).isoformat()
    return mock_supplier.seed_order(
        {
            "orderStatus": status,
            "paymentTimeLimit": limit,
            "orderItem": [
                {"fareType": fare_type, "price": {"totalPayable": {"total": total, "curreny": "BDT"}}}
            ],
        },
        settle_after_retrieves=settle_after,
    )


def _action(card: dict, action_type: str) -> dict | None:
    return next((a for a in card["actions"] if a["type"] == action_type), None)


def _event_types(client: TestClient, ref: str) -> list[str]:
    resp = client.get(f"/v1/orders/{ref}/events")
    assert resp.status_code == 200
    return [e["event_type"] for e in resp.json()]


def test_on_hold_order_card(client: TestClient) -> None:
    ref = _seed()

    resp = client.get(f"/v1/orders/{ref}")
    assert resp.status_code == 200

    card = resp.json()
    assert card["order_status"] == "OnHold"
    assert card["effective_status"] == "OnHold"
    assert card["badge"] == {"label": "On Hold", "color": "#F59E0B"}
    assert card["payment_status"] == "Unpaid"
    assert card["source"] == "remote"
    assert card["snapshot_version"] == 1
    assert card["total"] == 10000
    assert card["currency"] == "BDT"
    assert _action(card, "CONFIRM")["enabled"] is True
    assert _action(card, "CANCEL")["enabled"] is True
    assert [b["type"] for b in card["banners"]] == ["PAYMENT_DEADLINE"]
    assert "ORDER_RETRIEVED" in _event_types(client, ref)


def test_expired_hold_displays_expired_and_cannot_confirm(client: TestClient) -> None:
    ref = _seed(hours=-1)

    card = client.get(f"/v1/orders/{ref}").json()

    assert card["order_status"] == "OnHold"
    assert card["effective_status"] == "Expired"
    assert card["badge"]["label"] == "Expired"
    assert _action(card, "CONFIRM") is None
    assert card["banners"][0]["message"] == "Booking time limit has expired."

    resp = client.post(f"/v1/orders/{ref}/confirmation")
    assert resp.status_code == 409
    assert mock_supplier.get(ref)["orderStatus"] == "OnHold"


def test_unknown_order_returns_404(client: TestClient) -> None:
    resp = client.get("/v1/orders/TDMISSING")

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Order not found"


def test_failed_retrieve_falls_back_to_snapshot(client: TestClient) -> None:
    ref = _seed()
    assert client.get(f"/v1/orders/{ref}").status_code == 200

    mock_supplier.reset()
    card = client.get(f"/v1/orders/{ref}").json()

    assert card["source"] == "snapshot"
    assert card["order_reference"] == ref
    assert card["warnings"] == ["Order not found"]
    assert card["polling"] is False


def test_snapshots_are_scoped_per_client_session(client: TestClient) -> None:
    ref = _seed()

    first = client.get(f"/v1/orders/{ref}", headers={"X-Tripdesk-Session": "a"}).json()
    again = client.get(f"/v1/orders/{ref}", headers={"X-Tripdesk-Session": "a"}).json()
    other = client.get(f"/v1/orders/{ref}", headers={"X-Tripdesk-Session": "b"}).json()

    assert first["snapshot_version"] == 1
    assert again["snapshot_version"] == 2
    assert other["snapshot_version"] == 1


def test_celebration_is_claimed_once(client: TestClient) -> None:
    ref = _seed()

    first = client.get(f"/v1/orders/{ref}", params={"just_created": True}).json()
    second = client.get(f"/v1/orders/{ref}", params={"just_created": True}).json()
    plain = client.get(f"/v1/orders/{ref}").json()

    assert first["celebrate"] is True
    assert second["celebrate"] is False
    assert plain["celebrate"] is False


def test_confirm_with_unchanged_fare(client: TestClient) -> None:
    ref = _seed()

    resp = client.post(f"/v1/orders/{ref}/confirmation")
    assert resp.status_code == 200

    view = resp.json()
    assert view["open"] is False
    assert view["step"] is None
    assert view["trail"] == ["preparing", "revalidating", "confirming", "finalizing", "success"]
    assert mock_supplier.get(ref)["orderStatus"] == "Confirmed"

    assert client.get(f"/v1/orders/{ref}/confirmation").status_code == 404
    assert "CONFIRMATION_STEP" in _event_types(client, ref)

    card = client.get(f"/v1/orders/{ref}").json()
    assert card["badge"]["label"] == "Confirmed"
    assert card["payment_status"] == "Paid"
    assert _action(card, "CONFIRM") is None


def test_changed_fare_then_accept(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRIPDESK_MOCK_RESHOP_DRIFT", "200")
    ref = _seed()

    view = client.post(f"/v1/orders/{ref}/confirmation").json()

    assert view["step"] == "fareUpdateRequired"
    assert view["open"] is True
    assert view["fare_comparison"]["previous_total"] == 10000
    assert view["fare_comparison"]["latest_total"] == 10200
    assert view["fare_comparison"]["difference_label"] == "+200"
    assert mock_supplier.get(ref)["orderStatus"] == "OnHold"

    # A second start returns the open session instead of reshopping again.
    assert client.post(f"/v1/orders/{ref}/confirmation").json()["step"] == "fareUpdateRequired"
    assert client.get(f"/v1/orders/{ref}/confirmation").json()["step"] == "fareUpdateRequired"

    card = client.get(f"/v1/orders/{ref}").json()
    assert _action(card, "CONFIRM")["enabled"] is False

    accepted = client.post(f"/v1/orders/{ref}/confirmation/accept").json()

    assert accepted["open"] is False
    assert "success" in accepted["trail"]
    stored = mock_supplier.get(ref)
    assert stored["orderStatus"] == "Confirmed"
    assert stored["orderItem"][0]["price"]["totalPayable"]["total"] == 10200


def test_changed_fare_then_decline_keeps_repriced_snapshot(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TRIPDESK_MOCK_RESHOP_DRIFT", "200")
    ref = _seed()
    client.post(f"/v1/orders/{ref}/confirmation")

    declined = client.post(f"/v1/orders/{ref}/confirmation/decline").json()

    assert declined["open"] is False
    assert mock_supplier.get(ref)["orderStatus"] == "OnHold"
    assert "FARE_UPDATE_DECLINED" in _event_types(client, ref)

    mock_supplier.reset()
    card = client.get(f"/v1/orders/{ref}").json()

    assert card["source"] == "snapshot"
    assert card["total"] == 10200
    assert "SNAPSHOT_UNCONFIRMED" in [b["type"] for b in card["banners"]]


def test_accept_requires_open_confirmation(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRIPDESK_MOCK_RESHOP_DRIFT", "200")
    ref = _seed()

    assert client.post(f"/v1/orders/{ref}/confirmation/accept").status_code == 404

    client.post(f"/v1/orders/{ref}/confirmation")
    closed = client.delete(f"/v1/orders/{ref}/confirmation").json()
    assert closed["open"] is False

    assert client.post(f"/v1/orders/{ref}/confirmation/accept").status_code == 404


def test_cancel_on_hold_order(client: TestClient) -> None:
    ref = _seed()

    resp = client.post(f"/v1/orders/{ref}/cancel")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": None}
    assert mock_supplier.get(ref)["orderStatus"] == "Cancelled"
    assert "ORDER_CANCELLED" in _event_types(client, ref)

    again = client.post(f"/v1/orders/{ref}/cancel")
    assert again.status_code == 409


def test_instant_issue_order_polls_until_confirmed(client: TestClient) -> None:
    ref = _seed("InProgress", hours=None, fare_type="Web", settle_after=1)

    card = client.get(f"/v1/orders/{ref}").json()

    assert card["badge"]["label"] == "In Progress"
    assert card["payment_status"] == "Processing"
    assert card["polling"] is True
    issuing = card["banners"][0]
    assert issuing["type"] == "INSTANT_ISSUING"
    assert "every 3600 seconds" in issuing["message"]

    refreshed = client.post(f"/v1/orders/{ref}/refresh").json()

    assert refreshed["effective_status"] == "Confirmed"
    assert refreshed["polling"] is False
    assert [b["type"] for b in refreshed["banners"]] == ["INSTANT_ISSUED"]


def test_instant_issue_failure_banner(client: TestClient) -> None:
    ref = _seed("UnConfirmed", hours=None, fare_type="Web")

    card = client.get(f"/v1/orders/{ref}").json()

    assert card["badge"] == {"label": "Un-Confirmed", "color": "#F97316"}
    assert card["banners"][0]["type"] == "INSTANT_ISSUE_FAILED"
    assert ref in card["banners"][0]["message"]
    assert card["polling"] is False


def test_unknown_order_api_mode_is_a_server_error(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRIPDESK_ORDER_API", "soap")

    resp = client.get("/v1/orders/TD1")

    assert resp.status_code == 500


def test_viewing_an_order_records_it_in_booking_history(client: TestClient) -> None:
    ref = _seed()

    client.get(f"/v1/orders/{ref}")
    client.get(f"/v1/orders/{ref}")

    [booking] = client.get("/v1/bookings").json()
    assert booking["reference_no"] == ref
    assert booking["status"] == "on-hold"
    assert booking["created_by"] == "Guest"
    assert _event_types(client, ref).count("BOOKING_SAVED") == 1


def test_booking_history_failure_does_not_fail_the_order_view(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    from services.api.app.routers import orders as orders_router

    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(orders_router, "ensure_booking", broken)
    ref = _seed()

    resp = client.get(f"/v1/orders/{ref}")

    assert resp.status_code == 200
    assert resp.json()["order_reference"] == ref
    events = _event_types(client, ref)
    assert "BOOKING_SAVE_FAILED" in events
    assert "ORDER_RETRIEVED" in events
    assert client.get("/v1/bookings").json() == []


def test_malformed_order_response_is_treated_as_not_found(client: TestClient) -> None:
    ref = mock_supplier.seed_order({"orderStatus": "OnHold", "orderItem": "bad"})

    resp = client.get(f"/v1/orders/{ref}")

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Failed to load order"


def test_overlapping_confirmation_requests_share_one_session(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TRIPDESK_CONFIRM_DWELL_MS", "50")
    monkeypatch.setenv("TRIPDESK_MOCK_RESHOP_DRIFT", "200")
    ref = _seed()

    from services.api.app.main import app

    async def overlap() -> list[httpx.Response]:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
            return await asyncio.gather(
                ac.post(f"/v1/orders/{ref}/confirmation"),
                ac.post(f"/v1/orders/{ref}/confirmation"),
            )

    first, second = asyncio.run(overlap())

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["order_reference"] == second.json()["order_reference"] == ref
    assert client.get(f"/v1/orders/{ref}/confirmation").json()["step"] == "fareUpdateRequired"

    events = client.get(f"/v1/orders/{ref}/events").json()
    starts = [
        e for e in events if e["event_type"] == "CONFIRMATION_STEP" and e["payload"]["trigger"] == "start"
    ]
    assert len(starts) == 1

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from services.api.app.services.order_api_mock import mock_supplier


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    db_path = tmp_path / "tripdesk_booking.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("TRIPDESK_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("TRIPDESK_ORDER_API", "mock")
    monkeypatch.setenv("TRIPDESK_INSTANT_ISSUE_POLL_S", "3600")
    monkeypatch.delenv("TRIPDESK_MOCK_SELL_DRIFT", raising=False)
    mock_supplier.reset()

    from services.api.app.main import app

    with TestClient(app) as c:
        c.headers["X-Tripdesk-Session"] = "test-client"
        yield c
    mock_supplier.reset()


def _draft(offer_id: str = "OF1", **overrides) -> dict:
    draft = {
        "trace_id": "trace-1",
        "offer_id": offer_id,
        "expected_total": 5000,
        "currency": "BDT",
        "operating_carrier": "BG",
        "contact": {"email": "john@example.com", "phone_number": "1711000000"},
        "passengers": [
            {
                "ptc": "ADT",
                "given_name": "John",
                "surname": "Doe",
                "gender": "Male",
                "ssr": [{"code": "WCHR"}, {"code": "FQTV", "account_number": "AB12"}],
            }
        ],
        "created_by": "agent-7",
    }
    draft.update(overrides)
    return draft


def _bookings(client: TestClient) -> list[dict]:
    resp = client.get("/v1/bookings")
    assert resp.status_code == 200
    return resp.json()


def test_submit_creates_order_and_records_booking(client: TestClient) -> None:
    resp = client.post("/v1/booking/submit", json=_draft())
    assert resp.status_code == 200

    outcome = resp.json()
    assert outcome["status"] == "created"
    assert outcome["just_created"] is True
    assert outcome["rejected_ssr"] == [
        {"passenger_index": 0, "code": "FQTV", "reason": "non_numeric_account_number"}
    ]

    ref = outcome["order_reference"]
    assert mock_supplier.get(ref)["orderStatus"] == "OnHold"

    [booking] = _bookings(client)
    assert booking["reference_no"] == ref
    assert booking["status"] == "on-hold"
    assert booking["name"] == "JOHN DOE"
    assert booking["route"] == "DAC-CXB"
    assert booking["airline"] == "BG"
    assert booking["passenger_type"] == "Adult 1"
    assert booking["fare"] == 5000
    assert booking["created_by"] == "agent-7"
    assert booking["pnr"]

    card = client.get(f"/v1/orders/{ref}", params={"just_created": True}).json()
    assert card["celebrate"] is True
    assert card["created_on"] is not None

    # Viewing the order re-records it without taking over the creator.
    [booking] = _bookings(client)
    assert booking["created_by"] == "agent-7"


def test_web_offer_books_instant_issue(client: TestClient) -> None:
    outcome = client.post("/v1/booking/submit", json=_draft(offer_id="WEB-1")).json()

    assert outcome["status"] == "created"
    [booking] = _bookings(client)
    assert booking["status"] == "in-progress"


def test_price_change_then_accept(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRIPDESK_MOCK_SELL_DRIFT", "300")

    outcome = client.post("/v1/booking/submit", json=_draft()).json()

    assert outcome["status"] == "priceChanged"
    assert outcome["fare_comparison"]["difference"] == 300
    assert outcome["fare_comparison"]["difference_label"] == "+300"
    assert _bookings(client) == []

    accepted = client.post("/v1/booking/accept-price")
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "created"
    assert len(_bookings(client)) == 1


def test_price_change_then_decline(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRIPDESK_MOCK_SELL_DRIFT", "300")
    client.post("/v1/booking/submit", json=_draft())

    declined = client.post("/v1/booking/decline-price")
    assert declined.status_code == 200
    assert declined.json()["status"] == "aborted"

    assert client.post("/v1/booking/accept-price").status_code == 409
    assert _bookings(client) == []


def test_price_decisions_are_scoped_per_client_session(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TRIPDESK_MOCK_SELL_DRIFT", "300")
    client.post("/v1/booking/submit", json=_draft(), headers={"X-Tripdesk-Session": "a"})

    other = client.post("/v1/booking/accept-price", headers={"X-Tripdesk-Session": "b"})

    assert other.status_code == 409


def test_submit_without_contact_fails(client: TestClient) -> None:
    outcome = client.post("/v1/booking/submit", json=_draft(contact={})).json()

    assert outcome["status"] == "failed"
    assert outcome["message"] == "Please provide contact email and phone number"


def test_submit_requires_passengers(client: TestClient) -> None:
    resp = client.post("/v1/booking/submit", json=_draft(passengers=[]))

    assert resp.status_code == 422


def test_save_booking_by_reference_keeps_creator(client: TestClient) -> None:
    ref = client.post("/v1/booking/submit", json=_draft()).json()["order_reference"]
    mock_supplier.set_status(ref, "Confirmed")

    resp = client.post("/v1/bookings", json={"order_reference": ref})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "reference_no": ref}
    [booking] = _bookings(client)
    assert booking["status"] == "confirmed"
    assert booking["created_by"] == "agent-7"


def test_save_booking_from_order_response(client: TestClient) -> None:
    order_response = {
        "success": True,
        "respondedOn": "2030-01-01T10:00:00+00:00",
        "response": {
            "orderReference": "TDRICH01",
            "orderStatus": "OnHold",
            "paxList": [
                {"ptc": "ADT", "individual": {"givenName": "Ann", "surname": "Lee"}},
                {"ptc": "CHD", "individual": {"givenName": "Bo", "surname": "Lee"}},
            ],
            "orderItem": [{"price": {"totalPayable": {"total": 7000, "curreny": "BDT"}}}],
        },
    }

    resp = client.post("/v1/bookings", json={"order_response": order_response})

    assert resp.status_code == 200
    [booking] = _bookings(client)
    assert booking["reference_no"] == "TDRICH01"
    assert booking["name"] == "ANN LEE (+1)"
    assert booking["passenger_type"] == "Adult 1+Child 1"
    assert booking["fly_date"] == "2030-01-01"
    assert booking["created_by"] == "Guest"


def test_save_booking_unknown_reference(client: TestClient) -> None:
    resp = client.post("/v1/bookings", json={"order_reference": "TDNOPE"})

    assert resp.status_code == 400
    assert "Order not found" in resp.json()["detail"]


def test_save_booking_requires_input(client: TestClient) -> None:
    resp = client.post("/v1/bookings", json={})

    assert resp.status_code == 400


def test_booking_flow_requires_client_session(client: TestClient) -> None:
    resp = client.post("/v1/booking/submit", json=_draft(), headers={"X-Tripdesk-Session": ""})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "X-Tripdesk-Session header is required"
    assert client.post("/v1/booking/decline-price", headers={"X-Tripdesk-Session": ""}).status_code == 400
    assert _bookings(client) == []


def test_save_booking_accepts_camel_case_reference(client: TestClient) -> None:
    ref = client.post("/v1/booking/submit", json=_draft()).json()["order_reference"]

    resp = client.post("/v1/bookings", json={"orderReference": ref})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "reference_no": ref}
    [booking] = _bookings(client)
    assert booking["created_by"] == "agent-7"


def test_save_booking_accepts_camel_case_order_response(client: TestClient) -> None:
    body = {
        "orderResponse": {
            "respondedOn": "2030-02-01T08:00:00+00:00",
            "response": {
                "orderReference": "TDCAMEL1",
                "orderStatus": "Confirmed",
                "paxList": [{"ptc": "ADT", "individual": {"givenName": "Ann", "surname": "Lee"}}],
                "orderItem": [{"price": {"totalPayable": {"total": 4200, "curreny": "BDT"}}}],
            },
        },
        "createdBy": "desk@example.com",
    }

    resp = client.post("/v1/bookings", json=body)

    assert resp.status_code == 200
    [booking] = _bookings(client)
    assert booking["reference_no"] == "TDCAMEL1"
    assert booking["status"] == "confirmed"
    assert booking["fare"] == 4200
    assert booking["created_by"] == "desk@example.com"

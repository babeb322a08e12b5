"""
HTTP-level tests for the box office API.
Covers booking, conflicts, cancellation, customers, reporting and error mapping.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

MISSING_ID = "00000000-0000-0000-0000-000000000000"


def book(client, show_id, seats, who="alice", **extra):
    return client.post(f"/shows/{show_id}/book",
                       json={"seat_codes": seats, "booked_by": who, **extra})


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "healthy"


def test_create_layout_and_show(client):
    layout = client.post("/layouts", json={
        "name": "Main Hall",
        "structure": {"sections": [{"name": "East", "rows": 2, "seatsPerRow": 4, "price": 150}]},
    })
    assert layout.status_code == 201
    layout_id = layout.get_json()["id"]
    assert client.get(f"/layouts/{layout_id}").get_json()["seat_codes"][:2] == ["EA1", "EA2"]

    show = client.post("/shows", json={
        "title": "Kalari Evening", "date": "2025-03-01", "time": "18:30",
        "price": 300, "layout_id": layout_id,
    })
    assert show.status_code == 201
    body = show.get_json()
    assert body["status"] == "ACTIVE"
    assert body["time"] == "18:30"

    listed = client.get("/shows?status=active").get_json()
    assert [s["id"] for s in listed] == [body["id"]]


@pytest.mark.parametrize("payload, message", [
    ({"title": "X", "date": "10/01/2025", "time": "19:00", "price": 10}, "date must be"),
    ({"title": "X", "date": "2025-01-10", "time": "19:00", "price": True}, "price must be"),
    ({"title": "X", "date": "2025-01-10", "time": "19:00", "price": 0}, "greater than 0"),
    ({"title": "", "date": "2025-01-10", "time": "19:00", "price": 10}, "title"),
])
def test_create_show_validation(client, payload, message):
    resp = client.post("/shows", json=payload)
    assert resp.status_code == 400
    assert message in resp.get_json()["error"]


def test_create_show_with_unknown_layout(client):
    resp = client.post("/shows", json={
        "title": "X", "date": "2025-01-10", "time": "19:00", "price": 10, "layout_id": MISSING_ID,
    })
    assert resp.status_code == 404


def test_booking_scenario_over_http(client, show):
    first = book(client, show["id"], ["NA1", "NA2"], "alice")
    assert first.status_code == 201
    body = first.get_json()
    assert body["success"] is True
    assert body["booking_count"] == 2
    assert [t["ticket_code"] for t in body["tickets"]] == [
        "TKT-20250110-0001-NA1", "TKT-20250110-0002-NA2"]

    clash = book(client, show["id"], ["NA2", "NA3"], "bob")
    assert clash.status_code == 409
    assert clash.get_json() == {"success": False, "conflicts": ["NA2"]}

    third = book(client, show["id"], ["NA3"], "bob")
    assert third.get_json()["tickets"][0]["ticket_code"] == "TKT-20250110-0003-NA3"

    cancel = client.post(f"/bookings/{body['booking_id']}/cancel",
                         json={"reason": "changed plans", "cancelled_by": "admin"})
    assert cancel.status_code == 200
    assert cancel.get_json()["status"] == "CANCELLED"

    rebook = book(client, show["id"], ["NA1"], "carol")
    assert rebook.status_code == 201
    assert rebook.get_json()["tickets"][0]["ticket_code"] == "TKT-20250110-0004-NA1"


def test_seat_status(client, show):
    book(client, show["id"], ["NA2"])
    status = client.get(f"/shows/{show['id']}/seats").get_json()

    assert status["total_seats"] == 3
    assert status["booked_seats"] == 1
    assert status["available_seats"] == 2
    assert {s["seat_code"]: s["status"] for s in status["seats"]} == {
        "NA1": "available", "NA2": "booked", "NA3": "available"}


@pytest.mark.parametrize("payload", [
    {"seat_codes": [], "booked_by": "alice"},
    {"seat_codes": "NA1", "booked_by": "alice"},
    {"seat_codes": ["NA1", "NA1"], "booked_by": "alice"},
    {"seat_codes": ["NA1", 7], "booked_by": "alice"},
    {"seat_codes": ["NA1"]},
    {"seat_codes": ["NA1"], "booked_by": "alice", "request_id": 12},
])
def test_invalid_booking_requests(client, show, payload):
    resp = client.post(f"/shows/{show['id']}/book", json=payload)
    assert resp.status_code == 400


def test_non_json_body_is_rejected(client, show):
    resp = client.post(f"/shows/{show['id']}/book", data="NA1")
    assert resp.status_code == 400


def test_unknown_seat_codes(client, show):
    resp = book(client, show["id"], ["NA1", "XZ1"])
    assert resp.status_code == 400
    assert resp.get_json()["details"] == {"unknown_seat_codes": ["XZ1"]}


def test_booking_unknown_show(client):
    assert book(client, MISSING_ID, ["NA1"]).status_code == 404
    assert client.get(f"/shows/{MISSING_ID}").status_code == 404


def test_idempotent_retry_with_header(client, show):
    headers = {"X-Idempotency-Key": "retry-42"}
    first = client.post(f"/shows/{show['id']}/book",
                        json={"seat_codes": ["NA1"], "booked_by": "alice"}, headers=headers)
    second = client.post(f"/shows/{show['id']}/book",
                         json={"seat_codes": ["NA1"], "booked_by": "alice"}, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.get_json() == first.get_json()


def test_idempotency_key_reused_for_other_seats(client, show):
    headers = {"X-Idempotency-Key": "retry-42"}
    client.post(f"/shows/{show['id']}/book",
                json={"seat_codes": ["NA1"], "booked_by": "alice"}, headers=headers)
    reused = client.post(f"/shows/{show['id']}/book",
                         json={"seat_codes": ["NA2"], "booked_by": "alice"}, headers=headers)

    assert reused.status_code == 409
    assert "request id" in reused.get_json()["error"]


def test_cancel_twice_and_missing(client, show):
    booking_id = book(client, show["id"], ["NA1"]).get_json()["booking_id"]
    assert client.post(f"/bookings/{booking_id}/cancel").status_code == 200
    assert client.post(f"/bookings/{booking_id}/cancel").status_code == 409
    assert client.post(f"/bookings/{MISSING_ID}/cancel").status_code == 404


def test_booking_timeout_maps_to_503(client, db, show):
    db.locks.timeout = 0.05
    with db.locks.hold(f"show:{show['id']}"):
        resp = book(client, show["id"], ["NA1"])
    assert resp.status_code == 503


def test_concurrent_http_bookings(client, big_show):
    def attempt(n):
        # One client per thread; test clients are not shared across threads
        thread_client = client.application.test_client()
        return book(thread_client, big_show["id"], ["NA1", f"NB{n}"], f"user{n}").status_code

    with ThreadPoolExecutor(max_workers=5) as executor:
        codes = list(executor.map(attempt, range(1, 6)))

    assert sorted(codes) == [201, 409, 409, 409, 409]


def test_customers_and_bookings(client, show):
    created = client.post("/customers", json={
        "name": "Jane Smith", "email": "jane.smith@example.com", "phone": "+91-9876543211",
    })
    assert created.status_code == 201
    customer_id = created.get_json()["id"]

    booking = book(client, show["id"], ["NA3"], customer_id=customer_id).get_json()
    detail = client.get(f"/customers/{customer_id}").get_json()
    assert [b["id"] for b in detail["bookings"]] == [booking["booking_id"]]

    updated = client.put(f"/customers/{customer_id}", json={"phone": "+91-0000000000"})
    assert updated.get_json()["phone"] == "+91-0000000000"
    assert client.put(f"/customers/{customer_id}", json={"age": 3}).status_code == 400

    assert client.get("/customers?search=jane").get_json()[0]["id"] == customer_id

    assert client.delete(f"/customers/{customer_id}").status_code == 200
    assert client.get(f"/customers/{customer_id}").status_code == 404
    kept = client.get(f"/bookings/{booking['booking_id']}").get_json()
    assert kept["customer_id"] is None
    assert kept["status"] == "CONFIRMED"


def test_booking_for_unknown_customer(client, show):
    assert book(client, show["id"], ["NA1"], customer_id=MISSING_ID).status_code == 404


def test_show_report(client, show):
    book(client, show["id"], ["NA1", "NA2"])
    cancelled = book(client, show["id"], ["NA3"], "bob").get_json()["booking_id"]
    client.post(f"/bookings/{cancelled}/cancel")

    report = client.get(f"/shows/{show['id']}/report").get_json()
    assert report["capacity"] == 3
    assert report["booked_seats"] == 2
    assert report["occupancy_percent"] == 66.7
    assert report["confirmed_bookings"] == 1
    assert report["tickets"] == {"ACTIVE": 2, "COMPLETED": 0, "REVOKED": 1}
    assert report["revenue"] == 500.0


def test_list_bookings_by_show(client, show, big_show):
    book(client, show["id"], ["NA1"])
    book(client, big_show["id"], ["NA1"])
    listed = client.get(f"/bookings?show_id={show['id']}").get_json()
    assert len(listed) == 1
    assert listed[0]["show_id"] == show["id"]


def test_refresh_status_endpoint(client, show):
    # The fixture show is in the past, so one pass finishes it
    resp = client.post("/shows/refresh-status")
    assert resp.get_json()["transitions"] == [
        {"show_id": show["id"], "from": "ACTIVE", "to": "SHOW_DONE"}]
    assert book(client, show["id"], ["NA1"]).status_code == 404


def test_activity_log(client, show):
    book(client, show["id"], ["NA1"], "alice")
    logs = client.get("/logs?limit=10").get_json()
    booking_entry = next(entry for entry in logs if entry["action"] == "BOOKING")
    assert booking_entry["performed_by"] == "alice"
    assert booking_entry["details"]["ticket_codes"] == ["TKT-20250110-0001-NA1"]

    assert client.get("/logs?limit=abc").status_code == 400


def test_ticket_lookup(client, show):
    booking_id = book(client, show["id"], ["NA1", "NA2"], "alice").get_json()["booking_id"]

    ticket = client.get("/tickets/TKT-20250110-0002-NA2")
    assert ticket.status_code == 200
    assert ticket.get_json()["booking_id"] == booking_id
    assert ticket.get_json()["status"] == "ACTIVE"
    assert client.get("/tickets/TKT-20250110-0009-NA2").status_code == 404

    found = client.get("/tickets?search=kalari&status=active").get_json()
    assert [t["ticket_code"] for t in found] == [
        "TKT-20250110-0001-NA1", "TKT-20250110-0002-NA2"]
    assert client.get("/tickets?status=lost").status_code == 400


def test_cancelling_after_the_show_is_rejected(client, show):
    booking_id = book(client, show["id"], ["NA1"]).get_json()["booking_id"]
    client.post("/shows/refresh-status")

    resp = client.post(f"/bookings/{booking_id}/cancel")
    assert resp.status_code == 409
    assert client.get(f"/bookings/{booking_id}").get_json()["status"] == "CONFIRMED"

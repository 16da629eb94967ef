from datetime import date

import pytest

from mentorslots.models import Account, TicketGrant

SLOT_DAY = date(2024, 3, 1)


@pytest.fixture
def admin(make_account):
    return make_account("admin", name="Admin")


@pytest.fixture
def teacher(make_account):
    return make_account("teacher", name="Lee")


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_invalid_token_is_rejected(client):
    response = client.get("/slots", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_generate_then_list_slots(client, admin, teacher, auth_headers):
    payload = {"date": "2024-03-01", "teacherId": teacher.id, "sessionOnly": "am"}
    response = client.post("/slots/generate", json=payload, headers=auth_headers(admin))
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["slotsCreated"] == 36
    assert body["teacher"] == "Lee"

    again = client.post("/slots/generate", json=payload, headers=auth_headers(admin)).json()
    assert again["duplicate"] is True
    assert again["slotsCreated"] is None

    slots = client.get(
        "/slots", params={"date": "2024-03-01", "teacherId": teacher.id}, headers=auth_headers(admin)
    ).json()
    assert len(slots) == 36
    assert slots[0]["timeSlot"] == "10:00"
    assert slots[0]["isBreak"] is False


def test_malformed_time_label_is_a_validation_error(client, admin, teacher, auth_headers):
    payload = {"date": "2024-03-01", "teacherId": teacher.id, "amStart": "9am"}
    response = client.post("/slots/generate", json=payload, headers=auth_headers(admin))
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


def test_break_toggle_endpoint(client, admin, teacher, make_slot, auth_headers):
    make_slot(teacher, "10:00")
    response = client.patch(
        "/slots/break",
        json={"date": "2024-03-01", "timeSlot": "10:00", "teacherId": teacher.id, "isBreak": True},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["isBreak"] is True


def test_booking_flow_and_error_shape(client, teacher, make_account, make_slot, auth_headers, db):
    student = make_account("student", tickets=1)
    rival = make_account("student", tickets=1)
    slot = make_slot(teacher, "10:00")

    booked = client.post("/reservations", json={"slotId": slot.id}, headers=auth_headers(student))
    assert booked.status_code == 201
    assert booked.json()["slot"]["timeSlot"] == "10:00"

    full = client.post("/reservations", json={"slotId": slot.id}, headers=auth_headers(rival))
    assert full.status_code == 409
    assert full.json()["error"] == "slot_full"
    assert full.json()["retryable"] is False

    db.expire_all()
    assert db.get(Account, student.id).current_tickets == 0
    assert db.get(Account, rival.id).current_tickets == 1

    mine = client.get("/reservations", headers=auth_headers(student)).json()
    assert [r["id"] for r in mine] == [booked.json()["id"]]

    cancelled = client.post(
        f"/reservations/{booked.json()['id']}/cancel", json={}, headers=auth_headers(student)
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"


def test_insufficient_tickets_response(client, teacher, make_account, make_slot, auth_headers):
    student = make_account("student", tickets=0)
    slot = make_slot(teacher, "10:00")
    response = client.post("/reservations", json={"slotId": slot.id}, headers=auth_headers(student))
    assert response.status_code == 409
    assert response.json()["error"] == "insufficient_tickets"


def test_ticket_endpoints(client, admin, make_account, auth_headers, db):
    student = make_account("student", tickets=6)

    granted = client.post(
        "/tickets/grant",
        json={"studentId": student.id, "quantity": 7, "reason": "bonus"},
        headers=auth_headers(admin),
    )
    assert granted.status_code == 200
    assert granted.json()["balance"] == 10
    assert granted.json()["ticketsApplied"] == 4

    weekly = client.post("/tickets/weekly-issue", json={}, headers=auth_headers(admin))
    assert weekly.status_code == 200
    assert weekly.json()["studentsUpdated"] == 1

    balance = client.get("/tickets/balance", headers=auth_headers(student)).json()
    assert balance["currentTickets"] == 10
    assert len(balance["recentGrants"]) == 2

    forbidden = client.post(
        "/tickets/grant",
        json={"studentId": student.id, "quantity": 1},
        headers=auth_headers(student),
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["error"] == "permission_denied"
    assert db.query(TicketGrant).count() == 2


def test_problem_publication_and_scheduler(client, admin, teacher, make_account, auth_headers):
    created = client.post(
        "/problems",
        json={
            "title": "Binary search",
            "content": "Find the boundary",
            "scheduledPublishAt": "2024-03-01T07:30:00+09:00",
            "previewLeadTime": 30,
            "previewLeadUnit": "minutes",
        },
        headers=auth_headers(teacher),
    )
    assert created.status_code == 201
    problem_id = created.json()["id"]
    assert created.json()["status"] == "draft"

    status = client.get("/admin/scheduler", headers=auth_headers(admin)).json()
    assert status["pending_count"] == 1

    run = client.post("/admin/scheduler/run", headers=auth_headers(admin))
    assert run.status_code == 200
    assert [p["id"] for p in run.json()["published_problems"]] == [problem_id]

    rerun = client.post("/admin/scheduler/run", headers=auth_headers(admin)).json()
    assert rerun["published_problems"] == []

    history = client.get(f"/problems/{problem_id}/history", headers=auth_headers(teacher)).json()
    assert [(h["fromStatus"], h["toStatus"], h["actor"]) for h in history] == [
        ("draft", "published", "auto_publish")
    ]

    student = make_account("student")
    denied = client.post("/admin/scheduler/run", headers=auth_headers(student))
    assert denied.status_code == 403

    archived = client.post(f"/problems/{problem_id}/archive", headers=auth_headers(teacher))
    assert archived.json()["status"] == "archived"
    republish = client.post(f"/problems/{problem_id}/publish", headers=auth_headers(teacher))
    assert republish.status_code == 409


def test_change_reservation_slot(client, teacher, make_account, make_slot, auth_headers):
    student = make_account("student", tickets=1)
    old = make_slot(teacher, "10:00", slot_date=date(2024, 3, 2))
    new = make_slot(teacher, "10:10", slot_date=date(2024, 3, 2))
    booked = client.post("/reservations", json={"slotId": old.id}, headers=auth_headers(student)).json()

    moved = client.patch(
        f"/reservations/{booked['id']}", json={"newSlotId": new.id}, headers=auth_headers(student)
    )
    assert moved.status_code == 200
    assert moved.json()["slot"]["timeSlot"] == "10:10"

    same = client.patch(
        f"/reservations/{booked['id']}", json={"newSlotId": new.id}, headers=auth_headers(student)
    )
    assert same.status_code == 400
    assert same.json()["error"] == "validation_error"

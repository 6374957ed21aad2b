import pytest
from fastapi.testclient import TestClient

from meetdesk.core.db import get_session
from meetdesk.core.security import create_access_token
from meetdesk.main import app
from meetdesk.models.user import User

MONDAY = "2030-01-07"
TUESDAY = "2030-01-08"


@pytest.fixture
def client(session_maker):
    async def override_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}


def _request_body(teacher_id: int, /, **overrides) -> dict:
    body = {
        "teacher_id": teacher_id,
        "day": "Monday",
        "time_slot": "3:00 PM - 4:00 PM",
        "date": MONDAY,
        "student": {"name": "Ann Student", "email": "Ann@Student.edu", "subject": "Algebra"},
    }
    body.update(overrides)
    return body


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_anonymous_request_then_duplicate(client: TestClient, teacher) -> None:
    first = client.post("/api/v1/appointments/request", json=_request_body(teacher.id))
    second = client.post(
        "/api/v1/appointments/request",
        json=_request_body(teacher.id, time_slot="3 PM", student={"name": "Bob", "email": "bob@student.edu"}),
    )

    assert first.status_code == 201
    data = first.json()
    assert data["status"] == "pending"
    assert data["created_by"] == "student"
    assert data["date"] == MONDAY
    assert data["slot_time"] == "3:00 PM"
    assert data["student"]["email"] == "ann@student.edu"
    assert second.status_code == 409
    assert second.json()["kind"] == "slot_unavailable"


def test_signed_in_student_can_omit_details(client: TestClient, teacher, student_user) -> None:
    response = client.post(
        "/api/v1/appointments/request",
        json=_request_body(teacher.id, student={"subject": "Physics"}),
        headers=_auth(student_user),
    )

    assert response.status_code == 201
    assert response.json()["student"]["email"] == "ann@student.edu"
    assert response.json()["student"]["name"] == "Ann Student"


@pytest.mark.parametrize(
    ("overrides", "status_code", "kind"),
    [
        ({"time_slot": "whenever"}, 400, "invalid_time_format"),
        ({"day": "Tuesday"}, 400, "validation_error"),
        ({"date": "2020-01-06"}, 400, "validation_error"),
        ({"teacher_id": 999}, 404, "not_found"),
        ({"student": {"name": "  "}}, 400, "validation_error"),
    ],
)
def test_request_errors(client: TestClient, teacher, overrides, status_code: int, kind: str) -> None:
    response = client.post("/api/v1/appointments/request", json=_request_body(teacher.id, **overrides))

    assert response.status_code == status_code
    assert response.json()["kind"] == kind


def test_request_body_validation(client: TestClient, teacher) -> None:
    bad_email = client.post(
        "/api/v1/appointments/request",
        json=_request_body(teacher.id, student={"name": "Ann", "email": "not-an-email"}),
    )
    bad_day = client.post("/api/v1/appointments/request", json=_request_body(teacher.id, day="Someday"))

    assert bad_email.status_code == 422
    assert bad_day.status_code == 422


def test_accept_requires_owning_teacher(client: TestClient, teacher, other_teacher) -> None:
    created = client.post("/api/v1/appointments/request", json=_request_body(teacher.id)).json()
    url = f"/api/v1/appointments/{created['id']}/accept"

    anonymous = client.put(url)
    intruder = client.put(url, headers=_auth(other_teacher))
    too_long = client.put(url, json={"message": "x" * 501}, headers=_auth(teacher))
    accepted = client.put(url, json={"message": "See you then"}, headers=_auth(teacher))
    again = client.put(url, headers=_auth(teacher))

    assert anonymous.status_code == 401
    assert intruder.status_code == 403
    assert intruder.json()["kind"] == "forbidden"
    assert too_long.status_code == 422
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "confirmed"
    assert accepted.json()["response_message"] == "See you then"
    assert accepted.json()["responded_at"] is not None
    assert again.status_code == 409
    assert again.json()["kind"] == "invalid_transition"


def test_reject_uses_default_message(client: TestClient, teacher) -> None:
    created = client.post("/api/v1/appointments/request", json=_request_body(teacher.id)).json()

    response = client.put(f"/api/v1/appointments/{created['id']}/reject", headers=_auth(teacher))

    assert response.json()["status"] == "rejected"
    assert response.json()["response_message"] == "Request rejected"


def test_direct_book_complete_and_cancel(client: TestClient, teacher, student_user) -> None:
    body = {
        "teacher_id": teacher.id,
        "time_slot": "10:00 AM - 11:00 AM",
        "date": TUESDAY,
        "student": {"name": "Ann Student", "email": "ann@student.edu"},
        "notes": "Chapter 4",
    }
    as_student = client.post("/api/v1/appointments/book", json=body, headers=_auth(student_user))
    booked = client.post("/api/v1/appointments/book", json=body, headers=_auth(teacher))
    appointment_id = booked.json()["id"]
    completed = client.put(f"/api/v1/appointments/{appointment_id}/complete", headers=_auth(teacher))
    cancel_after = client.put(
        f"/api/v1/appointments/{appointment_id}/cancel", json={"reason": "Late"}, headers=_auth(teacher)
    )

    assert as_student.status_code == 403
    assert booked.status_code == 201
    assert booked.json()["status"] == "booked"
    assert booked.json()["day"] == "Tuesday"
    assert completed.json()["status"] == "completed"
    assert cancel_after.status_code == 409


def test_student_cancels_own_request(client: TestClient, teacher, student_user) -> None:
    created = client.post("/api/v1/appointments/request", json=_request_body(teacher.id)).json()

    response = client.put(
        f"/api/v1/appointments/{created['id']}/cancel", json={"reason": "Exam clash"}, headers=_auth(student_user)
    )

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancelled_by"] == "student"
    assert response.json()["cancellation_reason"] == "Exam clash"


def test_queries(client: TestClient, teacher, other_teacher, student_user, admin) -> None:
    first = client.post("/api/v1/appointments/request", json=_request_body(teacher.id)).json()
    client.post(
        "/api/v1/appointments/request",
        json=_request_body(teacher.id, time_slot="4 PM", student={"name": "Bob", "email": "bob@student.edu"}),
    )
    client.put(f"/api/v1/appointments/{first['id']}/accept", headers=_auth(teacher))

    pending = client.get(f"/api/v1/appointments/teacher/{teacher.id}/pending", headers=_auth(teacher))
    pending_forbidden = client.get(f"/api/v1/appointments/teacher/{teacher.id}/pending", headers=_auth(other_teacher))
    mine = client.get("/api/v1/appointments", headers=_auth(student_user))
    confirmed = client.get("/api/v1/appointments", params={"status": "confirmed"}, headers=_auth(admin))
    stats = client.get("/api/v1/appointments/stats", headers=_auth(teacher))
    single = client.get(f"/api/v1/appointments/{first['id']}", headers=_auth(student_user))
    hidden = client.get(f"/api/v1/appointments/{first['id']}", headers=_auth(other_teacher))

    assert [a["student"]["name"] for a in pending.json()] == ["Bob"]
    assert pending_forbidden.status_code == 403
    assert mine.json()["total"] == 1
    assert mine.json()["items"][0]["id"] == first["id"]
    assert confirmed.json()["total"] == 1
    assert confirmed.json()["limit"] == 20
    assert stats.json()["total"] == 2
    assert stats.json()["pending_requests"] == 1
    assert stats.json()["confirmed"] == 1
    assert single.status_code == 200
    assert hidden.status_code == 403


def test_available_slots(client: TestClient, teacher) -> None:
    client.post("/api/v1/appointments/request", json=_request_body(teacher.id))

    response = client.get("/api/v1/slots/available", params={"teacher_id": teacher.id, "date": MONDAY})
    missing = client.get("/api/v1/slots/available", params={"teacher_id": 999, "date": MONDAY})

    assert response.status_code == 200
    data = response.json()
    assert data["day"] == "Monday"
    taken = [s["time_slot"] for s in data["slots"] if not s["available"]]
    assert taken == ["3:00 PM - 4:00 PM"]
    assert missing.status_code == 404


def test_reschedule_and_edit(client: TestClient, teacher, other_teacher) -> None:
    created = client.post("/api/v1/appointments/request", json=_request_body(teacher.id)).json()
    client.post(
        "/api/v1/appointments/request",
        json=_request_body(teacher.id, time_slot="4 PM", student={"name": "Bob", "email": "bob@student.edu"}),
    )
    url = f"/api/v1/appointments/{created['id']}"

    intruder = client.put(url, json={"notes": "mine"}, headers=_auth(other_teacher))
    into_taken = client.put(url, json={"time_slot": "4:00 PM - 5:00 PM"}, headers=_auth(teacher))
    empty = client.put(url, json={}, headers=_auth(teacher))
    moved = client.put(
        url, json={"date": TUESDAY, "time_slot": "10am", "notes": "Bring notes"}, headers=_auth(teacher)
    )

    assert intruder.status_code == 403
    assert into_taken.status_code == 409
    assert into_taken.json()["kind"] == "slot_unavailable"
    assert empty.status_code == 400
    assert moved.status_code == 200
    data = moved.json()
    assert data["date"] == TUESDAY
    assert data["day"] == "Tuesday"
    assert data["slot_time"] == "10:00 AM"
    assert data["notes"] == "Bring notes"
    assert data["status"] == "pending"

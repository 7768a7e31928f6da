from datetime import timedelta

import pytest

from app.models.all_models import User, UserRole, UserStatus, clinic_now
from app.utils.auth import hash_password
from tests.conftest import PASSWORD

API = "/api/v1/appointments"


@pytest.fixture
def tomorrow():
    return (clinic_now() + timedelta(days=1)).date().isoformat()


@pytest.fixture
def booked(client, headers_for, receptionist, patient, tomorrow):
    response = client.post(API, json={
        "patient_id": str(patient.id),
        "appointment_date": tomorrow,
        "appointment_time": "10:30:00",
        "reason": "Follow-up <b>review</b>",
    }, headers=headers_for(receptionist))
    assert response.status_code == 201
    return response.json()


def test_booking_is_scheduled_and_sanitised(booked):
    assert booked["status"] == "Scheduled"
    assert booked["patient_name"] == "Wanjiku Kamau"
    assert "<b>" not in booked["reason"]


def test_cannot_book_in_the_past(client, headers_for, receptionist, patient):
    yesterday = (clinic_now() - timedelta(days=1)).date().isoformat()
    response = client.post(API, json={
        "patient_id": str(patient.id), "appointment_date": yesterday, "appointment_time": "09:00:00",
    }, headers=headers_for(receptionist))
    assert response.status_code == 400


def test_listing_by_date(client, headers_for, nurse, booked, tomorrow):
    response = client.get(f"{API}?date={tomorrow}", headers=headers_for(nurse))
    assert [a["id"] for a in response.json()] == [booked["id"]]


def test_check_in_opens_a_visit(client, headers_for, receptionist, booked):
    headers = headers_for(receptionist)
    response = client.post(f"{API}/{booked['id']}/check-in", json={"priority": "Urgent"}, headers=headers)

    assert response.status_code == 201
    visit = response.json()
    assert visit["stage"] == "Check-In"
    assert visit["priority"] == "Urgent"

    listed = client.get(API, headers=headers).json()[0]
    assert listed["status"] == "Completed"
    assert listed["visit_id"] == visit["id"]

    again = client.post(f"{API}/{booked['id']}/check-in", json={}, headers=headers)
    assert again.status_code == 400


def test_reminder_is_sent_by_sms(client, outbox, headers_for, receptionist, booked):
    response = client.post(f"{API}/{booked['id']}/remind", headers=headers_for(receptionist))

    assert response.status_code == 200
    kind, phone, message = outbox[0]
    assert kind == "sms"
    assert phone == "+254712345678"
    assert "Wanjiku Kamau" in message
    assert "Uhai Clinic" in message


def test_reminder_respects_sms_toggle(client, db, outbox, headers_for, receptionist, clinic, booked):
    clinic.settings = {**clinic.settings, "smsEnabled": False}
    db.commit()

    response = client.post(f"{API}/{booked['id']}/remind", headers=headers_for(receptionist))
    assert response.status_code == 400
    assert outbox == []


def test_doctor_cannot_cancel(client, headers_for, doctor, booked):
    response = client.post(f"{API}/{booked['id']}/cancel", json={"cancellation_reason": "Patient travelled"},
                           headers=headers_for(doctor))
    assert response.status_code == 403


def test_receptionist_cancels(client, headers_for, receptionist, booked):
    response = client.post(f"{API}/{booked['id']}/cancel", json={"cancellation_reason": "Patient travelled"},
                           headers=headers_for(receptionist))
    assert response.json()["status"] == "Cancelled"
    assert response.json()["cancellation_reason"] == "Patient travelled"


def test_marking_completed_needs_visit_completion_rights(client, headers_for, receptionist, booked):
    response = client.put(f"{API}/{booked['id']}", json={"status": "Completed"}, headers=headers_for(receptionist))
    assert response.status_code == 403
    assert response.json()["detail"]["kind"] == "authorization_error"

    listed = client.get(API, headers=headers_for(receptionist)).json()[0]
    assert listed["status"] == "Scheduled"


def test_doctor_may_mark_completed(client, headers_for, doctor, booked):
    response = client.put(f"{API}/{booked['id']}", json={"status": "Completed"}, headers=headers_for(doctor))
    assert response.status_code == 200
    assert response.json()["status"] == "Completed"


def test_reminder_without_a_clinic_is_rejected(client, db, outbox, headers_for, booked):
    owner = User(clinic_id=None, full_name="Platform Owner", email="owner@juaafya.co.ke",
                 password=hash_password(PASSWORD), role=UserRole.SUPER_ADMIN, status=UserStatus.ACTIVE)
    db.add(owner)
    db.commit()

    response = client.post(f"{API}/{booked['id']}/remind", headers=headers_for(owner))
    assert response.status_code == 400
    assert outbox == []

"""API tests for technician and bulk booking endpoints."""

import pytest
from sqlalchemy import text

from gorepair.models.user import UserRole

TECH = "/api/v1/technicians"
BULK = "/api/v1/bookings/bulk"


def bulk_payload(service, items, **overrides):
    payload = {
        "location": {
            "address": {"street": "Tower B, Prestige Tech Park", "city": "Bengaluru", "pincode": "560103"},
            "coordinates": {"latitude": 12.9716, "longitude": 77.5946},
            "formattedAddress": "Tower B, Prestige Tech Park, Bengaluru",
        },
        "bookings": items,
        "scheduledDate": "2026-11-10T10:00:00",
        "preferredTimeSlot": {"start": "10:00", "end": "13:00"},
        "priority": "high",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def technician(make_technician):
    return make_technician(full_name="Ravi Kumar")


class TestTechnicianProfile:
    def test_me(self, client, technician, auth_headers):
        response = client.get(f"{TECH}/me", headers=auth_headers(technician))
        data = response.json()["data"]
        assert response.status_code == 200
        assert data["id"] == technician.id
        assert data["full_name"] == "Ravi Kumar"
        assert data["current_workload"] == 0

    def test_customers_are_refused(self, client, customer, auth_headers):
        assert client.get(f"{TECH}/me", headers=auth_headers(customer)).status_code == 403

    def test_update_availability(self, client, technician, auth_headers):
        response = client.patch(
            f"{TECH}/me/availability",
            json={
                "workingHours": {"Monday": {"start": "08:00", "end": "16:00"}},
                "isOnBreak": True,
                "isOnline": False,
                "location": {"latitude": 12.98, "longitude": 77.61},
            },
            headers=auth_headers(technician)
        )
        data = response.json()["data"]
        assert response.status_code == 200
        assert data["working_hours"]["monday"] == {"start": "08:00", "end": "16:00", "available": True}
        assert data["working_hours"]["tuesday"]["start"] == "00:00"
        assert data["is_on_break"] is True
        assert data["is_online"] is False
        assert data["latitude"] == 12.98

    def test_bad_working_hours(self, client, technician, auth_headers):
        response = client.patch(
            f"{TECH}/me/availability",
            json={"workingHours": {"someday": {"start": "08:00", "end": "16:00"}}},
            headers=auth_headers(technician)
        )
        assert response.status_code == 400


class TestAssignmentResponse:
    def test_accept_and_list(self, client, customer, admin, technician, make_booking, hold, auth_headers):
        booking = hold(make_booking(customer), technician, admin)

        response = client.patch(
            f"{TECH}/bookings/{booking.id}/assignment", json={"action": "accept"}, headers=auth_headers(technician)
        )
        assert response.json()["data"]["status"] == "confirmed"

        listed = client.get(f"{TECH}/me/bookings", headers=auth_headers(technician)).json()["data"]
        assert [b["id"] for b in listed["bookings"]] == [booking.id]

    def test_decline(self, client, customer, admin, technician, make_booking, hold, auth_headers):
        booking = hold(make_booking(customer), technician, admin)

        response = client.patch(
            f"{TECH}/bookings/{booking.id}/assignment",
            json={"action": "decline", "reason": "Outside my area"},
            headers=auth_headers(technician)
        )
        data = response.json()["data"]
        assert data["status"] == "pending"
        assert data["assigned_technician_id"] is None
        assert data["declined_by"][0]["technician_id"] == technician.id

    def test_unknown_action(self, client, customer, admin, technician, make_booking, hold, auth_headers):
        booking = hold(make_booking(customer), technician, admin)
        response = client.patch(
            f"{TECH}/bookings/{booking.id}/assignment", json={"action": "ignore"}, headers=auth_headers(technician)
        )
        assert response.status_code == 400


class TestWorkloadSync:
    def test_admin_only(self, client, db, technician, make_user, admin, auth_headers):
        manager = make_user(UserRole.MANAGER)
        assert client.post(f"{TECH}/{technician.id}/workload/sync", headers=auth_headers(manager)).status_code == 403

        db.execute(text("UPDATE technician_profiles SET current_workload = 3 WHERE user_id = :id"), {"id": technician.id})
        db.commit()

        response = client.post(f"{TECH}/{technician.id}/workload/sync", headers=auth_headers(admin))
        data = response.json()["data"]
        assert data["previous_workload"] == 3
        assert data["current_workload"] == 0


class TestBulkEndpoints:
    def test_create_reports_failed_items(self, client, customer, service, auth_headers):
        items = [
            {"services": [{"serviceId": service.id}]},
            {"services": []},
            {"services": [{"serviceId": service.id, "quantity": 2}]},
        ]

        response = client.post(BULK, json=bulk_payload(service, items), headers=auth_headers(customer))

        body = response.json()
        assert response.status_code == 201
        assert body["data"]["bulk_booking"]["booking_count"] == 2
        assert body["data"]["bulk_booking"]["client_id"] == customer.id
        assert [e["index"] for e in body["data"]["errors"]] == [1]

    def test_all_items_invalid(self, client, customer, service, auth_headers):
        response = client.post(
            BULK, json=bulk_payload(service, [{"services": []}, {}]), headers=auth_headers(customer)
        )
        body = response.json()
        assert response.status_code == 400
        assert body["message"] == "Failed to create any bookings"
        assert len(body["data"]["errors"]) == 2

    def test_client_scoped_path(self, client, customer, service, auth_headers):
        response = client.post(
            f"/api/v1/bookings/{customer.id}/bulk",
            json=bulk_payload(service, [{"services": [{"serviceId": service.id}]}]),
            headers=auth_headers(customer)
        )
        assert response.status_code == 201
        assert response.json()["data"]["errors"] is None

    def test_customer_cannot_batch_for_someone_else(self, client, customer, make_user, service, auth_headers):
        other = make_user(UserRole.USER)
        response = client.post(
            f"/api/v1/bookings/{other.id}/bulk",
            json=bulk_payload(service, [{"services": [{"serviceId": service.id}]}]),
            headers=auth_headers(customer)
        )
        assert response.status_code == 403

    def test_staff_can_batch_for_client(self, client, customer, make_user, service, auth_headers):
        partner = make_user(UserRole.PARTNER)
        response = client.post(
            BULK,
            json=bulk_payload(service, [{"services": [{"serviceId": service.id}]}], clientId=customer.id),
            headers=auth_headers(partner)
        )
        assert response.status_code == 201
        assert response.json()["data"]["bulk_booking"]["client_id"] == customer.id

    def test_read_refresh_and_delete(self, client, customer, admin, service, auth_headers):
        created = client.post(
            BULK,
            json=bulk_payload(service, [{"services": [{"serviceId": service.id}]}]),
            headers=auth_headers(customer)
        ).json()["data"]["bulk_booking"]
        url = f"{BULK}/{created['id']}"

        fetched = client.get(url, headers=auth_headers(customer)).json()["data"]
        assert fetched["booking_ids"] == created["booking_ids"]

        refreshed = client.post(f"{url}/refresh", headers=auth_headers(admin))
        assert refreshed.json()["data"]["status"] == "pending"

        assert client.delete(url, headers=auth_headers(customer)).status_code == 403
        assert client.delete(url, headers=auth_headers(admin)).status_code == 200
        assert client.get(url, headers=auth_headers(admin)).status_code == 404

"""REST API tests through FastAPI's TestClient."""

import pytest

from config import settings

PROFILE = {
    "business_name": "Glow Studio",
    "whatsapp_number": "+1 555 000 1111",
    "services": [{"name": "Haircut", "duration": 30, "price": 200}],
    "working_hours": {
        "monday": {"open": "10:00", "close": "19:00"},
        "sunday": {"closed": True},
    },
    "address": {"city": "Pune"},
}

APPOINTMENT = {
    "customer_name": "Priya",
    "customer_phone": "91 98765 43210",
    "service_name": "Haircut",
    "appointment_date": "2025-05-15",
    "appointment_time": "3 PM",
    "duration": 30,
    "price": 200,
}


def register(client, email, password="secret123", full_name="Asha Rao", phone_number="+919812345678"):
    response = client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "full_name": full_name, "phone_number": phone_number},
    )
    assert response.status_code == 201, response.text
    data = response.json()["data"]
    return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]


@pytest.fixture(autouse=True)
def superadmins(monkeypatch):
    monkeypatch.setattr(settings, "SUPERADMIN_EMAILS", ["admin@glowbook.in"])


@pytest.fixture
def owner(client):
    return register(client, "owner@glowbook.in")


@pytest.fixture
def owner_headers(owner):
    return owner[0]


@pytest.fixture
def admin_headers(client):
    return register(client, "admin@glowbook.in", full_name="Platform Admin")[0]


@pytest.fixture
def with_profile(client, owner_headers):
    response = client.post("/api/profile", json=PROFILE, headers=owner_headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def create_appointment(client, headers, **overrides):
    response = client.post("/api/appointments", json=dict(APPOINTMENT, **overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


# Service info

def test_root(client):
    assert client.get("/").json() == {"message": "Glowbook Booking API is running"}


def test_schema_lists_records(client):
    schema = client.get("/schema").json()
    assert set(schema) == {"business_profile", "service", "appointment", "user", "draft_booking"}


# Auth

def test_register_creates_parlour_owner(owner):
    _, user = owner
    assert user["role"] == "parlourOwner"
    assert user["plan"] == "free"
    assert user["email"] == "owner@glowbook.in"
    assert "password_hash" not in user


def test_register_superadmin_by_email(client):
    _, user = register(client, "Admin@Glowbook.in")
    assert user["role"] == "superadmin"


def test_duplicate_registration(client, owner):
    response = client.post(
        "/api/auth/register",
        json={"email": "owner@glowbook.in", "password": "secret123", "full_name": "Other", "phone_number": "+15551234567"},
    )
    assert response.status_code == 400
    assert response.json() == {"status": "error", "message": "User with this email already exists"}


def test_register_validation_error_is_400(client):
    response = client.post("/api/auth/register", json={"email": "not-an-email", "password": "x"})
    assert response.status_code == 400
    assert response.json()["status"] == "error"


def test_login(client, owner):
    response = client.post("/api/auth/login", json={"email": "owner@glowbook.in", "password": "secret123"})
    assert response.status_code == 200
    assert response.json()["data"]["token_type"] == "bearer"

    response = client.post("/api/auth/login", json={"email": "owner@glowbook.in", "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json()["status"] == "error"


def test_me_requires_token(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"}).status_code == 401


def test_update_own_profile_reissues_token(client, owner_headers):
    response = client.patch("/api/auth/profile", json={"full_name": "Asha R."}, headers=owner_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["full_name"] == "Asha R."

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.json()["data"]["full_name"] == "Asha R."


# Business profile

def test_profile_create_then_update(client, owner_headers, with_profile):
    assert with_profile["whatsapp_number"] == "+15550001111"
    assert with_profile["services"][0]["id"]
    assert with_profile["working_hours"]["sunday"] == {"closed": True, "open": None, "close": None}

    response = client.post("/api/profile", json=dict(PROFILE, business_name="Glow Studio II"), headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["data"]["business_name"] == "Glow Studio II"

    assert client.get("/api/profile", headers=owner_headers).json()["data"]["business_name"] == "Glow Studio II"


def test_profile_missing(client, owner_headers):
    response = client.get("/api/profile", headers=owner_headers)
    assert response.status_code == 404
    assert response.json()["status"] == "error"


def test_whatsapp_number_is_unique(client, with_profile):
    other_headers, _ = register(client, "other@glowbook.in")
    response = client.post("/api/profile", json=PROFILE, headers=other_headers)
    assert response.status_code == 400


def test_services_crud(client, owner_headers, with_profile):
    response = client.post(
        "/api/profile/services", json={"name": "Hair Spa", "duration": 60, "price": 800}, headers=owner_headers
    )
    assert response.status_code == 201
    service = response.json()["data"]

    response = client.put(
        f"/api/profile/services/{service['id']}",
        json={"name": "Hair Spa Deluxe", "duration": 90, "price": 1200},
        headers=owner_headers,
    )
    assert response.status_code == 200
    updated = response.json()["data"]
    assert updated["id"] == service["id"]
    assert updated["name"] == "Hair Spa Deluxe"

    assert client.delete(f"/api/profile/services/{service['id']}", headers=owner_headers).status_code == 200
    names = [s["name"] for s in client.get("/api/profile", headers=owner_headers).json()["data"]["services"]]
    assert names == ["Haircut"]


def test_unknown_service(client, owner_headers, with_profile):
    assert client.delete("/api/profile/services/nope", headers=owner_headers).status_code == 404
    response = client.put(
        "/api/profile/services/nope", json={"name": "X", "duration": 10, "price": 1}, headers=owner_headers
    )
    assert response.status_code == 404


def test_service_validation(client, owner_headers, with_profile):
    response = client.post("/api/profile/services", json={"name": "Free", "duration": 0, "price": 0}, headers=owner_headers)
    assert response.status_code == 400


def test_services_require_profile(client, owner_headers):
    response = client.post("/api/profile/services", json={"name": "Haircut", "duration": 30, "price": 200}, headers=owner_headers)
    assert response.status_code == 404


def test_working_hours(client, owner_headers, with_profile):
    hours = {"working_hours": {"Saturday": {"open": "09:00", "close": "13:00"}}}
    response = client.put("/api/profile/working-hours", json=hours, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["data"] == {"saturday": {"closed": False, "open": "09:00", "close": "13:00"}}


@pytest.mark.parametrize(
    "hours",
    [
        {"monday": {"open": "19:00", "close": "10:00"}},
        {"monday": {"open": "10:00"}},
        {"funday": {"closed": True}},
        {"monday": {"open": "25:00", "close": "26:00"}},
    ],
)
def test_invalid_working_hours(client, owner_headers, with_profile, hours):
    response = client.put("/api/profile/working-hours", json={"working_hours": hours}, headers=owner_headers)
    assert response.status_code == 400
    assert response.json()["status"] == "error"


# Appointments

def test_create_appointment_requires_profile(client, owner_headers):
    response = client.post("/api/appointments", json=APPOINTMENT, headers=owner_headers)
    assert response.status_code == 404


def test_create_appointment(client, owner_headers, dispatcher, with_profile):
    appointment = create_appointment(client, owner_headers)

    assert appointment["status"] == "scheduled"
    assert appointment["customer_phone"] == "+919876543210"
    assert appointment["appointment_date"] == "2025-05-15"
    assert appointment["business_name"] == "Glow Studio"
    assert [p["template"]["name"] for p in dispatcher.of_type("template")] == ["appointment_confirmation"]


def test_create_appointment_survives_delivery_failure(client, owner_headers, dispatcher, with_profile):
    dispatcher.fail_types = {"template", "text"}
    appointment = create_appointment(client, owner_headers)
    assert appointment["id"]


def test_list_and_filter_appointments(client, owner_headers, with_profile):
    later = create_appointment(client, owner_headers, appointment_date="2025-06-01")
    earlier = create_appointment(client, owner_headers, appointment_date="2025-05-01")
    client.delete(f"/api/appointments/{later['id']}", headers=owner_headers)

    listed = client.get("/api/appointments", headers=owner_headers).json()["data"]
    assert [a["id"] for a in listed] == [earlier["id"], later["id"]]

    scheduled = client.get("/api/appointments", params={"status": "scheduled"}, headers=owner_headers).json()["data"]
    assert [a["id"] for a in scheduled] == [earlier["id"]]

    on_date = client.get("/api/appointments", params={"date": "2025-06-01"}, headers=owner_headers).json()["data"]
    assert [a["id"] for a in on_date] == [later["id"]]


def test_appointment_of_another_parlour(client, owner_headers, with_profile):
    appointment = create_appointment(client, owner_headers)
    other_headers, _ = register(client, "other@glowbook.in")

    assert client.get(f"/api/appointments/{appointment['id']}", headers=other_headers).status_code == 403
    assert client.get("/api/appointments/missing", headers=owner_headers).status_code == 404


def test_status_transitions(client, owner_headers, dispatcher, with_profile):
    appointment = create_appointment(client, owner_headers)
    url = f"/api/appointments/{appointment['id']}"

    response = client.patch(url, json={"status": "confirmed"}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "confirmed"

    assert client.patch(url, json={"status": "completed"}, headers=owner_headers).status_code == 200

    response = client.patch(url, json={"status": "scheduled"}, headers=owner_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot change status from completed to scheduled"

    assert client.delete(url, headers=owner_headers).status_code == 400
    names = [p["template"]["name"] for p in dispatcher.of_type("template")]
    assert names == ["appointment_confirmation", "appointment_confirmation"]


def test_patch_fields(client, owner_headers, with_profile):
    appointment = create_appointment(client, owner_headers)
    response = client.patch(
        f"/api/appointments/{appointment['id']}",
        json={"appointment_date": "2025-05-20", "appointment_time": "5 PM", "notes": "Bring reference photo"},
        headers=owner_headers,
    )
    data = response.json()["data"]
    assert (data["appointment_date"], data["appointment_time"], data["notes"]) == ("2025-05-20", "5 PM", "Bring reference photo")


def test_patch_phone_is_validated_and_normalized(client, owner_headers, with_profile):
    appointment = create_appointment(client, owner_headers)
    url = f"/api/appointments/{appointment['id']}"

    rejected = client.patch(url, json={"customer_phone": "call me"}, headers=owner_headers)
    assert rejected.status_code == 400
    assert "Invalid phone number" in rejected.json()["message"]

    response = client.patch(url, json={"customer_phone": "91 98765 00000"}, headers=owner_headers)
    assert response.json()["data"]["customer_phone"] == "+919876500000"


def test_delete_cancels(client, owner_headers, dispatcher, with_profile):
    appointment = create_appointment(client, owner_headers)
    url = f"/api/appointments/{appointment['id']}"

    response = client.delete(url, headers=owner_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "cancelled"
    assert data["notes"] == "Cancelled by the parlour"
    assert "appointment_cancellation" in [p["template"]["name"] for p in dispatcher.of_type("template")]

    # Still stored
    assert client.get(url, headers=owner_headers).status_code == 200
    assert client.delete(url, headers=owner_headers).json()["message"] == "Appointment is already cancelled"


def test_reminder(client, owner_headers, dispatcher, with_profile):
    appointment = create_appointment(client, owner_headers)
    url = f"/api/appointments/{appointment['id']}/remind"

    assert client.post(url, headers=owner_headers).status_code == 200
    assert dispatcher.of_type("template")[-1]["template"]["name"] == "appointment_reminder"

    dispatcher.fail_types = {"template", "text"}
    response = client.post(url, headers=owner_headers)
    assert response.status_code == 502
    assert response.json()["status"] == "error"


def test_reminder_for_cancelled_appointment(client, owner_headers, with_profile):
    appointment = create_appointment(client, owner_headers)
    client.delete(f"/api/appointments/{appointment['id']}", headers=owner_headers)
    response = client.post(f"/api/appointments/{appointment['id']}/remind", headers=owner_headers)
    assert response.status_code == 400


# Customers

def test_customers_derived_from_appointments(client, owner_headers, with_profile):
    create_appointment(client, owner_headers, appointment_date="2025-05-01", customer_id="cust-1")
    create_appointment(client, owner_headers, appointment_date="2025-06-01", customer_id="cust-1")
    create_appointment(client, owner_headers, customer_name="Meera", customer_phone="+919800000000")

    customers = client.get("/api/customers", headers=owner_headers).json()["data"]
    by_phone = {c["customer_phone"]: c for c in customers}
    assert by_phone["+919876543210"]["appointment_count"] == 2
    assert by_phone["+919876543210"]["last_appointment"] == "2025-06-01"
    assert by_phone["+919800000000"]["customer_name"] == "Meera"

    history = client.get("/api/customers/cust-1/history", headers=owner_headers).json()["data"]
    assert [a["appointment_date"] for a in history] == ["2025-06-01", "2025-05-01"]

    by_phone_history = client.get("/api/customers/phone/919876543210/history", headers=owner_headers).json()["data"]
    assert len(by_phone_history) == 2


# Admin

def test_admin_requires_superadmin(client, owner_headers):
    assert client.get("/api/admin/users", headers=owner_headers).status_code == 403
    assert client.get("/api/admin/users").status_code == 401


def test_admin_user_management(client, admin_headers, owner):
    users = client.get("/api/admin/users", headers=admin_headers).json()["data"]
    assert {u["email"] for u in users} == {"owner@glowbook.in", "admin@glowbook.in"}
    assert all("password_hash" not in u for u in users)

    response = client.post(
        "/api/admin/users",
        json={"email": "new@glowbook.in", "password": "secret123", "full_name": "New Owner", "plan": "basic"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["data"]["plan"] == "basic"

    duplicate = client.post(
        "/api/admin/users",
        json={"email": "new@glowbook.in", "password": "secret123", "full_name": "Again"},
        headers=admin_headers,
    )
    assert duplicate.status_code == 400


def test_stored_record_is_the_source_of_truth(client, admin_headers, owner):
    headers, user = owner

    response = client.patch(f"/api/admin/users/{user['id']}", json={"plan": "premium"}, headers=admin_headers)
    assert response.status_code == 200

    # The old token still resolves to the stored record
    assert client.get("/api/auth/me", headers=headers).json()["data"]["plan"] == "premium"

    client.patch(f"/api/admin/users/{user['id']}", json={"role": "superadmin"}, headers=admin_headers)
    assert client.get("/api/admin/users", headers=headers).status_code == 200


def test_admin_password_reset(client, admin_headers, owner):
    _, user = owner
    client.patch(f"/api/admin/users/{user['id']}", json={"password": "brand-new-pass"}, headers=admin_headers)

    response = client.post("/api/auth/login", json={"email": "owner@glowbook.in", "password": "brand-new-pass"})
    assert response.status_code == 200


class FakeSession:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def with_transaction(self, callback):
        return callback(None)


def test_delete_account_removes_parlour_data(client, db, monkeypatch, admin_headers, owner, with_profile):
    headers, user = owner
    create_appointment(client, headers)
    create_appointment(client, headers, appointment_date="2025-06-01")
    monkeypatch.setattr(db.client, "start_session", lambda: FakeSession())

    response = client.delete(f"/api/admin/users/{user['id']}", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["data"] == {"appointments": 2, "drafts": 0, "profiles": 1}
    assert db["appointments"].count_documents({}) == 0
    assert db["business_profiles"].count_documents({}) == 0
    assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_admin_cannot_delete_self(client, admin_headers):
    me = client.get("/api/auth/me", headers=admin_headers).json()["data"]
    assert client.delete(f"/api/admin/users/{me['id']}", headers=admin_headers).status_code == 400


def test_analytics(client, admin_headers, owner_headers, with_profile):
    create_appointment(client, owner_headers, price=200)
    cancelled = create_appointment(client, owner_headers, price=500)
    client.delete(f"/api/appointments/{cancelled['id']}", headers=owner_headers)

    data = client.get("/api/admin/analytics", headers=admin_headers).json()["data"]
    assert data["total_users"] == 2
    assert data["users_by_plan"]["free"] == 2
    assert data["total_appointments"] == 2
    assert data["appointments_by_status"]["cancelled"] == 1
    assert data["total_revenue"] == 200
    assert len(data["user_stats"]) == 2

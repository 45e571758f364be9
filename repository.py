"""
BookingStore: every read and write the API and the WhatsApp pipeline make
against MongoDB.

Documents are validated into the records from schemas.py here, so callers
never handle raw documents. PyMongo failures surface as StoreError.
"""

import functools
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, get_documents, new_id, utcnow
from date_resolver import minutes_of_day
from errors import NotFoundError, StoreError, ValidationError
from logger import setup_logger
from phone import normalize_phone
from schemas import (
    Appointment,
    AppointmentStatus,
    BusinessProfile,
    CustomerSummary,
    DraftBooking,
    ProfileIn,
    Service,
    ServiceIn,
    User,
)

logger = setup_logger(__name__)

PROFILES = "business_profiles"
APPOINTMENTS = "appointments"
USERS = "users"
DRAFTS = "draft_bookings"

# Sorts after every other minute of the day
UNKNOWN_TIME = 24 * 60


def store_operation(action: str):
    """Wrap PyMongo failures of a store method into StoreError."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except PyMongoError as e:
                logger.error(f"Database error while trying to {action}: {e}")
                raise StoreError(f"Failed to {action}") from e
        return wrapper
    return decorator


def _with_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_appointment(doc) -> Appointment:
    return Appointment.model_validate(_with_id(doc))


def chronological(appointments: Iterable[Appointment]) -> List[Appointment]:
    """Order by date, then by time of day; times that do not parse go last within their day."""
    def key(appointment: Appointment):
        minutes = minutes_of_day(appointment.appointment_time)
        return appointment.appointment_date, UNKNOWN_TIME if minutes is None else minutes
    return sorted(appointments, key=key)


def _to_profile(doc) -> BusinessProfile:
    doc = dict(doc)
    doc.setdefault("owner_id", str(doc.get("_id")))
    doc.pop("_id", None)
    return BusinessProfile.model_validate(doc)


def _to_user(doc) -> User:
    return User.model_validate(_with_id(doc))


class BookingStore:
    """Collection-level access for profiles, appointments, users and drafts."""

    def __init__(self, db: Database):
        self.db = db

    @store_operation("create indexes")
    def ensure_indexes(self):
        self.db[PROFILES].create_index("whatsapp_number", unique=True)
        self.db[APPOINTMENTS].create_index([("parlour_id", ASCENDING), ("appointment_date", ASCENDING)])
        self.db[APPOINTMENTS].create_index([("parlour_id", ASCENDING), ("customer_phone", ASCENDING)])
        self.db[USERS].create_index("email", unique=True)
        # Drafts are removed by MongoDB once expires_at passes
        self.db[DRAFTS].create_index("expires_at", expireAfterSeconds=0)

    def ping(self) -> bool:
        self.db.command("ping")
        return True

    # Business profiles

    @store_operation("get business profile")
    def get_profile(self, owner_id: str) -> Optional[BusinessProfile]:
        doc = self.db[PROFILES].find_one({"_id": owner_id})
        return _to_profile(doc) if doc else None

    def require_profile(self, owner_id: str, message: str = "Business profile not found") -> BusinessProfile:
        profile = self.get_profile(owner_id)
        if not profile:
            raise NotFoundError(message)
        return profile

    @store_operation("find business profile")
    def find_profile_by_channel(self, identifiers: Iterable[str]) -> Optional[BusinessProfile]:
        candidates = sorted({normalize_phone(i) for i in identifiers if i})
        if not candidates:
            return None
        doc = self.db[PROFILES].find_one({"whatsapp_number": {"$in": candidates}})
        return _to_profile(doc) if doc else None

    @store_operation("save business profile")
    def save_profile(self, owner_id: str, data: ProfileIn):
        """Create or update the owner's profile. Returns (profile, created)."""
        whatsapp_number = normalize_phone(data.whatsapp_number)
        taken = self.db[PROFILES].find_one({"whatsapp_number": whatsapp_number, "_id": {"$ne": owner_id}})
        if taken:
            raise ValidationError("This WhatsApp number is already registered to another business")

        now = utcnow()
        existing = self.db[PROFILES].find_one({"_id": owner_id})
        services = [
            Service(id=new_id(), created_at=now, updated_at=now, **service.model_dump())
            for service in data.services
        ]
        fields = {
            "business_name": data.business_name,
            "whatsapp_number": whatsapp_number,
            "working_hours": {day: hours.model_dump() for day, hours in data.working_hours.items()},
            "address": data.address,
            "description": data.description,
            "updated_at": now,
        }
        if existing:
            # Services are managed through their own endpoints once a profile exists
            if data.services:
                fields["services"] = [s.model_dump() for s in services]
            doc = self.db[PROFILES].find_one_and_update(
                {"_id": owner_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
            )
            return _to_profile(doc), False

        fields.update(
            {
                "owner_id": owner_id,
                "services": [s.model_dump() for s in services],
                "created_at": now,
            }
        )
        create_document(self.db, PROFILES, fields, doc_id=owner_id)
        return self.get_profile(owner_id), True

    @store_operation("save service")
    def save_service(self, owner_id: str, data: ServiceIn, service_id: Optional[str] = None) -> Service:
        profile = self.require_profile(owner_id, "Business profile not found, create a profile first")
        services = list(profile.services)
        now = utcnow()

        if service_id:
            index = next((i for i, s in enumerate(services) if s.id == service_id), None)
            if index is None:
                raise NotFoundError("Service not found")
            service = Service(
                id=service_id, created_at=services[index].created_at, updated_at=now, **data.model_dump()
            )
            services[index] = service
        else:
            service = Service(id=new_id(), created_at=now, updated_at=now, **data.model_dump())
            services.append(service)

        self.db[PROFILES].update_one(
            {"_id": owner_id},
            {"$set": {"services": [s.model_dump() for s in services], "updated_at": now}},
        )
        return service

    @store_operation("delete service")
    def delete_service(self, owner_id: str, service_id: str):
        profile = self.require_profile(owner_id)
        remaining = [s for s in profile.services if s.id != service_id]
        if len(remaining) == len(profile.services):
            raise NotFoundError("Service not found")
        self.db[PROFILES].update_one(
            {"_id": owner_id},
            {"$set": {"services": [s.model_dump() for s in remaining], "updated_at": utcnow()}},
        )

    @store_operation("update working hours")
    def update_working_hours(self, owner_id: str, working_hours: Dict[str, Any]) -> Dict[str, Any]:
        self.require_profile(owner_id, "Business profile not found, create a profile first")
        hours = {day: day_hours.model_dump() for day, day_hours in working_hours.items()}
        self.db[PROFILES].update_one(
            {"_id": owner_id}, {"$set": {"working_hours": hours, "updated_at": utcnow()}}
        )
        return hours

    # Appointments

    @store_operation("create appointment")
    def create_appointment(self, appointment: Appointment) -> Appointment:
        appointment_id = create_document(self.db, APPOINTMENTS, appointment)
        return self.get_appointment(appointment_id)

    @store_operation("get appointment")
    def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        doc = self.db[APPOINTMENTS].find_one({"_id": appointment_id})
        return _to_appointment(doc) if doc else None

    @store_operation("list appointments")
    def list_appointments(
        self,
        parlour_id: str,
        status: Optional[str] = None,
        appointment_date: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> List[Appointment]:
        query: Dict[str, Any] = {"parlour_id": parlour_id}
        if status:
            query["status"] = status
        if appointment_date:
            query["appointment_date"] = appointment_date
        if customer_id:
            query["customer_id"] = customer_id
        return chronological(_to_appointment(d) for d in get_documents(self.db, APPOINTMENTS, query))

    @store_operation("find customer appointments")
    def find_customer_appointments(
        self,
        parlour_id: str,
        customer_phone: str,
        statuses: Optional[Iterable[str]] = None,
        from_date: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Appointment]:
        """Appointments of one customer at one parlour, most imminent first."""
        query: Dict[str, Any] = {"parlour_id": parlour_id, "customer_phone": normalize_phone(customer_phone)}
        if statuses:
            query["status"] = {"$in": list(statuses)}
        if from_date:
            query["appointment_date"] = {"$gte": from_date}
        appointments = chronological(_to_appointment(d) for d in get_documents(self.db, APPOINTMENTS, query))
        return appointments[:limit] if limit else appointments

    def find_by_reference(self, parlour_id: str, customer_phone: str, reference: str) -> List[Appointment]:
        reference = reference.strip().lower()
        return [
            a for a in self.find_customer_appointments(parlour_id, customer_phone)
            if a.id.lower().startswith(reference)
        ]

    @store_operation("update appointment")
    def update_appointment(self, appointment_id: str, changes: Dict[str, Any]) -> Appointment:
        changes = dict(changes, updated_at=utcnow())
        doc = self.db[APPOINTMENTS].find_one_and_update(
            {"_id": appointment_id}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFoundError("Appointment not found")
        return _to_appointment(doc)

    def set_status(self, appointment: Appointment, status: AppointmentStatus, note: Optional[str] = None) -> Appointment:
        changes: Dict[str, Any] = {"status": AppointmentStatus(status).value}
        if note:
            changes["notes"] = f"{appointment.notes}\n{note}" if appointment.notes else note
        return self.update_appointment(appointment.id, changes)

    @store_operation("get customer history")
    def customer_history(
        self, parlour_id: str, customer_id: Optional[str] = None, customer_phone: Optional[str] = None
    ) -> List[Appointment]:
        query: Dict[str, Any] = {"parlour_id": parlour_id}
        if customer_id:
            query["customer_id"] = customer_id
        if customer_phone:
            query["customer_phone"] = normalize_phone(customer_phone)
        docs = get_documents(self.db, APPOINTMENTS, query, sort=[("appointment_date", DESCENDING)])
        return [_to_appointment(d) for d in docs]

    @store_operation("list customers")
    def list_customers(self, parlour_id: str) -> List[CustomerSummary]:
        customers: Dict[str, CustomerSummary] = {}
        for doc in get_documents(self.db, APPOINTMENTS, {"parlour_id": parlour_id}):
            phone = doc.get("customer_phone")
            customer = customers.get(phone)
            if customer is None:
                customers[phone] = CustomerSummary(
                    customer_phone=phone,
                    customer_name=doc.get("customer_name", ""),
                    customer_id=doc.get("customer_id"),
                    last_appointment=doc.get("appointment_date", ""),
                    appointment_count=1,
                )
                continue
            customer.appointment_count += 1
            if doc.get("appointment_date", "") > customer.last_appointment:
                customer.last_appointment = doc["appointment_date"]
        return list(customers.values())

    # Users

    @store_operation("create user")
    def create_user(self, email: str, password_hash: str, full_name: str, phone_number: Optional[str],
                    role: str, plan: str) -> User:
        email = email.lower()
        if self.db[USERS].find_one({"email": email}):
            raise ValidationError("User with this email already exists")
        user_id = create_document(
            self.db,
            USERS,
            {
                "email": email,
                "password_hash": password_hash,
                "full_name": full_name,
                "phone_number": normalize_phone(phone_number) if phone_number else None,
                "role": role,
                "plan": plan,
            },
        )
        return self.get_user(user_id)

    @store_operation("get user")
    def get_user(self, user_id: str) -> Optional[User]:
        doc = self.db[USERS].find_one({"_id": user_id})
        return _to_user(doc) if doc else None

    @store_operation("get user")
    def get_user_by_email(self, email: str) -> Optional[User]:
        doc = self.db[USERS].find_one({"email": email.lower()})
        return _to_user(doc) if doc else None

    @store_operation("list users")
    def list_users(self) -> List[User]:
        return [_to_user(d) for d in get_documents(self.db, USERS, sort=[("created_at", ASCENDING)])]

    @store_operation("update user")
    def update_user(self, user_id: str, changes: Dict[str, Any]) -> User:
        changes = dict(changes, updated_at=utcnow())
        doc = self.db[USERS].find_one_and_update(
            {"_id": user_id}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFoundError("User not found")
        return _to_user(doc)

    @store_operation("delete account")
    def delete_account(self, user_id: str) -> Dict[str, int]:
        """Delete a user with its profile, appointments and drafts as one transaction."""
        if not self.db[USERS].find_one({"_id": user_id}):
            raise NotFoundError("User not found")

        def delete_all(session) -> Dict[str, int]:
            appointments = self.db[APPOINTMENTS].delete_many({"parlour_id": user_id}, session=session)
            drafts = self.db[DRAFTS].delete_many({"parlour_id": user_id}, session=session)
            profiles = self.db[PROFILES].delete_one({"_id": user_id}, session=session)
            self.db[USERS].delete_one({"_id": user_id}, session=session)
            return {
                "appointments": appointments.deleted_count,
                "drafts": drafts.deleted_count,
                "profiles": profiles.deleted_count,
            }

        with self.db.client.start_session() as session:
            deleted = session.with_transaction(delete_all)
        logger.info(f"Deleted account {user_id}: {deleted}")
        return deleted

    @store_operation("compute analytics")
    def analytics(self) -> Dict[str, Any]:
        analytics: Dict[str, Any] = {
            "total_users": 0,
            "users_by_plan": {"free": 0, "basic": 0, "premium": 0},
            "total_appointments": 0,
            "appointments_by_status": {s.value: 0 for s in AppointmentStatus},
            "total_revenue": 0.0,
            "user_stats": [],
        }
        for user in self.list_users():
            analytics["total_users"] += 1
            analytics["users_by_plan"][user.plan] = analytics["users_by_plan"].get(user.plan, 0) + 1
            analytics["user_stats"].append(
                {
                    "id": user.id,
                    "full_name": user.full_name,
                    "email": user.email,
                    "plan": user.plan,
                    "created_at": user.created_at.isoformat() if user.created_at else None,
                }
            )
        for doc in get_documents(self.db, APPOINTMENTS):
            analytics["total_appointments"] += 1
            status = doc.get("status") or AppointmentStatus.SCHEDULED.value
            analytics["appointments_by_status"][status] = analytics["appointments_by_status"].get(status, 0) + 1
            if doc.get("price") and status != AppointmentStatus.CANCELLED.value:
                analytics["total_revenue"] += float(doc["price"])
        return analytics

    # Draft bookings

    @store_operation("get draft booking")
    def get_draft(self, parlour_id: str, customer_phone: str, now: datetime) -> Optional[DraftBooking]:
        doc = self.db[DRAFTS].find_one({"_id": f"{parlour_id}:{customer_phone}"})
        if not doc:
            return None
        doc.pop("_id", None)
        draft = DraftBooking.model_validate(doc)
        # The TTL monitor runs about once a minute, so filter on read as well
        if _as_utc(draft.expires_at) <= _as_utc(now):
            return None
        return draft

    @store_operation("save draft booking")
    def save_draft(self, draft: DraftBooking) -> DraftBooking:
        self.db[DRAFTS].replace_one({"_id": draft.key}, draft.model_dump(), upsert=True)
        return draft

    @store_operation("delete draft booking")
    def delete_draft(self, parlour_id: str, customer_phone: str):
        self.db[DRAFTS].delete_one({"_id": f"{parlour_id}:{customer_phone}"})


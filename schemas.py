"""
Database Schemas

MongoDB collection schemas for the Glowbook booking backend, defined as
Pydantic models. They validate documents at the store boundary and request
bodies at the API boundary.

Collections:
- BusinessProfile -> "business_profiles" (keyed by owner id, services embedded)
- Appointment -> "appointments"
- User -> "users"
- DraftBooking -> "draft_bookings" (short-lived, keyed by parlour + customer phone)
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, field_validator, model_validator

from phone import validate_phone

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _parse_clock(value: str) -> str:
    try:
        parsed = datetime.strptime(value.strip(), "%H:%M")
    except ValueError:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return parsed.strftime("%H:%M")


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "noShow"


# Allowed forward transitions; setting the current status again is a no-op
STATUS_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}

ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)


def can_transition(current: str, new: str) -> bool:
    current_status, new_status = AppointmentStatus(current), AppointmentStatus(new)
    return current_status == new_status or new_status in STATUS_TRANSITIONS[current_status]


class UserRole(str, Enum):
    PARLOUR_OWNER = "parlourOwner"
    SUPERADMIN = "superadmin"


class Plan(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"


# Business profile

class DayHours(BaseModel):
    """Opening hours for one weekday: either closed, or open..close (24h HH:MM)."""
    closed: bool = Field(False, description="True when the parlour is closed all day")
    open: Optional[str] = Field(None, description="Opening time HH:MM")
    close: Optional[str] = Field(None, description="Closing time HH:MM")

    @model_validator(mode="after")
    def check_range(self):
        if self.closed:
            self.open = None
            self.close = None
            return self
        if not self.open or not self.close:
            raise ValueError("open and close are required unless the day is closed")
        self.open = _parse_clock(self.open)
        self.close = _parse_clock(self.close)
        if self.open >= self.close:
            raise ValueError(f"open ({self.open}) must be before close ({self.close})")
        return self


def validate_working_hours(value: Dict[str, Any]) -> Dict[str, DayHours]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("working hours must be an object keyed by weekday")
    hours = {}
    for day, entry in value.items():
        key = str(day).strip().lower()
        if key not in WEEKDAYS:
            raise ValueError(f"Unknown weekday '{day}'")
        hours[key] = entry if isinstance(entry, DayHours) else DayHours.model_validate(entry)
    return hours


WorkingHours = Annotated[Dict[str, DayHours], BeforeValidator(validate_working_hours)]


def check_phone(value) -> str:
    value = str(value)
    if not validate_phone(value):
        raise ValueError(f"Invalid phone number '{value}'")
    return value


PhoneNumber = Annotated[str, BeforeValidator(check_phone)]


class ServiceIn(BaseModel):
    name: str = Field(..., min_length=1, description="Service name, e.g., Haircut")
    duration: int = Field(..., gt=0, le=600, description="Duration in minutes")
    price: float = Field(..., ge=0, description="Price in the parlour's currency")
    description: Optional[str] = Field("", description="Short description")


class Service(ServiceIn):
    """
    Services offered by a parlour
    Embedded in: "business_profiles".services
    """
    id: str = Field(..., description="Stable id, unique within the profile")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProfileIn(BaseModel):
    business_name: str = Field(..., min_length=1)
    whatsapp_number: PhoneNumber = Field(..., description="Number WhatsApp routes to this parlour")
    services: List[ServiceIn] = Field(default_factory=list)
    working_hours: WorkingHours = Field(default_factory=dict)
    address: Union[Dict[str, Any], str] = Field(default_factory=dict)
    description: str = ""


class WorkingHoursIn(BaseModel):
    working_hours: WorkingHours


class BusinessProfile(BaseModel):
    """
    Business profile of a parlour
    Collection: "business_profiles" (_id is the owner's user id)
    """
    owner_id: str
    business_name: str
    whatsapp_number: str
    services: List[Service] = Field(default_factory=list)
    working_hours: WorkingHours = Field(default_factory=dict)
    address: Union[Dict[str, Any], str] = Field(default_factory=dict)
    description: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Appointments

class AppointmentIn(BaseModel):
    customer_id: Optional[str] = None
    customer_name: str = Field(..., min_length=1)
    customer_phone: PhoneNumber
    service_id: Optional[str] = None
    service_name: str = Field(..., min_length=1)
    appointment_date: date = Field(..., description="Calendar date YYYY-MM-DD")
    appointment_time: str = Field(..., min_length=1, description="Free text, stored as typed")
    duration: int = Field(60, gt=0, le=600)
    price: float = Field(0, ge=0)
    notes: str = ""


class AppointmentUpdate(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[PhoneNumber] = None
    service_name: Optional[str] = None
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = None
    duration: Optional[int] = Field(None, gt=0, le=600)
    price: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    status: Optional[AppointmentStatus] = None


class Appointment(BaseModel):
    """
    Booked appointments
    Collection: "appointments"
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: Optional[str] = None
    parlour_id: str
    business_name: str = ""
    customer_id: Optional[str] = None
    customer_name: str
    customer_phone: str = Field(..., description="Always carries a leading '+'")
    service_id: Optional[str] = None
    service_name: str
    appointment_date: str = Field(..., description="Canonical date YYYY-MM-DD")
    appointment_time: str
    duration: int = 60
    price: float = 0
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("appointment_date", mode="before")
    @classmethod
    def canonical_date(cls, value):
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        return date.fromisoformat(str(value)).isoformat()

    @property
    def reference(self) -> str:
        return (self.id or "")[:8]


class CustomerSummary(BaseModel):
    """Customer derived from appointments (not stored)."""
    customer_phone: str
    customer_name: str
    customer_id: Optional[str] = None
    last_appointment: str
    appointment_count: int


# Conversation drafts

class DraftBooking(BaseModel):
    """
    Booking under construction across WhatsApp selections
    Collection: "draft_bookings" (_id is "<parlour_id>:<customer_phone>")
    """
    parlour_id: str
    customer_phone: str
    customer_name: str = ""
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    duration: int = 60
    price: float = 0
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    expires_at: datetime

    @property
    def key(self) -> str:
        return f"{self.parlour_id}:{self.customer_phone}"

    @property
    def is_complete(self) -> bool:
        return bool(self.service_id and self.appointment_date and self.appointment_time)


# Accounts

class User(BaseModel):
    """
    Accounts of parlour owners and platform admins
    Collection: "users"
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str
    email: EmailStr
    full_name: str
    phone_number: Optional[str] = None
    role: UserRole = UserRole.PARLOUR_OWNER
    plan: Plan = Plan.FREE
    password_hash: str = Field("", exclude=True)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1)
    phone_number: PhoneNumber


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class UserProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[PhoneNumber] = None


class AdminUserIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1)
    phone_number: Optional[PhoneNumber] = None
    role: UserRole = UserRole.PARLOUR_OWNER
    plan: Plan = Plan.FREE


class AdminUserUpdate(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[PhoneNumber] = None
    role: Optional[UserRole] = None
    plan: Optional[Plan] = None
    password: Optional[str] = Field(None, min_length=6)

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from auth import get_current_user
from dependencies import get_dispatcher, get_store
from errors import ForbiddenError, NotFoundError, UpstreamDeliveryError, ValidationError
from logger import ContextLogger, setup_logger
from notifications import AppointmentNotice, NotificationDispatcher
from phone import normalize_phone
from repository import BookingStore
from routes import success
from schemas import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentIn,
    AppointmentStatus,
    AppointmentUpdate,
    User,
    can_transition,
)

logger = setup_logger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["Appointments"])


def get_owned_appointment(store: BookingStore, appointment_id: str, user: User) -> Appointment:
    appointment = store.get_appointment(appointment_id)
    if not appointment:
        raise NotFoundError("Appointment not found")
    if appointment.parlour_id != user.id:
        raise ForbiddenError("You do not have permission to access this appointment")
    return appointment


def notify(send, appointment: Appointment) -> bool:
    """Send an appointment message; delivery failures never fail the request."""
    log = ContextLogger(logger, parlour=appointment.parlour_id, appointment=appointment.id)
    try:
        send(appointment.customer_phone, AppointmentNotice.from_appointment(appointment))
        return True
    except UpstreamDeliveryError as e:
        log.error(f"Failed to send notification: {e.message}")
        return False


@router.get("")
def list_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    on_date: Optional[date] = Query(None, alias="date"),
    customer_id: Optional[str] = None,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    appointments = store.list_appointments(
        user.id,
        status=status_filter.value if status_filter else None,
        appointment_date=on_date.isoformat() if on_date else None,
        customer_id=customer_id,
    )
    return success([a.model_dump(mode="json") for a in appointments])


@router.get("/{appointment_id}")
def get_appointment(appointment_id: str, user: User = Depends(get_current_user), store: BookingStore = Depends(get_store)):
    appointment = get_owned_appointment(store, appointment_id, user)
    return success(appointment.model_dump(mode="json"))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_appointment(
    payload: AppointmentIn,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    profile = store.require_profile(user.id, "Business profile not found, create a profile first")
    data = payload.model_dump()
    data["customer_phone"] = normalize_phone(data["customer_phone"])
    appointment = store.create_appointment(
        Appointment(
            parlour_id=user.id,
            business_name=profile.business_name,
            status=AppointmentStatus.SCHEDULED,
            **data,
        )
    )
    logger.info(f"Created appointment {appointment.id} for {user.id}")
    notify(dispatcher.send_appointment_confirmation, appointment)
    return success(appointment.model_dump(mode="json"), "Appointment created successfully")


@router.patch("/{appointment_id}")
def update_appointment(
    appointment_id: str,
    payload: AppointmentUpdate,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    appointment = get_owned_appointment(store, appointment_id, user)
    changes = payload.model_dump(mode="json", exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")

    new_status = changes.get("status")
    if new_status and not can_transition(appointment.status, new_status):
        raise ValidationError(f"Cannot change status from {appointment.status} to {new_status}")
    if "customer_phone" in changes:
        changes["customer_phone"] = normalize_phone(changes["customer_phone"])

    updated = store.update_appointment(appointment_id, changes)

    if new_status and new_status != appointment.status:
        if new_status == AppointmentStatus.CONFIRMED.value:
            notify(dispatcher.send_appointment_confirmation, updated)
        elif new_status == AppointmentStatus.CANCELLED.value:
            notify(dispatcher.send_appointment_cancellation, updated)

    return success(updated.model_dump(mode="json"), "Appointment updated successfully")


@router.delete("/{appointment_id}")
def cancel_appointment(
    appointment_id: str,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    appointment = get_owned_appointment(store, appointment_id, user)
    if appointment.status == AppointmentStatus.CANCELLED.value:
        return success(appointment.model_dump(mode="json"), "Appointment is already cancelled")
    if not can_transition(appointment.status, AppointmentStatus.CANCELLED.value):
        raise ValidationError(f"Cannot cancel an appointment that is {appointment.status}")

    cancelled = store.set_status(appointment, AppointmentStatus.CANCELLED, note="Cancelled by the parlour")
    notify(dispatcher.send_appointment_cancellation, cancelled)
    return success(cancelled.model_dump(mode="json"), "Appointment cancelled successfully")


@router.post("/{appointment_id}/remind")
def send_reminder(
    appointment_id: str,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    appointment = get_owned_appointment(store, appointment_id, user)
    if appointment.status not in ACTIVE_STATUSES:
        raise ValidationError(f"Cannot send a reminder for an appointment that is {appointment.status}")
    # Failing both template and text surfaces as 502
    dispatcher.send_appointment_reminder(appointment.customer_phone, AppointmentNotice.from_appointment(appointment))
    return success(message="Reminder sent successfully")

"""
WhatsApp conversation handling.

ConversationRouter takes one inbound message at a time, works out which
parlour it was sent to and what the customer wants, touches the store at most
once for writes and answers with one outbound message (a catalog longer than
ten services goes out as several lists).

Free text is classified by intent_parser. Interactive replies carry their
step in the reply id (SERVICE_ / DATE_ / TIME_ / CONFIRM_BOOKING /
CANCEL_BOOKING); the selections made so far live in a DraftBooking keyed by
parlour and customer phone, so a booking survives across separate webhook
deliveries.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from config import settings
from date_resolver import canonical, format_display_date, format_short_date, is_past, resolve_date_or_raise
from errors import ParseFailure, UpstreamDeliveryError
from intent_parser import (
    CANCEL_BOOKING,
    CONFIRM_BOOKING,
    Intent,
    ParsedMessage,
    Selection,
    classify,
    date_payload,
    parse_payload,
    service_payload,
    time_payload,
)
from logger import ContextLogger, setup_logger
from notifications import MAX_LIST_ROWS, AppointmentNotice, NotificationDispatcher
from phone import normalize_phone
from repository import BookingStore
from schemas import (
    ACTIVE_STATUSES,
    WEEKDAYS,
    Appointment,
    AppointmentStatus,
    BusinessProfile,
    DayHours,
    DraftBooking,
)
from service_matcher import catalog_names, match_service

logger = setup_logger(__name__)

DATE_WINDOW_DAYS = 14
MAX_DATE_OPTIONS = 7
MAX_TIME_SLOTS = 10
DEFAULT_OPEN = "10:00"
DEFAULT_CLOSE = "18:00"

VOCABULARY = (
    "Here's what you can send:\n"
    "• *services* to see our services\n"
    "• *hours* to see our opening hours\n"
    "• *status* to see your upcoming appointments\n"
    "• *cancel* to cancel an appointment\n"
    "• *confirm* to confirm an appointment\n"
    "• *help* to see this message again\n\n"
    'To book, send a message like: "Book Haircut on 2nd May 3PM"'
)

NOT_REGISTERED_TEXT = "Sorry, this number is not registered with any parlour."
RESTART_TEXT = "Sorry, your booking session has expired. Send *services* to start again."
ERROR_TEXT = (
    "Sorry, we encountered an error processing your message. "
    "Please try again or contact the parlour directly."
)


def business_now() -> datetime:
    """Current time in the businesses' local timezone."""
    return datetime.now(ZoneInfo(settings.TIMEZONE))


def display_time(clock: str) -> str:
    """14:00 -> 2:00 PM"""
    return datetime.strptime(clock, "%H:%M").strftime("%I:%M %p").lstrip("0")


def _objects(items: Any, kind: str) -> List[Dict[str, Any]]:
    """The JSON objects of a webhook list; anything else in it is logged and skipped."""
    if not isinstance(items, list):
        if items is not None:
            logger.warning(f"Ignoring webhook {kind} list of type {type(items).__name__}")
        return []
    objects = [item for item in items if isinstance(item, dict)]
    if len(objects) < len(items):
        logger.warning(f"Ignoring {len(items) - len(objects)} malformed webhook {kind}(s)")
    return objects


def contact_name(contacts: List[Dict[str, Any]], wa_id: str) -> Optional[str]:
    """Profile name of the sender, preferring the contact whose wa_id matches."""
    named = [c for c in contacts or [] if (c.get("profile") or {}).get("name")]
    for contact in named:
        if contact.get("wa_id") == wa_id:
            return contact["profile"]["name"].strip()
    return named[0]["profile"]["name"].strip() if named else None


@dataclass
class Inbound:
    """Who a message came from and which parlour it is for."""
    profile: BusinessProfile
    customer_phone: str
    customer_name: str
    log: ContextLogger

    @property
    def parlour_id(self) -> str:
        return self.profile.owner_id


class ConversationRouter:
    def __init__(
        self,
        store: BookingStore,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = business_now,
        draft_ttl: timedelta = timedelta(minutes=settings.DRAFT_TTL_MINUTES),
        list_limit: int = settings.CANCEL_LIST_LIMIT,
        currency: str = settings.CURRENCY_SYMBOL,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.draft_ttl = draft_ttl
        self.list_limit = list_limit
        self.currency = currency

    # Webhook events

    def process_event(self, body: Dict[str, Any]) -> int:
        """
        Handle every message of a webhook delivery.

        Failures are logged per message and never propagate: the delivery has
        already been acknowledged.

        Returns:
            Number of messages handled without error
        """
        handled = 0
        for entry in _objects(body.get("entry"), "entry"):
            for change in _objects(entry.get("changes"), "change"):
                if change.get("field") != "messages":
                    logger.info(f"Ignoring webhook change field '{change.get('field')}'")
                    continue
                value = change.get("value")
                messages = value.get("messages") if isinstance(value, dict) else None
                if not messages:
                    logger.debug(f"Webhook change without messages: {value}")
                    continue
                for message in _objects(messages, "message"):
                    try:
                        self.handle_message(message, value.get("metadata") or {}, value.get("contacts") or [])
                        handled += 1
                    except Exception:
                        logger.exception(f"Error processing WhatsApp message {message.get('id')}")
                        self._report_error(message)
        return handled

    def _report_error(self, message: Dict[str, Any]):
        to = normalize_phone(message.get("from"))
        if not to:
            return
        try:
            self.dispatcher.send_text(to, ERROR_TEXT)
        except UpstreamDeliveryError as e:
            logger.error(f"Error sending error message to {to}: {e.message}")

    def handle_message(self, message: Dict[str, Any], metadata: Dict[str, Any],
                       contacts: Optional[List[Dict[str, Any]]] = None):
        customer_phone = normalize_phone(message.get("from"))
        if not customer_phone:
            logger.info("Ignoring WhatsApp message without a sender")
            return

        profile = self.store.find_profile_by_channel(
            [metadata.get("phone_number_id"), metadata.get("display_phone_number")]
        )
        if not profile:
            logger.error(f"No business found for WhatsApp number {metadata.get('display_phone_number')}")
            self._deliver(ContextLogger(logger, customer=customer_phone),
                          self.dispatcher.send_text, customer_phone, NOT_REGISTERED_TEXT)
            return

        inbound = Inbound(
            profile=profile,
            customer_phone=customer_phone,
            customer_name=contact_name(contacts, message.get("from")) or f"WhatsApp Customer ({customer_phone})",
            log=ContextLogger(logger, parlour=profile.owner_id, customer=customer_phone),
        )

        message_type = message.get("type")
        if message_type == "text":
            self.handle_text(inbound, (message.get("text") or {}).get("body", ""))
        elif message_type == "button":
            button = message.get("button") or {}
            if parse_payload(button.get("payload")) is None and button.get("text"):
                # Quick replies on template messages carry their label as text
                self.handle_text(inbound, button["text"])
            else:
                self.handle_selection(inbound, button.get("payload"))
        elif message_type == "interactive":
            interactive = message.get("interactive") or {}
            reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
            self.handle_selection(inbound, reply.get("id"))
        else:
            inbound.log.info(f"Unsupported message type '{message_type}'")
            self._reply(inbound, VOCABULARY)

    # Delivery

    def _deliver(self, log: ContextLogger, send: Callable, *args, **kwargs) -> bool:
        try:
            send(*args, **kwargs)
            return True
        except UpstreamDeliveryError as e:
            log.error(f"Failed to deliver WhatsApp reply: {e.message}")
            return False

    def _reply(self, inbound: Inbound, text: str) -> bool:
        return self._deliver(inbound.log, self.dispatcher.send_text, inbound.customer_phone, text)

    def _notify_confirmation(self, inbound: Inbound, appointment: Appointment) -> bool:
        return self._deliver(
            inbound.log,
            self.dispatcher.send_appointment_confirmation,
            inbound.customer_phone,
            AppointmentNotice.from_appointment(appointment),
        )

    # Free text

    def handle_text(self, inbound: Inbound, text: str):
        parsed = classify(text)
        inbound.log.info(f"Classified message as {parsed.intent.value}")
        handlers = {
            Intent.WELCOME: self.send_welcome,
            Intent.SERVICES: self.send_services,
            Intent.HOURS: self.send_hours,
            Intent.STATUS: self.send_status,
            Intent.HELP: self.send_help,
        }
        if parsed.intent in handlers:
            handlers[parsed.intent](inbound)
        elif parsed.intent == Intent.CANCEL:
            self.cancel(inbound, parsed.reference)
        elif parsed.intent == Intent.CONFIRM:
            self.confirm(inbound, parsed.reference)
        elif parsed.intent == Intent.BOOKING:
            self.book_from_text(inbound, parsed, text)
        else:
            self._reply(inbound, f"Sorry, I didn't understand that.\n\n{VOCABULARY}")

    def send_welcome(self, inbound: Inbound):
        self._reply(inbound, f"Hi {inbound.customer_name}! Welcome to *{inbound.profile.business_name}*.\n\n{VOCABULARY}")

    def send_help(self, inbound: Inbound):
        self._reply(inbound, VOCABULARY)

    def send_services(self, inbound: Inbound):
        """Services go out ten to a list message so every one of them stays selectable."""
        services = inbound.profile.services
        if not services:
            self._reply(inbound, f"{inbound.profile.business_name} hasn't listed any services yet.")
            return
        rows = [
            {
                "id": service_payload(service.id),
                "title": service.name,
                "description": f"{service.duration} mins - {self.currency}{service.price:g}",
            }
            for service in services
        ]
        pages = [rows[start:start + MAX_LIST_ROWS] for start in range(0, len(rows), MAX_LIST_ROWS)]
        for number, page in enumerate(pages, start=1):
            if number == 1:
                body = f"Here are the services at {inbound.profile.business_name}. Pick one to book it."
            else:
                body = f"More services at {inbound.profile.business_name} ({number}/{len(pages)})."
            title = "Services" if len(pages) == 1 else f"Services {number}/{len(pages)}"
            delivered = self._deliver(
                inbound.log,
                self.dispatcher.send_list,
                inbound.customer_phone,
                body,
                "View services",
                [{"title": title, "rows": page}],
            )
            if not delivered:
                break

    def send_hours(self, inbound: Inbound):
        lines = [f"*{inbound.profile.business_name} opening hours*", ""]
        for day in WEEKDAYS:
            hours = self._weekday_hours(inbound.profile, day)
            if hours is None:
                lines.append(f"{day.capitalize()}: Closed")
            else:
                lines.append(f"{day.capitalize()}: {hours.open} - {hours.close}")
        self._reply(inbound, "\n".join(lines))

    def _appointment_line(self, appointment: Appointment) -> str:
        return (
            f"• {appointment.service_name} on {format_short_date(appointment.appointment_date)} "
            f"at {appointment.appointment_time} ({appointment.status}), ref: *{appointment.reference}*"
        )

    def send_status(self, inbound: Inbound):
        today = self.clock().date()
        appointments = self.store.find_customer_appointments(
            inbound.parlour_id,
            inbound.customer_phone,
            statuses=ACTIVE_STATUSES,
            from_date=canonical(today),
            limit=self.list_limit,
        )
        if not appointments:
            self._reply(inbound, "You have no upcoming appointments. Send *services* to book one.")
            return
        lines = ["Your upcoming appointments:"] + [self._appointment_line(a) for a in appointments]
        self._reply(inbound, "\n".join(lines))

    def cancel(self, inbound: Inbound, reference: Optional[str]):
        if not reference:
            appointments = self.store.find_customer_appointments(
                inbound.parlour_id,
                inbound.customer_phone,
                statuses=ACTIVE_STATUSES,
                from_date=canonical(self.clock().date()),
                limit=self.list_limit,
            )
            if not appointments:
                self._reply(inbound, "You have no appointments to cancel.")
                return
            lines = ["Your appointments:"] + [self._appointment_line(a) for a in appointments]
            lines.append("\nReply *cancel <ref>* to cancel one, e.g. cancel " + appointments[0].reference)
            self._reply(inbound, "\n".join(lines))
            return

        appointment = self._resolve_reference(inbound, reference, ACTIVE_STATUSES)
        if appointment is None:
            return
        if appointment.status == AppointmentStatus.CANCELLED.value:
            self._reply(inbound, f"Your appointment {appointment.reference} is already cancelled.")
            return
        if appointment.status not in ACTIVE_STATUSES:
            self._reply(inbound, f"Your appointment {appointment.reference} is {appointment.status} and can no longer be cancelled.")
            return

        now = self.clock()
        cancelled = self.store.set_status(
            appointment, AppointmentStatus.CANCELLED, note=f"Cancelled by customer via WhatsApp on {now:%Y-%m-%d %H:%M}"
        )
        inbound.log.info(f"Cancelled appointment {cancelled.id}")
        self._deliver(
            inbound.log,
            self.dispatcher.send_appointment_cancellation,
            inbound.customer_phone,
            AppointmentNotice.from_appointment(cancelled),
        )

    def confirm(self, inbound: Inbound, reference: Optional[str]):
        scheduled = (AppointmentStatus.SCHEDULED.value,)
        if not reference:
            appointments = self.store.find_customer_appointments(
                inbound.parlour_id,
                inbound.customer_phone,
                statuses=scheduled,
                from_date=canonical(self.clock().date()),
                limit=self.list_limit,
            )
            if not appointments:
                self._reply(inbound, "You have no appointments waiting for confirmation.")
                return
            lines = ["Appointments waiting for confirmation:"] + [self._appointment_line(a) for a in appointments]
            lines.append("\nReply *confirm <ref>* to confirm one, e.g. confirm " + appointments[0].reference)
            self._reply(inbound, "\n".join(lines))
            return

        appointment = self._resolve_reference(inbound, reference, scheduled)
        if appointment is None:
            return
        if appointment.status == AppointmentStatus.CONFIRMED.value:
            self._reply(inbound, f"Your appointment {appointment.reference} is already confirmed.")
            return
        if appointment.status != AppointmentStatus.SCHEDULED.value:
            self._reply(inbound, f"Your appointment {appointment.reference} is {appointment.status} and cannot be confirmed.")
            return

        confirmed = self.store.set_status(appointment, AppointmentStatus.CONFIRMED, note="Confirmed by customer via WhatsApp")
        inbound.log.info(f"Confirmed appointment {confirmed.id}")
        self._notify_confirmation(inbound, confirmed)

    def _resolve_reference(self, inbound: Inbound, reference: str, actionable) -> Optional[Appointment]:
        """
        Find the one appointment a reference points at, replying when there is
        none or more than one actionable match.
        """
        matches = self.store.find_by_reference(inbound.parlour_id, inbound.customer_phone, reference)
        if not matches:
            self._reply(
                inbound,
                f"Sorry, we couldn't find an appointment with reference {reference}. "
                "Send *status* to see your appointments.",
            )
            return None
        candidates = [a for a in matches if a.status in actionable] or matches
        if len(candidates) > 1:
            self._reply(
                inbound,
                f"More than one appointment matches {reference}. Please send a longer reference.",
            )
            return None
        return candidates[0]

    def book_from_text(self, inbound: Inbound, parsed: ParsedMessage, text: str):
        service = match_service(parsed.service_text, inbound.profile.services)
        if not service:
            self._reply(
                inbound,
                f'Sorry, we couldn\'t find the service "{parsed.service_text}". '
                f"Available services: {catalog_names(inbound.profile.services)}",
            )
            return

        now = self.clock()
        try:
            appointment_date = resolve_date_or_raise(parsed.date_text, now)
        except ParseFailure:
            self._reply(
                inbound,
                f'Sorry, I couldn\'t understand the date "{parsed.date_text}". '
                'Try "tomorrow", "next Monday", "15th May" or "15/05".',
            )
            return
        if is_past(appointment_date, now):
            self._reply(
                inbound,
                f"Sorry, {format_display_date(appointment_date)} is in the past. "
                "You cannot book an appointment in the past, please choose another date.",
            )
            return

        appointment = self.store.create_appointment(
            Appointment(
                parlour_id=inbound.parlour_id,
                business_name=inbound.profile.business_name,
                customer_name=inbound.customer_name,
                customer_phone=inbound.customer_phone,
                service_id=service.id,
                service_name=service.name,
                appointment_date=canonical(appointment_date),
                appointment_time=parsed.time_text,
                duration=service.duration,
                price=service.price,
                status=AppointmentStatus.SCHEDULED,
                notes=f'Booked via WhatsApp with message: "{text.strip()}"',
            )
        )
        inbound.log.info(f"Created appointment {appointment.id} from WhatsApp")
        self._notify_confirmation(inbound, appointment)

    # Interactive selections

    def handle_selection(self, inbound: Inbound, payload_id: Optional[str]):
        selection = parse_payload(payload_id)
        if selection is None:
            inbound.log.info(f"Unknown selection payload '{payload_id}'")
            self._reply(inbound, RESTART_TEXT)
            return

        if selection.kind == Selection.SERVICE:
            self.select_service(inbound, selection.value)
        elif selection.kind == Selection.DATE:
            self.select_date(inbound, selection.value)
        elif selection.kind == Selection.TIME:
            self.select_time(inbound, selection.value)
        elif selection.kind == Selection.CONFIRM:
            self.confirm_draft(inbound)
        else:
            self.abandon_draft(inbound)

    def _load_draft(self, inbound: Inbound) -> Optional[DraftBooking]:
        return self.store.get_draft(inbound.parlour_id, inbound.customer_phone, self.clock())

    def _save_draft(self, draft: DraftBooking) -> DraftBooking:
        draft.expires_at = (self.clock() + self.draft_ttl).astimezone(timezone.utc)
        return self.store.save_draft(draft)

    def _weekday_hours(self, profile: BusinessProfile, weekday: str) -> Optional[DayHours]:
        """
        Hours for a weekday, or None when the parlour is closed that day.

        A profile without any working hours is open every day from 10:00 to 18:00.
        """
        if not profile.working_hours:
            return DayHours(open=DEFAULT_OPEN, close=DEFAULT_CLOSE)
        hours = profile.working_hours.get(weekday)
        if hours is None or hours.closed:
            return None
        return hours

    def _day_hours(self, profile: BusinessProfile, day: date) -> Optional[DayHours]:
        return self._weekday_hours(profile, WEEKDAYS[day.weekday()])

    def open_dates(self, profile: BusinessProfile, today: date) -> List[date]:
        dates = []
        for offset in range(DATE_WINDOW_DAYS):
            day = today + timedelta(days=offset)
            if self._day_hours(profile, day) is not None:
                dates.append(day)
            if len(dates) == MAX_DATE_OPTIONS:
                break
        return dates

    def time_slots(self, hours: DayHours, day: date, now: datetime) -> List[str]:
        """Hourly start times from opening up to closing; past ones are left out today."""
        start = datetime.combine(day, datetime.strptime(hours.open, "%H:%M").time())
        close = datetime.combine(day, datetime.strptime(hours.close, "%H:%M").time())
        current = now.replace(tzinfo=None)
        slots = []
        slot = start
        while slot < close and len(slots) < MAX_TIME_SLOTS:
            if slot > current:
                slots.append(slot.strftime("%H:%M"))
            slot += timedelta(hours=1)
        return slots

    def select_service(self, inbound: Inbound, service_id: str):
        service = next((s for s in inbound.profile.services if s.id == service_id), None)
        if service is None:
            self._reply(inbound, "Sorry, that service is no longer available. Send *services* to see our services.")
            return

        now = self.clock()
        self._save_draft(
            DraftBooking(
                parlour_id=inbound.parlour_id,
                customer_phone=inbound.customer_phone,
                customer_name=inbound.customer_name,
                service_id=service.id,
                service_name=service.name,
                duration=service.duration,
                price=service.price,
                expires_at=now,
            )
        )

        today = now.date()
        dates = self.open_dates(inbound.profile, today)
        if not dates:
            self._reply(inbound, "Sorry, we have no open days in the next two weeks. Please contact the parlour directly.")
            return

        rows = []
        for day in dates:
            if day == today:
                label = "Today"
            elif day == today + timedelta(days=1):
                label = "Tomorrow"
            else:
                label = format_display_date(day)
            hours = self._day_hours(inbound.profile, day)
            rows.append({"id": date_payload(canonical(day)), "title": format_short_date(day),
                         "description": f"{label}, {hours.open} - {hours.close}"})

        self._deliver(
            inbound.log,
            self.dispatcher.send_list,
            inbound.customer_phone,
            f"You picked *{service.name}*. Which day works for you?",
            "Choose date",
            [{"title": "Available dates", "rows": rows}],
        )

    def select_date(self, inbound: Inbound, iso_date: str):
        draft = self._load_draft(inbound)
        if draft is None or not draft.service_id:
            self._reply(inbound, RESTART_TEXT)
            return
        try:
            day = date.fromisoformat(iso_date)
        except ValueError:
            self._reply(inbound, RESTART_TEXT)
            return

        now = self.clock()
        if is_past(day, now):
            self._reply(inbound, f"Sorry, {format_display_date(day)} is in the past. Please pick another date.")
            return
        hours = self._day_hours(inbound.profile, day)
        if hours is None:
            self._reply(inbound, f"Sorry, we're closed on {format_display_date(day)}. Please pick another date.")
            return

        slots = self.time_slots(hours, day, now)
        if not slots:
            self._reply(inbound, f"Sorry, there are no slots left on {format_display_date(day)}. Please pick another date.")
            return

        draft.appointment_date = canonical(day)
        draft.appointment_time = None
        self._save_draft(draft)

        rows = [{"id": time_payload(slot), "title": display_time(slot)} for slot in slots]
        self._deliver(
            inbound.log,
            self.dispatcher.send_list,
            inbound.customer_phone,
            f"*{draft.service_name}* on {format_display_date(day)}. What time suits you?",
            "Choose time",
            [{"title": "Available times", "rows": rows}],
        )

    def select_time(self, inbound: Inbound, clock: str):
        draft = self._load_draft(inbound)
        if draft is None or not draft.service_id or not draft.appointment_date:
            self._reply(inbound, RESTART_TEXT)
            return
        try:
            draft.appointment_time = display_time(clock)
        except ValueError:
            self._reply(inbound, RESTART_TEXT)
            return
        self._save_draft(draft)

        summary = (
            "Please confirm your booking:\n\n"
            f"Service: {draft.service_name}\n"
            f"Date: {format_display_date(draft.appointment_date)}\n"
            f"Time: {draft.appointment_time}\n"
            f"Price: {self.currency}{draft.price:g}"
        )
        self._deliver(
            inbound.log,
            self.dispatcher.send_buttons,
            inbound.customer_phone,
            summary,
            [{"id": CONFIRM_BOOKING, "title": "Confirm"}, {"id": CANCEL_BOOKING, "title": "Cancel"}],
        )

    def confirm_draft(self, inbound: Inbound):
        draft = self._load_draft(inbound)
        if draft is None or not draft.is_complete:
            self._reply(inbound, RESTART_TEXT)
            return
        if is_past(date.fromisoformat(draft.appointment_date), self.clock()):
            self.store.delete_draft(inbound.parlour_id, inbound.customer_phone)
            self._reply(inbound, "Sorry, that date is now in the past. Send *services* to book again.")
            return

        appointment = self.store.create_appointment(
            Appointment(
                parlour_id=inbound.parlour_id,
                business_name=inbound.profile.business_name,
                customer_name=draft.customer_name or inbound.customer_name,
                customer_phone=inbound.customer_phone,
                service_id=draft.service_id,
                service_name=draft.service_name,
                appointment_date=draft.appointment_date,
                appointment_time=draft.appointment_time,
                duration=draft.duration,
                price=draft.price,
                status=AppointmentStatus.SCHEDULED,
                notes="Booked via WhatsApp selection",
            )
        )
        self.store.delete_draft(inbound.parlour_id, inbound.customer_phone)
        inbound.log.info(f"Created appointment {appointment.id} from WhatsApp selection")
        self._notify_confirmation(inbound, appointment)

    def abandon_draft(self, inbound: Inbound):
        self.store.delete_draft(inbound.parlour_id, inbound.customer_phone)
        self._reply(inbound, "Booking abandoned. Send *services* whenever you'd like to book.")

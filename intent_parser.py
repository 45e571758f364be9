"""
Classify inbound WhatsApp text into commands or booking attempts, and decode
the ids carried by interactive (list / button) replies.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Intent(str, Enum):
    WELCOME = "welcome"
    SERVICES = "services"
    HOURS = "hours"
    STATUS = "status"
    HELP = "help"
    CANCEL = "cancel"
    CONFIRM = "confirm"
    BOOKING = "booking"
    UNRECOGNIZED = "unrecognized"


COMMANDS = {
    "hi": Intent.WELCOME,
    "hello": Intent.WELCOME,
    "hey": Intent.WELCOME,
    "services": Intent.SERVICES,
    "menu": Intent.SERVICES,
    "hours": Intent.HOURS,
    "timing": Intent.HOURS,
    "timings": Intent.HOURS,
    "status": Intent.STATUS,
    "my booking": Intent.STATUS,
    "my appointment": Intent.STATUS,
    "help": Intent.HELP,
}

# Commands whose remainder is an optional appointment reference
PREFIX_COMMANDS = (
    ("cancel", Intent.CANCEL),
    ("confirm", Intent.CONFIRM),
)

TIME_EXPR = r"(\d{1,2}(?::\d{2})?(?:\s*[ap]m)?)"
_END = r"\s*[.!]?\s*$"

# Tried in order, first match wins
BOOKING_PATTERNS = (
    # Book Haircut on 2nd May 3PM
    re.compile(r"^book\s+(.+?)\s+on\s+(.+?)\s+(?:at\s+)?" + TIME_EXPR + _END, re.IGNORECASE),
    # Book manicure tomorrow at 2:30 PM
    re.compile(
        r"^book\s+(.+?)\s+(?:(?:on|for)\s+)?(today|tomorrow|day after tomorrow)\s+(?:at\s+)?" + TIME_EXPR + _END,
        re.IGNORECASE,
    ),
    # Book haircut for next Monday at 11 AM
    re.compile(r"^book\s+(.+?)\s+for\s+(.+?)\s+(?:at\s+)?" + TIME_EXPR + _END, re.IGNORECASE),
)


@dataclass(frozen=True)
class ParsedMessage:
    intent: Intent
    reference: Optional[str] = None
    service_text: Optional[str] = None
    date_text: Optional[str] = None
    time_text: Optional[str] = None


def parse_booking(text: str) -> Optional[ParsedMessage]:
    """Extract {service, date, time} from a booking sentence, or None."""
    message = re.sub(r"\s+", " ", text.strip())
    for pattern in BOOKING_PATTERNS:
        match = pattern.match(message)
        if match:
            service, date_text, time_text = (group.strip() for group in match.groups())
            return ParsedMessage(
                intent=Intent.BOOKING,
                service_text=service,
                date_text=date_text,
                time_text=time_text,
            )
    return None


def classify(text: str) -> ParsedMessage:
    """
    Classify a free-text message.

    Commands are matched case-insensitively on the whole trimmed message;
    "cancel" and "confirm" may be followed by a reference code.
    """
    normalized = re.sub(r"\s+", " ", (text or "").strip().lower())
    if not normalized:
        return ParsedMessage(intent=Intent.UNRECOGNIZED)

    if normalized in COMMANDS:
        return ParsedMessage(intent=COMMANDS[normalized])

    for prefix, intent in PREFIX_COMMANDS:
        if normalized.startswith(prefix):
            reference = normalized[len(prefix):].strip()
            return ParsedMessage(intent=intent, reference=reference or None)

    return parse_booking(text) or ParsedMessage(intent=Intent.UNRECOGNIZED)


# Interactive reply ids

class Selection(str, Enum):
    SERVICE = "service"
    DATE = "date"
    TIME = "time"
    CONFIRM = "confirm"
    ABANDON = "abandon"


SERVICE_PREFIX = "SERVICE_"
BOOK_SERVICE_PREFIX = "BOOK_SERVICE_"
DATE_PREFIX = "DATE_"
TIME_PREFIX = "TIME_"
CONFIRM_BOOKING = "CONFIRM_BOOKING"
CANCEL_BOOKING = "CANCEL_BOOKING"


@dataclass(frozen=True)
class SelectionPayload:
    kind: Selection
    value: Optional[str] = None


def service_payload(service_id: str) -> str:
    return f"{SERVICE_PREFIX}{service_id}"


def date_payload(iso_date: str) -> str:
    return f"{DATE_PREFIX}{iso_date}"


def time_payload(clock: str) -> str:
    return f"{TIME_PREFIX}{clock}"


def parse_payload(payload_id: str) -> Optional[SelectionPayload]:
    """Decode an interactive reply id; None when the id is not one of ours."""
    payload_id = (payload_id or "").strip()
    if payload_id == CONFIRM_BOOKING:
        return SelectionPayload(Selection.CONFIRM)
    if payload_id == CANCEL_BOOKING:
        return SelectionPayload(Selection.ABANDON)
    prefixes = (
        (BOOK_SERVICE_PREFIX, Selection.SERVICE),
        (SERVICE_PREFIX, Selection.SERVICE),
        (DATE_PREFIX, Selection.DATE),
        (TIME_PREFIX, Selection.TIME),
    )
    for prefix, kind in prefixes:
        if payload_id.startswith(prefix) and len(payload_id) > len(prefix):
            return SelectionPayload(kind, payload_id[len(prefix):])
    return None

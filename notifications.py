"""
Outbound WhatsApp messages through the Cloud API.

Appointment events (confirmation, reminder, cancellation) go out as a
pre-registered template first and fall back to an equivalent text message.
Interactive prompts (lists, buttons) have no template tier.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests

from config import settings
from date_resolver import format_display_date
from errors import UpstreamDeliveryError
from logger import setup_logger

logger = setup_logger(__name__)

# Platform limits
MAX_TEXT_LENGTH = 4096
MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_LIST_ROWS = 10
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72
MAX_SECTION_TITLE = 24
MAX_REPLY_ID = 256
MAX_HEADER = 60
MAX_FOOTER = 60

CONFIRMATION_TEMPLATE = "appointment_confirmation"
REMINDER_TEMPLATE = "appointment_reminder"
CANCELLATION_TEMPLATE = "appointment_cancellation"


@dataclass(frozen=True)
class WhatsAppConfig:
    api_url: str
    api_version: str
    phone_number_id: str
    access_token: str
    template_language: str = "en_US"
    timeout: float = 10

    @property
    def messages_url(self) -> str:
        return f"{self.api_url.rstrip('/')}/{self.api_version}/{self.phone_number_id}/messages"

    @classmethod
    def from_settings(cls) -> "WhatsAppConfig":
        return cls(
            api_url=settings.WHATSAPP_API_URL,
            api_version=settings.WHATSAPP_API_VERSION,
            phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
            access_token=settings.WHATSAPP_API_TOKEN,
            template_language=settings.WHATSAPP_TEMPLATE_LANGUAGE,
            timeout=settings.WHATSAPP_TIMEOUT_SECONDS,
        )


@dataclass(frozen=True)
class AppointmentNotice:
    """Fields every appointment message carries."""
    customer_name: str
    service_name: str
    appointment_date: str
    appointment_time: str

    @property
    def display_date(self) -> str:
        return format_display_date(self.appointment_date)

    @classmethod
    def from_appointment(cls, appointment) -> "AppointmentNotice":
        return cls(
            customer_name=appointment.customer_name,
            service_name=appointment.service_name,
            appointment_date=appointment.appointment_date,
            appointment_time=appointment.appointment_time,
        )


def _clip(text: str, limit: int) -> str:
    text = str(text or "")
    return text if len(text) <= limit else text[: limit - 1] + "…"


class NotificationDispatcher:
    """Sends text, template and interactive messages to WhatsApp recipients."""

    def __init__(self, config: WhatsAppConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }
        try:
            response = self.session.post(
                self.config.messages_url, json=payload, headers=headers, timeout=self.config.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            detail = getattr(e.response, "text", "") if getattr(e, "response", None) is not None else ""
            logger.error(f"WhatsApp API error sending {payload.get('type')} to {payload.get('to')}: {e} {detail}")
            raise UpstreamDeliveryError(f"Failed to send WhatsApp {payload.get('type')} message") from e

        logger.info(f"WhatsApp {payload['type']} message sent to {payload['to']}")
        try:
            return response.json()
        except ValueError:
            return {}

    def _base(self, to: str, message_type: str) -> Dict[str, Any]:
        if not to:
            raise UpstreamDeliveryError("Recipient phone number is required")
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
        }

    def send_text(self, to: str, body: str) -> Dict[str, Any]:
        payload = self._base(to, "text")
        payload["text"] = {"body": _clip(body, MAX_TEXT_LENGTH)}
        return self._post(payload)

    def send_template(self, to: str, name: str, parameters: Sequence[str]) -> Dict[str, Any]:
        payload = self._base(to, "template")
        payload["template"] = {
            "name": name,
            "language": {"code": self.config.template_language},
            "components": [
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": str(p)} for p in parameters],
                }
            ],
        }
        return self._post(payload)

    def _interactive(self, to: str, kind: str, body: str, action: Dict[str, Any],
                     header: Optional[str], footer: Optional[str]) -> Dict[str, Any]:
        payload = self._base(to, "interactive")
        interactive: Dict[str, Any] = {
            "type": kind,
            "body": {"text": _clip(body, 1024)},
            "action": action,
        }
        if header:
            interactive["header"] = {"type": "text", "text": _clip(header, MAX_HEADER)}
        if footer:
            interactive["footer"] = {"text": _clip(footer, MAX_FOOTER)}
        payload["interactive"] = interactive
        return self._post(payload)

    def send_buttons(self, to: str, body: str, buttons: Sequence[Dict[str, str]],
                     header: Optional[str] = None, footer: Optional[str] = None) -> Dict[str, Any]:
        """
        Send reply buttons.

        Args:
            to: Recipient phone number
            body: Message text
            buttons: [{"id": ..., "title": ...}], clipped to 3 with titles clipped to 20 chars
        """
        action = {
            "buttons": [
                {
                    "type": "reply",
                    "reply": {
                        "id": _clip(button["id"], MAX_REPLY_ID),
                        "title": _clip(button["title"], MAX_BUTTON_TITLE),
                    },
                }
                for button in list(buttons)[:MAX_BUTTONS]
            ]
        }
        return self._interactive(to, "button", body, action, header, footer)

    def send_list(self, to: str, body: str, button_text: str, sections: Sequence[Dict[str, Any]],
                  header: Optional[str] = None, footer: Optional[str] = None) -> Dict[str, Any]:
        """
        Send a section list. At most 10 rows are sent across all sections.

        Args:
            to: Recipient phone number
            body: Message text
            button_text: Label of the button that opens the list
            sections: [{"title": ..., "rows": [{"id", "title", "description"?}]}]
        """
        remaining = MAX_LIST_ROWS
        clipped: List[Dict[str, Any]] = []
        for section in sections:
            if remaining <= 0:
                break
            rows = []
            for row in list(section.get("rows", []))[:remaining]:
                item = {"id": _clip(row["id"], MAX_REPLY_ID), "title": _clip(row["title"], MAX_ROW_TITLE)}
                if row.get("description"):
                    item["description"] = _clip(row["description"], MAX_ROW_DESCRIPTION)
                rows.append(item)
            remaining -= len(rows)
            if rows:
                clipped.append({"title": _clip(section.get("title", ""), MAX_SECTION_TITLE), "rows": rows})

        action = {"button": _clip(button_text, MAX_BUTTON_TITLE), "sections": clipped}
        return self._interactive(to, "list", body, action, header, footer)

    # Appointment events

    def _send_with_fallback(self, to: str, template: str, notice: AppointmentNotice, fallback_text: str):
        parameters = [notice.customer_name, notice.service_name, notice.display_date, notice.appointment_time]
        try:
            return self.send_template(to, template, parameters)
        except UpstreamDeliveryError:
            logger.warning(f"Template {template} failed for {to}, falling back to text")
        return self.send_text(to, fallback_text)

    def send_appointment_confirmation(self, to: str, notice: AppointmentNotice):
        text = (
            "Your appointment has been confirmed!\n\n"
            "*Booking Details*\n"
            f"Name: {notice.customer_name}\n"
            f"Service: {notice.service_name}\n"
            f"Date: {notice.display_date}\n"
            f"Time: {notice.appointment_time}\n\n"
            "We look forward to seeing you!"
        )
        return self._send_with_fallback(to, CONFIRMATION_TEMPLATE, notice, text)

    def send_appointment_reminder(self, to: str, notice: AppointmentNotice):
        text = (
            "Reminder: you have an upcoming appointment!\n\n"
            "*Booking Details*\n"
            f"Name: {notice.customer_name}\n"
            f"Service: {notice.service_name}\n"
            f"Date: {notice.display_date}\n"
            f"Time: {notice.appointment_time}\n\n"
            "Reply CONFIRM to confirm or CANCEL to cancel."
        )
        return self._send_with_fallback(to, REMINDER_TEMPLATE, notice, text)

    def send_appointment_cancellation(self, to: str, notice: AppointmentNotice):
        text = (
            f"Hi {notice.customer_name}, your appointment for {notice.service_name} on "
            f"{notice.display_date} at {notice.appointment_time} has been cancelled. "
            "Please contact us for more information."
        )
        return self._send_with_fallback(to, CANCELLATION_TEMPLATE, notice, text)

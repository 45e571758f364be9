"""Builders for WhatsApp webhook deliveries."""

OWNER_ID = "owner-1"
BUSINESS_NUMBER = "15550001111"
CUSTOMER_NUMBER = "919876543210"


def delivery(message, sender=CUSTOMER_NUMBER, business_number=BUSINESS_NUMBER, name="Priya", field="messages"):
    message = dict(message, **{"from": sender, "id": "wamid.inbound", "timestamp": "1736480000"})
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "waba-1",
                "changes": [
                    {
                        "field": field,
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {
                                "display_phone_number": business_number,
                                "phone_number_id": "109876543210",
                            },
                            "contacts": [{"profile": {"name": name}, "wa_id": sender}],
                            "messages": [message],
                        },
                    }
                ],
            }
        ],
    }


def text_event(body, **kwargs):
    return delivery({"type": "text", "text": {"body": body}}, **kwargs)


def reply_event(reply_id, kind="list_reply", **kwargs):
    interactive = {"type": kind, kind: {"id": reply_id, "title": reply_id}}
    return delivery({"type": "interactive", "interactive": interactive}, **kwargs)

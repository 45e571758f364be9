"""
WhatsApp Cloud API webhook.

Deliveries are acknowledged as soon as their structure checks out; the
messages are handled afterwards as a background task so slow stores or
sends never hold up the acknowledgement.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse

from config import settings
from conversation import ConversationRouter
from dependencies import get_conversation_router
from errors import ForbiddenError, ValidationError
from logger import setup_logger

logger = setup_logger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["Webhook"])

BUSINESS_ACCOUNT = "whatsapp_business_account"


def _param(request: Request, name: str):
    return request.query_params.get(f"hub.{name}") or request.query_params.get(name)


@router.get("/whatsapp")
def verify_webhook(request: Request):
    mode = _param(request, "mode")
    token = _param(request, "verify_token")
    challenge = _param(request, "challenge")

    if mode == "subscribe" and token and token == settings.WEBHOOK_VERIFY_TOKEN:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "")

    logger.warning("Webhook verification failed")
    raise ForbiddenError("Webhook verification failed")


@router.post("/whatsapp")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    conversation: ConversationRouter = Depends(get_conversation_router),
):
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")

    if not isinstance(body, dict) or not isinstance(body.get("entry"), list) or not body["entry"]:
        raise ValidationError("Invalid webhook payload")
    if not all(isinstance(entry, dict) for entry in body["entry"]):
        raise ValidationError("Webhook entries must be objects")
    if body.get("object") != BUSINESS_ACCOUNT:
        raise ValidationError(f"Unsupported webhook object '{body.get('object')}'")

    logger.debug(f"Webhook payload: {body}")
    background_tasks.add_task(conversation.process_event, body)
    return {"status": "received"}

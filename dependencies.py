"""Shared components handed to the routes through FastAPI's Depends."""

from functools import lru_cache

from fastapi import Depends

from conversation import ConversationRouter, business_now
from database import get_database
from notifications import NotificationDispatcher, WhatsAppConfig
from repository import BookingStore


@lru_cache()
def get_store() -> BookingStore:
    return BookingStore(get_database())


@lru_cache()
def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(WhatsAppConfig.from_settings())


def get_clock():
    return business_now


def get_conversation_router(
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    clock=Depends(get_clock),
) -> ConversationRouter:
    return ConversationRouter(store, dispatcher, clock=clock)


import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("WEBHOOK_VERIFY_TOKEN", "glowbook-verify")
os.environ.setdefault("SUPERADMIN_EMAILS", "admin@glowbook.in")

from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from conversation import ConversationRouter
from dependencies import get_clock, get_dispatcher, get_store
from errors import UpstreamDeliveryError
from main import app
from notifications import NotificationDispatcher, WhatsAppConfig
from repository import BookingStore
from schemas import DayHours, ProfileIn, ServiceIn
from tests.helpers import BUSINESS_NUMBER, OWNER_ID

IST = timezone(timedelta(hours=5, minutes=30))


class FakeClock:
    """Business-local clock that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher(NotificationDispatcher):
    """Captures outbound payloads instead of posting them."""

    def __init__(self, fail_types=()):
        super().__init__(
            WhatsAppConfig(
                api_url="https://graph.example.com",
                api_version="v17.0",
                phone_number_id="123456789",
                access_token="test-token",
            )
        )
        self.sent = []
        self.fail_types = set(fail_types)

    def _post(self, payload):
        if payload["type"] in self.fail_types:
            raise UpstreamDeliveryError(f"Failed to send WhatsApp {payload['type']} message")
        self.sent.append(payload)
        return {"messages": [{"id": f"wamid.{len(self.sent)}"}]}

    def of_type(self, message_type):
        return [p for p in self.sent if p["type"] == message_type]

    @property
    def texts(self):
        return [p["text"]["body"] for p in self.of_type("text")]


@pytest.fixture
def db():
    return mongomock.MongoClient(tz_aware=True)["glowbook_test"]


@pytest.fixture
def store(db):
    return BookingStore(db)


@pytest.fixture
def clock():
    # Friday morning
    return FakeClock(datetime(2025, 1, 10, 9, 30, tzinfo=IST))


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def profile(store):
    open_day = DayHours(open="10:00", close="19:00")
    profile, _ = store.save_profile(
        OWNER_ID,
        ProfileIn(
            business_name="Glow Studio",
            whatsapp_number=BUSINESS_NUMBER,
            services=[
                ServiceIn(name="Haircut", duration=30, price=200),
                ServiceIn(name="Hair Spa", duration=60, price=800),
                ServiceIn(name="Massage", duration=45, price=1200),
                ServiceIn(name="Manicure", duration=40, price=500),
            ],
            working_hours={
                "monday": open_day,
                "tuesday": open_day,
                "wednesday": open_day,
                "thursday": open_day,
                "friday": open_day,
                "saturday": open_day,
                "sunday": DayHours(closed=True),
            },
        ),
    )
    return profile


@pytest.fixture
def router(store, dispatcher, clock):
    return ConversationRouter(
        store, dispatcher, clock=clock, draft_ttl=timedelta(minutes=30), list_limit=5, currency="₹"
    )


@pytest.fixture
def client(store, dispatcher, clock):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()

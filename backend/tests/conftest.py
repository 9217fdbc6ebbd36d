import os
import sys
import tempfile
from datetime import date, timedelta
from types import SimpleNamespace

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
# Keep the app-wide store out of backend/data while tests run.
os.environ.setdefault("GOSWISH_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="goswish-"), "goswish.sqlite3"))

from goswish.models import (
    Address,
    BookingCreateRequest,
    CleanerProfileRequest,
    GeoPoint,
    HouseCreateRequest,
    RegisterRequest,
)
from goswish.services.booking_lifecycle import BookingLifecycle
from goswish.services.conversations import ConversationStore
from goswish.services.dispatcher import JobDispatcher
from goswish.services.document_store import DocumentStore
from goswish.services.notification_store import NotificationStore
from goswish.services.profiles import ProfileStore
from goswish.services.promos import PromoStore
from goswish.services.push_sender import PushSender
from goswish.services.reviews import ReviewStore
from goswish.services.tracking import TrackingChannel

DALLAS = (32.7767, -96.7970)
AUSTIN = (30.2672, -97.7431)


def future_date(days: int = 3) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


class ServiceKit(SimpleNamespace):
    def customer(self, email: str = "owner@example.com"):
        return self.profiles.register_user(
            RegisterRequest(email=email, password="secret123", name="Owner", role="customer")
        )

    def cleaner(self, email: str, location=None, radius=None, status="active"):
        user = self.profiles.register_user(
            RegisterRequest(email=email, password="secret123", name=email.split("@")[0], role="cleaner")
        )
        point = GeoPoint(lat=location[0], lng=location[1]) if location else None
        return self.profiles.upsert_cleaner_profile(
            user.id,
            CleanerProfileRequest(name=user.name, base_location=point, service_radius=radius, status=status),
        )

    def house(self, user_id: str, location=DALLAS):
        lat, lng = location if location else (None, None)
        return self.profiles.create_house(
            user_id,
            HouseCreateRequest(
                name="Home",
                address=Address(street="1 Main St", city="Dallas", state="Texas", zip_code="75201", lat=lat, lng=lng),
            ),
        )

    def place_booking(self, customer_id: str, house_id: str, amount: float = 120.0, promo_code=None):
        return self.lifecycle.create_booking(
            customer_id,
            BookingCreateRequest(
                house_id=house_id,
                service_type_id="standard",
                dates=[future_date()],
                time_slots={future_date(): ["09:00"]},
                total_amount=amount,
                promo_code=promo_code,
            ),
        )


@pytest.fixture
def kit(tmp_path):
    store = DocumentStore(db_path=str(tmp_path / "goswish.sqlite3"))
    profiles = ProfileStore(store)
    notifications = NotificationStore(store, PushSender(credentials_path=""))
    dispatcher = JobDispatcher(profiles, notifications)
    conversations = ConversationStore(store)
    channel = TrackingChannel()
    reviews = ReviewStore(store)
    promos = PromoStore(store)
    lifecycle = BookingLifecycle(store, profiles, notifications, dispatcher, conversations, channel, reviews, promos)
    return ServiceKit(
        store=store,
        profiles=profiles,
        notifications=notifications,
        dispatcher=dispatcher,
        conversations=conversations,
        channel=channel,
        reviews=reviews,
        promos=promos,
        lifecycle=lifecycle,
    )

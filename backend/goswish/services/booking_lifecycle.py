import logging
import random
import time as time_module
from datetime import date
from typing import Any, Dict, List, Optional, Set, Union

from goswish.models import (
    Booking,
    BookingCreateRequest,
    EarningsSummary,
    House,
    Job,
    RatingData,
    Review,
    TrackingUpdateRequest,
    Tracking,
    Transaction,
    VerificationCodesResponse,
)
from goswish.services import verification
from goswish.services.conversations import ConversationStore, conversation_store
from goswish.services.dispatcher import JobDispatcher, job_dispatcher
from goswish.services.document_store import (
    Collection,
    DocumentNotFoundError,
    DocumentStore,
    StoreConflictError,
    StorePermissionError,
    StoreValidationError,
    document_store,
    utc_now,
)
from goswish.services.notification_store import NotificationStore, notification_store
from goswish.services.promos import PromoStore, promo_store
from goswish.services.profiles import ProfileStore, profile_store
from goswish.services.repository import Repository
from goswish.services.reviews import ReviewStore, review_store
from goswish.services.tracking import TrackingChannel, tracking_channel, tracking_event

logger = logging.getLogger(__name__)


BOOKING_TRANSITIONS: Dict[str, Set[str]] = {
    "placed": {"confirmed"},
    "confirmed": {"on_the_way"},
    "on_the_way": {"on_the_way", "arrived"},
    "arrived": {"verifying"},
    "verifying": {"in_progress"},
    "in_progress": {"completed_pending_approval"},
    "completed_pending_approval": {"approved"},
}

BOOKING_SIDE_EXITS = {"cancelled", "disputed"}

BOOKING_TERMINAL_STATUSES = {"approved", "cancelled", "disputed"}

TRACKABLE_STATUSES = {"confirmed", "on_the_way", "arrived"}

RATEABLE_STATUSES = {"completed_pending_approval", "approved"}

BOOKING_NUMBER_ATTEMPTS = 10

STATE_CODES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR", "california": "CA",
    "colorado": "CO", "connecticut": "CT", "delaware": "DE", "district of columbia": "DC",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID", "illinois": "IL",
    "indiana": "IN", "iowa": "IA", "kansas": "KS", "kentucky": "KY", "louisiana": "LA",
    "maine": "ME", "maryland": "MD", "massachusetts": "MA", "michigan": "MI", "minnesota": "MN",
    "mississippi": "MS", "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK", "oregon": "OR",
    "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC", "south dakota": "SD",
    "tennessee": "TN", "texas": "TX", "utah": "UT", "vermont": "VT", "virginia": "VA",
    "washington": "WA", "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY",
}


def normalize_state_code(state: Optional[str]) -> str:
    value = (state or "").strip()
    if not value:
        return "TX"
    if len(value) == 2:
        return value.upper()
    return STATE_CODES.get(value.lower(), value[:2].upper())


def can_transition(current: str, target: str) -> bool:
    if current in BOOKING_TERMINAL_STATUSES:
        return False
    if target in BOOKING_SIDE_EXITS:
        return True
    return target in BOOKING_TRANSITIONS.get(current, set())


class BookingLifecycle:
    """Booking state machine shared by the customer and cleaner sessions.

    Transition calls made from the wrong source state return False or None
    instead of raising, so duplicate or overlapping calls from two polling
    sessions are harmless. Status changes go through ``conditional_update``
    keyed on the status that was read, which makes each transition fire at
    most once.
    """

    def __init__(
        self,
        store: DocumentStore,
        profiles: ProfileStore,
        notifications: NotificationStore,
        dispatcher: JobDispatcher,
        conversations: ConversationStore,
        channel: TrackingChannel,
        reviews: ReviewStore,
        promos: PromoStore,
    ):
        self.store = store
        self.profiles = profiles
        self.notifications = notifications
        self.dispatcher = dispatcher
        self.conversations = conversations
        self.channel = channel
        self.reviews = reviews
        self.promos = promos
        self.bookings = Repository(store, Collection.BOOKINGS, Booking)
        self.jobs = Repository(store, Collection.JOBS, Job)
        self.transactions = Repository(store, Collection.TRANSACTIONS, Transaction)

    # Lookups

    def resolve_booking_id(self, id_or_number: Optional[str]) -> Optional[str]:
        if not id_or_number:
            return None
        if id_or_number.startswith("booking-"):
            return id_or_number
        matches = self.store.query_docs(Collection.BOOKINGS, "booking_number", id_or_number)
        return matches[0]["id"] if matches else id_or_number

    def get_booking(self, id_or_number: Optional[str]) -> Optional[Booking]:
        return self.bookings.get(self.resolve_booking_id(id_or_number))

    def require_booking(self, id_or_number: str) -> Booking:
        booking = self.get_booking(id_or_number)
        if booking is None:
            raise DocumentNotFoundError("Booking not found")
        return booking

    def list_customer_bookings(self, customer_id: str) -> List[Booking]:
        return self._newest_first(self.bookings.query("customer_id", customer_id))

    def list_cleaner_bookings(self, cleaner_id: str) -> List[Booking]:
        return self._newest_first(self.bookings.query("cleaner_id", cleaner_id))

    def list_available_bookings(self) -> List[Booking]:
        return self._newest_first([b for b in self.bookings.query("status", "placed") if not b.cleaner_id])

    def _newest_first(self, rows: List[Booking]) -> List[Booking]:
        rows.sort(key=lambda b: b.created_at or "", reverse=True)
        return rows

    def assert_party(self, booking: Booking, user_id: str, role: str) -> None:
        if role == "customer":
            if booking.customer_id != user_id:
                raise StorePermissionError("Only the booking's customer can do this")
            return
        cleaner = self.profiles.get_cleaner_by_user_id(user_id)
        if cleaner is None or booking.cleaner_id != cleaner.id:
            raise StorePermissionError("Only the assigned cleaner can do this")

    # Placement and matching

    def _generate_booking_number(self, house: House, first_date: date) -> str:
        prefix = f"{normalize_state_code(house.address.state)}-{first_date.year}-{first_date:%m%d}"
        for attempt in range(BOOKING_NUMBER_ATTEMPTS):
            number = f"{prefix}-{random.randint(10000, 99999)}"
            if not self.store.query_docs(Collection.BOOKINGS, "booking_number", number):
                return number
            logger.warning("Booking number collision on %s (attempt %d)", number, attempt + 1)
        return f"{prefix}-{str(int(time_module.time() * 1000))[-6:]}"

    def _parse_dates(self, values: List[str]) -> List[date]:
        if not values:
            raise StoreValidationError("At least one booking date is required")
        parsed: List[date] = []
        today = date.today()
        for value in values:
            try:
                day = date.fromisoformat(value)
            except ValueError as exc:
                raise StoreValidationError(f"Invalid booking date: {value}") from exc
            if day < today:
                raise StoreValidationError(f"Cannot book for past date: {value}")
            parsed.append(day)
        return parsed

    def create_booking(self, customer_id: str, request: BookingCreateRequest) -> Booking:
        house = self.profiles.get_house(request.house_id)
        if house is None:
            raise DocumentNotFoundError("House not found")
        if house.user_id != customer_id:
            raise StorePermissionError("House belongs to another customer")
        if not request.service_type_id.strip():
            raise StoreValidationError("Service type is required")
        days = self._parse_dates(request.dates)

        promo = None
        if request.promo_code and request.promo_code.strip():
            promo = self.promos.validate(request.promo_code, customer_id, request.service_type_id, request.total_amount)
            if not promo.valid:
                raise StoreValidationError(promo.error)
        discount = promo.discount if promo else 0.0

        booking = self.bookings.add(
            Booking(
                booking_number=self._generate_booking_number(house, days[0]),
                customer_id=customer_id,
                house_id=house.id,
                service_type_id=request.service_type_id,
                add_on_ids=request.add_on_ids,
                dates=request.dates,
                time_slots=request.time_slots,
                special_notes=request.special_notes,
                total_amount=round(request.total_amount - discount, 2),
                promo_code=promo.code if promo else None,
                discount_amount=discount,
                status="placed",
            )
        )
        logger.info("Booking %s (%s) placed by %s", booking.id, booking.booking_number, customer_id)
        if promo and not self.promos.apply(promo.promo_id, customer_id, discount, booking.id):
            logger.warning("Promo %s validated for booking %s but its use was not recorded", promo.code, booking.id)
        self._publish(booking)
        self.dispatcher.broadcast_new_job(booking)
        return booking

    def accept_job_offer(self, booking_id: str, cleaner_id: str) -> Job:
        booking = self.require_booking(booking_id)
        cleaner = self.profiles.get_cleaner(cleaner_id)
        if cleaner is None:
            raise DocumentNotFoundError("Cleaner not found")
        if booking.cleaner_id or booking.status != "placed":
            raise StoreConflictError("Job already taken by another cleaner")

        claimed = self.bookings.update_if(
            booking.id,
            {"cleaner_id": None, "version": booking.version, "status": "placed"},
            cleaner_id=cleaner.id,
            status="confirmed",
            version=booking.version + 1,
        )
        if claimed is None:
            raise StoreConflictError("Job was just claimed by another cleaner")

        rate = self.profiles.get_app_settings().cleaner_earnings_rate
        job = self.jobs.add(
            Job(
                booking_id=claimed.id,
                booking_number=claimed.booking_number,
                customer_id=claimed.customer_id,
                cleaner_id=cleaner.id,
                house_id=claimed.house_id,
                service_type_id=claimed.service_type_id,
                amount=claimed.total_amount,
                earnings=round(claimed.total_amount * rate, 2),
                status="confirmed",
                scheduled_date=claimed.dates[0] if claimed.dates else None,
            )
        )
        logger.info("Booking %s claimed by cleaner %s", claimed.id, cleaner.id)

        self.notifications.create(
            user_id=claimed.customer_id,
            type="booking_accepted",
            title="Booking confirmed",
            message=f"{cleaner.name or 'A cleaner'} accepted booking {claimed.booking_number}",
            related_id=claimed.id,
        )
        self.notifications.delete_job_offers(claimed.id)
        self.conversations.get_or_create_for_booking(claimed, [claimed.customer_id, cleaner.user_id])
        self._publish(claimed)
        return job

    # Transitions

    def _transition(self, booking: Booking, target: str, **changes: Any) -> Optional[Booking]:
        if not can_transition(booking.status, target):
            return None
        updated = self.bookings.update_if(booking.id, {"status": booking.status}, status=target, **changes)
        if updated is None:
            return None
        if target != booking.status:
            logger.info("Booking %s: %s -> %s", booking.id, booking.status, target)
        self._publish(updated)
        return updated

    def _publish(self, booking: Booking) -> None:
        self.channel.publish(tracking_event(booking))

    def _update_job(self, booking_id: str, **changes: Any) -> None:
        for job in self.jobs.query("booking_id", booking_id):
            self.jobs.update(job.id, **changes)

    def update_booking_tracking(
        self,
        booking_id: str,
        patch: Union[TrackingUpdateRequest, Dict[str, Any]],
    ) -> Optional[Booking]:
        booking = self.get_booking(booking_id)
        if booking is None or booking.status not in TRACKABLE_STATUSES:
            return None
        if isinstance(patch, dict):
            patch = TrackingUpdateRequest.model_validate(patch)
        arrived = patch.status == "arrived" or (patch.distance is not None and patch.distance <= 0)
        tracking = Tracking(
            status="arrived" if arrived else "on_the_way",
            lat=patch.lat,
            lng=patch.lng,
            distance=0.0 if arrived else patch.distance,
            eta=0 if arrived else patch.eta,
            updated_at=utc_now(),
        )
        if booking.status == "arrived":
            # Late reports after arrival only refresh the position.
            tracking = tracking.model_copy(update={"status": "arrived", "distance": 0.0, "eta": 0})
            updated = self.bookings.update_if(booking.id, {"status": "arrived"}, tracking=tracking)
            if updated is not None:
                self._publish(updated)
            return updated
        if booking.status == "confirmed" and arrived:
            # A trip always passes through on_the_way; the next report completes arrival.
            tracking = tracking.model_copy(update={"status": "on_the_way"})
            return self._transition(booking, "on_the_way", tracking=tracking)
        return self._transition(booking, "arrived" if arrived else "on_the_way", tracking=tracking)

    def get_booking_with_tracking(self, booking_id: str) -> Optional[Booking]:
        return self.get_booking(booking_id)

    def generate_verification_codes(self, booking_id: str) -> Optional[VerificationCodesResponse]:
        booking = self.get_booking(booking_id)
        if booking is None or booking.status != "arrived":
            return None
        codes = verification.new_verification_codes()
        updated = self._transition(booking, "verifying", verification_codes=codes)
        if updated is None:
            return None
        return VerificationCodesResponse(customer_code=codes.customer_code, cleaner_code=codes.cleaner_code)

    def verify_job_code(self, booking_id: str, role: str, code: str) -> bool:
        verification.validate_role(role)
        code = verification.validate_code(code)
        for _ in range(5):
            booking = self.get_booking(booking_id)
            if booking is None or booking.verification_codes is None:
                return False
            if booking.status not in {"verifying", "in_progress"}:
                return False
            codes = booking.verification_codes
            if code != verification.expected_code(codes, role):
                logger.info("Verification mismatch for %s on booking %s", role, booking.id)
                return False
            if verification.is_verified(codes, role):
                return True
            # Compare-and-set on the whole code block so the other party's flag survives.
            updated = self.bookings.update_if(
                booking.id,
                {"verification_codes": codes, "status": booking.status},
                verification_codes=verification.mark_verified(codes, role),
            )
            if updated is not None:
                logger.info("Booking %s verified by %s", booking.id, role)
                self._publish(updated)
                return True
        logger.warning("Verification for booking %s kept racing; giving up", booking_id)
        return False

    def check_verification_and_start(self, booking_id: str) -> bool:
        booking = self.get_booking(booking_id)
        if booking is None or booking.status != "verifying":
            return False
        if not verification.both_verified(booking.verification_codes):
            return False
        started_at = utc_now()
        updated = self._transition(booking, "in_progress", job_started_at=started_at)
        if updated is None:
            return False
        self._update_job(booking.id, status="in_progress", start_time=started_at)
        return True

    def submit_job_for_approval(self, booking_id: str, note: str, photos: List[str]) -> Optional[Booking]:
        booking = self.get_booking(booking_id)
        if booking is None or booking.status != "in_progress":
            return None
        return self._transition(
            booking,
            "completed_pending_approval",
            completed_at=utc_now(),
            cleaner_notes=note,
            final_photos=list(photos),
        )

    def approve_job(self, booking_id: str, rating: RatingData) -> bool:
        booking = self.get_booking(booking_id)
        if booking is None or booking.status != "completed_pending_approval":
            return False
        now = utc_now()
        rating = rating.model_copy(update={"rated_at": now})
        updated = self._transition(
            booking,
            "approved",
            approved_at=now,
            customer_rating=rating,
            payment_status="released",
        )
        if updated is None:
            return False
        self._update_job(booking.id, status="completed", end_time=now)
        if updated.cleaner_id:
            self._release_payment(updated)
            self.reviews.add(
                Review(
                    booking_id=updated.id,
                    cleaner_id=updated.cleaner_id,
                    customer_id=updated.customer_id,
                    reviewer_role="homeowner",
                    rating=rating.rating,
                    comment=rating.comment,
                    tags=rating.tags,
                )
            )
        self._lock_conversation(updated.id)
        return True

    def _release_payment(self, booking: Booking) -> Transaction:
        rate = self.profiles.get_app_settings().cleaner_earnings_rate
        transaction = self.transactions.add(
            Transaction(
                cleaner_id=booking.cleaner_id,
                booking_id=booking.id,
                gross_amount=booking.total_amount,
                amount=round(booking.total_amount * rate, 2),
            )
        )
        logger.info("Released %.2f to cleaner %s for booking %s", transaction.amount, booking.cleaner_id, booking.id)
        return transaction

    def _lock_conversation(self, booking_id: str) -> None:
        try:
            self.conversations.lock_for_booking(booking_id)
        except DocumentNotFoundError:
            logger.warning("Conversation for booking %s vanished before it could be locked", booking_id)

    def rate_customer(self, booking_id: str, rating: RatingData) -> bool:
        booking = self.get_booking(booking_id)
        if booking is None or not booking.cleaner_id:
            return False
        if booking.status not in RATEABLE_STATUSES:
            return False
        rating = rating.model_copy(update={"rated_at": utc_now()})
        updated = self.bookings.update_if(booking.id, {"cleaner_rating": None}, cleaner_rating=rating)
        if updated is None:
            return False
        self.reviews.add(
            Review(
                booking_id=booking.id,
                cleaner_id=booking.cleaner_id,
                customer_id=booking.customer_id,
                reviewer_role="cleaner",
                rating=rating.rating,
                comment=rating.comment,
                tags=rating.tags,
            )
        )
        return True

    def cancel_booking(self, booking_id: str, reason: str = "") -> Optional[Booking]:
        booking = self.get_booking(booking_id)
        if booking is None:
            return None
        updated = self._transition(
            booking,
            "cancelled",
            cancellation_reason=reason,
            cancelled_at=utc_now(),
            payment_status="refunded",
        )
        if updated is not None:
            self._update_job(booking.id, status="cancelled")
            self.notifications.delete_job_offers(booking.id)
            self._lock_conversation(booking.id)
        return updated

    def dispute_job(self, booking_id: str, reason: str = "") -> Optional[Booking]:
        booking = self.get_booking(booking_id)
        if booking is None:
            return None
        updated = self._transition(booking, "disputed", dispute_reason=reason, disputed_at=utc_now())
        if updated is not None:
            self._lock_conversation(booking.id)
        return updated

    # Earnings

    def get_cleaner_earnings(self, cleaner_id: str) -> EarningsSummary:
        rows = self.transactions.query("cleaner_id", cleaner_id)
        rows.sort(key=lambda t: t.created_at or "", reverse=True)
        return EarningsSummary(
            cleaner_id=cleaner_id,
            total=round(sum(t.amount for t in rows), 2),
            jobs=len({t.booking_id for t in rows}),
            transactions=rows,
        )


booking_lifecycle = BookingLifecycle(
    document_store,
    profile_store,
    notification_store,
    job_dispatcher,
    conversation_store,
    tracking_channel,
    review_store,
    promo_store,
)

import os
import re
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from goswish.models import BookingCreateRequest, PromoCreateRequest, RatingData
from goswish.services.booking_lifecycle import can_transition, normalize_state_code
from goswish.services.document_store import (
    DocumentNotFoundError,
    StoreConflictError,
    StorePermissionError,
    StoreValidationError,
)

DALLAS = (32.7767, -96.7970)


def _placed(kit, amount=120.0):
    cleaner = kit.cleaner("pro@example.com", location=DALLAS)
    owner = kit.customer()
    house = kit.house(owner.id)
    booking = kit.place_booking(owner.id, house.id, amount=amount)
    return owner, cleaner, booking


def _run_to_pending_approval(kit, booking_id):
    kit.lifecycle.update_booking_tracking(booking_id, {"distance": 0.5, "eta": 2})
    kit.lifecycle.update_booking_tracking(booking_id, {"status": "arrived", "distance": 0})
    codes = kit.lifecycle.generate_verification_codes(booking_id)
    kit.lifecycle.verify_job_code(booking_id, "customer", codes.cleaner_code)
    kit.lifecycle.verify_job_code(booking_id, "cleaner", codes.customer_code)
    assert kit.lifecycle.check_verification_and_start(booking_id) is True
    return kit.lifecycle.submit_job_for_approval(booking_id, "All rooms done", ["photo-1.jpg"])


def test_state_codes_normalize():
    assert normalize_state_code("Texas") == "TX"
    assert normalize_state_code("ca") == "CA"
    assert normalize_state_code("") == "TX"
    assert normalize_state_code("new york") == "NY"


def test_transition_table():
    assert can_transition("placed", "confirmed")
    assert can_transition("on_the_way", "on_the_way")
    assert can_transition("confirmed", "on_the_way")
    assert not can_transition("confirmed", "arrived")
    assert not can_transition("placed", "in_progress")
    assert can_transition("in_progress", "disputed")
    assert not can_transition("approved", "cancelled")
    assert not can_transition("cancelled", "placed")


def test_create_booking_assigns_number_and_status(kit):
    owner, _, booking = _placed(kit)

    assert booking.status == "placed"
    assert booking.cleaner_id is None
    assert booking.payment_status == "pending"
    assert re.match(r"^TX-\d{4}-\d{4}-\d{5}$", booking.booking_number)
    assert kit.lifecycle.get_booking(booking.booking_number).id == booking.id
    assert [b.id for b in kit.lifecycle.list_customer_bookings(owner.id)] == [booking.id]
    assert [b.id for b in kit.lifecycle.list_available_bookings()] == [booking.id]


def test_create_booking_validates_input(kit):
    owner = kit.customer()
    other = kit.customer("other@example.com")
    house = kit.house(owner.id)

    with pytest.raises(StoreValidationError):
        kit.lifecycle.create_booking(owner.id, BookingCreateRequest(house_id=house.id, service_type_id="standard", dates=[]))
    with pytest.raises(StoreValidationError):
        kit.lifecycle.create_booking(
            owner.id, BookingCreateRequest(house_id=house.id, service_type_id="standard", dates=["2001-01-01"])
        )
    with pytest.raises(StorePermissionError):
        kit.lifecycle.create_booking(
            other.id, BookingCreateRequest(house_id=house.id, service_type_id="standard", dates=["2999-01-01"])
        )
    with pytest.raises(DocumentNotFoundError):
        kit.lifecycle.create_booking(
            owner.id, BookingCreateRequest(house_id="house-missing", service_type_id="standard", dates=["2999-01-01"])
        )


def test_accept_job_offer_claims_once(kit):
    owner, cleaner, booking = _placed(kit)
    rival = kit.cleaner("rival@example.com", location=DALLAS)

    job = kit.lifecycle.accept_job_offer(booking.id, cleaner.id)

    assert job.cleaner_id == cleaner.id
    assert job.earnings == 108.0
    claimed = kit.lifecycle.get_booking(booking.id)
    assert claimed.status == "confirmed"
    assert claimed.cleaner_id == cleaner.id
    assert claimed.version == booking.version + 1
    with pytest.raises(StoreConflictError):
        kit.lifecycle.accept_job_offer(booking.id, rival.id)

    assert kit.notifications.list_for_booking(booking.id, type="job_offer") == []
    accepted = kit.notifications.list_for_booking(booking.id, type="booking_accepted")
    assert [n.user_id for n in accepted] == [owner.id]
    conversation = kit.conversations.get_for_booking(booking.id)
    assert sorted(conversation.participant_ids) == sorted([owner.id, cleaner.user_id])
    assert kit.lifecycle.list_available_bookings() == []
    assert [b.id for b in kit.lifecycle.list_cleaner_bookings(cleaner.id)] == [booking.id]


def test_tracking_moves_booking_to_arrival(kit):
    _, cleaner, booking = _placed(kit)
    kit.lifecycle.accept_job_offer(booking.id, cleaner.id)

    moving = kit.lifecycle.update_booking_tracking(booking.id, {"distance": 2.9, "eta": 9, "lat": 32.7, "lng": -96.8})
    assert moving.status == "on_the_way"
    assert moving.tracking.distance == 2.9

    again = kit.lifecycle.update_booking_tracking(booking.id, {"distance": 1.1, "eta": 4})
    assert again.status == "on_the_way"
    assert again.tracking.eta == 4

    arrived = kit.lifecycle.update_booking_tracking(booking.id, {"distance": 0})
    assert arrived.status == "arrived"
    assert arrived.tracking.status == "arrived"
    assert arrived.tracking.eta == 0

    late = kit.lifecycle.update_booking_tracking(booking.id, {"distance": 0.4, "lat": 32.77, "lng": -96.79})
    assert late.status == "arrived"
    assert late.tracking.lat == 32.77
    assert late.tracking.distance == 0.0


def test_first_report_at_destination_passes_through_on_the_way(kit):
    _, cleaner, booking = _placed(kit)
    kit.lifecycle.accept_job_offer(booking.id, cleaner.id)

    with kit.channel.subscribe(booking.id) as subscription:
        first = kit.lifecycle.update_booking_tracking(booking.id, {"distance": 0})
        assert first.status == "on_the_way"
        assert first.tracking.status == "on_the_way"

        second = kit.lifecycle.update_booking_tracking(booking.id, {"distance": 0})
        assert second.status == "arrived"
        statuses = [subscription.get(timeout=1).status for _ in range(2)]

    assert statuses == ["on_the_way", "arrived"]


def test_tracking_ignored_outside_trackable_states(kit):
    _, _, booking = _placed(kit)
    assert kit.lifecycle.update_booking_tracking(booking.id, {"distance": 1.0}) is None
    assert kit.lifecycle.update_booking_tracking("booking-missing", {"distance": 1.0}) is None
    assert kit.lifecycle.get_booking(booking.id).tracking is None


def test_wrong_state_calls_are_no_ops(kit):
    _, cleaner, booking = _placed(kit)

    assert kit.lifecycle.generate_verification_codes(booking.id) is None
    assert kit.lifecycle.check_verification_and_start(booking.id) is False
    assert kit.lifecycle.submit_job_for_approval(booking.id, "", []) is None
    assert kit.lifecycle.approve_job(booking.id, RatingData(rating=5)) is False
    assert kit.lifecycle.rate_customer(booking.id, RatingData(rating=5)) is False
    assert kit.lifecycle.get_booking(booking.id).status == "placed"


def test_full_lifecycle_releases_payment(kit):
    owner, cleaner, booking = _placed(kit, amount=200.0)
    kit.lifecycle.accept_job_offer(booking.id, cleaner.id)

    submitted = _run_to_pending_approval(kit, booking.id)
    assert submitted.status == "completed_pending_approval"
    assert submitted.cleaner_notes == "All rooms done"
    assert submitted.final_photos == ["photo-1.jpg"]
    assert submitted.completed_at

    assert kit.lifecycle.approve_job(booking.id, RatingData(rating=5, comment="Spotless", tags=["on time"])) is True
    assert kit.lifecycle.approve_job(booking.id, RatingData(rating=1)) is False

    approved = kit.lifecycle.get_booking(booking.id)
    assert approved.status == "approved"
    assert approved.payment_status == "released"
    assert approved.customer_rating.rating == 5
    assert approved.customer_rating.rated_at

    earnings = kit.lifecycle.get_cleaner_earnings(cleaner.id)
    assert earnings.total == 180.0
    assert earnings.jobs == 1
    assert earnings.transactions[0].gross_amount == 200.0

    reviews = kit.reviews.list_for_booking(booking.id)
    assert [(r.reviewer_role, r.rating) for r in reviews] == [("homeowner", 5)]
    assert [job.status for job in kit.lifecycle.jobs.query("booking_id", booking.id)] == ["completed"]
    assert kit.conversations.get_for_booking(booking.id).status == "closed"
    assert kit.lifecycle.cancel_booking(booking.id, "too late") is None


def test_rate_customer_once(kit):
    owner, cleaner, booking = _placed(kit)
    kit.lifecycle.accept_job_offer(booking.id, cleaner.id)
    _run_to_pending_approval(kit, booking.id)

    assert kit.lifecycle.rate_customer(booking.id, RatingData(rating=4, comment="Friendly")) is True
    assert kit.lifecycle.rate_customer(booking.id, RatingData(rating=1)) is False

    booking = kit.lifecycle.get_booking(booking.id)
    assert booking.cleaner_rating.rating == 4
    reviews = kit.reviews.list_for_customer(owner.id)
    assert [r.customer_id for r in reviews] == [owner.id]


def test_cancel_refunds_and_clears_offers(kit):
    _, _, booking = _placed(kit)
    assert kit.notifications.list_for_booking(booking.id, type="job_offer")

    cancelled = kit.lifecycle.cancel_booking(booking.id, "Plans changed")

    assert cancelled.status == "cancelled"
    assert cancelled.payment_status == "refunded"
    assert cancelled.cancellation_reason == "Plans changed"
    assert kit.notifications.list_for_booking(booking.id, type="job_offer") == []
    assert kit.lifecycle.cancel_booking(booking.id) is None


def test_dispute_locks_conversation(kit):
    owner, cleaner, booking = _placed(kit)
    kit.lifecycle.accept_job_offer(booking.id, cleaner.id)
    conversation = kit.conversations.get_for_booking(booking.id)
    kit.conversations.send_message(conversation.id, owner.id, "Gate code is 1234")

    disputed = kit.lifecycle.dispute_job(booking.id, "No show")

    assert disputed.status == "disputed"
    assert disputed.dispute_reason == "No show"
    with pytest.raises(StoreConflictError):
        kit.conversations.send_message(conversation.id, cleaner.user_id, "On my way")
    assert [m.content for m in kit.conversations.list_messages(conversation.id)] == ["Gate code is 1234"]


def test_assert_party(kit):
    owner, cleaner, booking = _placed(kit)
    stranger = kit.cleaner("stranger@example.com")
    kit.lifecycle.accept_job_offer(booking.id, cleaner.id)
    booking = kit.lifecycle.get_booking(booking.id)

    kit.lifecycle.assert_party(booking, owner.id, "customer")
    kit.lifecycle.assert_party(booking, cleaner.user_id, "cleaner")
    with pytest.raises(StorePermissionError):
        kit.lifecycle.assert_party(booking, stranger.user_id, "cleaner")
    with pytest.raises(StorePermissionError):
        kit.lifecycle.assert_party(booking, cleaner.user_id, "customer")


def test_transitions_publish_events(kit):
    _, cleaner, booking = _placed(kit)

    with kit.channel.subscribe(booking.id) as subscription:
        kit.lifecycle.accept_job_offer(booking.id, cleaner.id)
        kit.lifecycle.update_booking_tracking(booking.id, {"distance": 1.5, "eta": 5})
        statuses = [subscription.get(timeout=1).status for _ in range(2)]

    assert statuses == ["confirmed", "on_the_way"]
    assert kit.channel.subscriber_count(booking.id) == 0


def test_approval_refreshes_cleaner_rating(kit):
    owner, cleaner, first = _placed(kit)
    second = kit.place_booking(owner.id, first.house_id)
    for booking, stars in ((first, 5), (second, 4)):
        kit.lifecycle.accept_job_offer(booking.id, cleaner.id)
        _run_to_pending_approval(kit, booking.id)
        assert kit.lifecycle.approve_job(booking.id, RatingData(rating=stars, tags=["on time"])) is True

    refreshed = kit.profiles.get_cleaner(cleaner.id)
    assert refreshed.rating == 4.5
    assert refreshed.review_count == 2

    # Ratings of the customer do not move the cleaner's score.
    assert kit.lifecycle.rate_customer(first.id, RatingData(rating=1)) is True
    assert kit.profiles.get_cleaner(cleaner.id).rating == 4.5


def test_promo_code_discounts_booking(kit):
    kit.promos.create(PromoCreateRequest(code="spring20", type="percentage", value=20, max_discount=30))
    owner = kit.customer()
    house = kit.house(owner.id)

    booking = kit.place_booking(owner.id, house.id, amount=200.0, promo_code="spring20")

    assert booking.total_amount == 170.0
    assert booking.discount_amount == 30.0
    assert booking.promo_code == "SPRING20"
    promo = kit.promos.get_by_code("SPRING20")
    assert promo.used_count == 1
    assert promo.total_discount_given == 30.0
    assert promo.usage_by_user[owner.id].bookings == [booking.id]


def test_invalid_promo_code_blocks_booking(kit):
    owner = kit.customer()
    house = kit.house(owner.id)

    with pytest.raises(StoreValidationError, match="Invalid promo code"):
        kit.place_booking(owner.id, house.id, promo_code="NOPE")
    assert kit.lifecycle.list_customer_bookings(owner.id) == []

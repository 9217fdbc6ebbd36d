import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from goswish.models import Booking, Cleaner, GeoPoint
from goswish.services.dispatcher import is_within_service_area
from goswish.services.geo import estimate_eta_minutes, haversine_miles

DALLAS = (32.7767, -96.7970)
AUSTIN = (30.2672, -97.7431)


def _offers_for(kit, booking_id):
    return kit.notifications.list_for_booking(booking_id, type="job_offer")


def test_haversine_known_distance():
    assert haversine_miles(*DALLAS, *DALLAS) == 0.0
    dallas_to_austin = haversine_miles(*DALLAS, *AUSTIN)
    assert 175 < dallas_to_austin < 190


def test_eta_estimate_rounds_up():
    assert estimate_eta_minutes(0) == 0
    assert estimate_eta_minutes(3.2) == 10
    assert estimate_eta_minutes(0.2) == 1


def test_cleaner_without_location_is_always_in_area():
    cleaner = Cleaner(user_id="u1", base_location=None, service_radius=5)
    assert is_within_service_area(cleaner, None) is True
    assert is_within_service_area(cleaner, 500.0) is True


def test_located_cleaner_needs_known_distance():
    cleaner = Cleaner(user_id="u1", base_location=GeoPoint(lat=DALLAS[0], lng=DALLAS[1]), service_radius=25)
    assert is_within_service_area(cleaner, None) is False
    assert is_within_service_area(cleaner, 25.0) is True
    assert is_within_service_area(cleaner, 25.1) is False


def test_broadcast_offers_only_cleaners_in_range(kit):
    dallas = kit.cleaner("dallas@example.com", location=DALLAS, radius=25)
    austin = kit.cleaner("austin@example.com", location=AUSTIN, radius=25)
    roaming = kit.cleaner("roaming@example.com", location=None)
    owner = kit.customer()
    house = kit.house(owner.id, location=DALLAS)

    booking = kit.place_booking(owner.id, house.id)

    offers = _offers_for(kit, booking.id)
    recipients = sorted(offer.user_id for offer in offers)
    assert recipients == sorted([dallas.user_id, roaming.user_id])
    assert all(offer.related_id == booking.id for offer in offers)
    assert not kit.notifications.list_for_user(austin.user_id)
    assert "$108.00" in offers[0].message


def test_inactive_cleaners_get_no_offers(kit):
    sleepy = kit.cleaner("sleepy@example.com", location=DALLAS, status="inactive")
    owner = kit.customer()
    house = kit.house(owner.id)

    booking = kit.place_booking(owner.id, house.id)

    assert _offers_for(kit, booking.id) == []
    assert kit.notifications.list_for_user(sleepy.user_id) == []


def test_house_without_coordinates_only_reaches_unlocated_cleaners(kit):
    kit.cleaner("located@example.com", location=DALLAS)
    roaming = kit.cleaner("roaming@example.com", location=None)
    owner = kit.customer()
    house = kit.house(owner.id, location=None)

    booking = kit.place_booking(owner.id, house.id)

    assert [offer.user_id for offer in _offers_for(kit, booking.id)] == [roaming.user_id]


def test_candidates_are_sorted_nearest_first(kit):
    far = kit.cleaner("far@example.com", location=(32.90, -96.80), radius=25)
    near = kit.cleaner("near@example.com", location=DALLAS, radius=25)
    roaming = kit.cleaner("roaming@example.com", location=None)
    owner = kit.customer()
    house = kit.house(owner.id)
    booking = Booking(id="booking-x", booking_number="TX-2030-0101-12345", customer_id=owner.id, house_id=house.id, service_type_id="standard")

    candidates = kit.dispatcher.eligible_cleaners(booking)

    assert [c.cleaner.id for c in candidates] == [near.id, far.id, roaming.id]
    assert candidates[-1].distance is None


def test_broadcast_reaches_every_eligible_cleaner(kit):
    nearby = [kit.cleaner(f"cleaner{index}@example.com", location=DALLAS) for index in range(20)]
    roaming = kit.cleaner("roaming@example.com", location=None)
    owner = kit.customer()
    house = kit.house(owner.id)

    booking = kit.place_booking(owner.id, house.id)

    recipients = sorted(offer.user_id for offer in _offers_for(kit, booking.id))
    assert recipients == sorted([c.user_id for c in nearby] + [roaming.user_id])
    assert len(kit.dispatcher.eligible_cleaners(booking)) == 21


def test_repeat_broadcast_duplicates_offers(kit):
    cleaner = kit.cleaner("dallas@example.com", location=DALLAS)
    owner = kit.customer()
    house = kit.house(owner.id)
    booking = kit.place_booking(owner.id, house.id)

    kit.dispatcher.broadcast_new_job(booking)

    offers = [n for n in kit.notifications.list_for_user(cleaner.user_id) if n.type == "job_offer"]
    assert len(offers) == 2


def test_missing_house_skips_broadcast(kit):
    kit.cleaner("dallas@example.com", location=DALLAS)
    booking = Booking(id="booking-y", booking_number="TX-2030-0101-54321", customer_id="u1", house_id="house-missing", service_type_id="standard")

    assert kit.dispatcher.broadcast_new_job(booking) == []

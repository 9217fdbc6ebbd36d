import os
import sys
import threading

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from goswish.models import TrackingEvent
from goswish.services.tracking import (
    CustomerTrackingPoller,
    IntervalLoop,
    ProviderTripReporter,
    TrackingChannel,
)

DALLAS = (32.7767, -96.7970)


def _confirmed(kit):
    cleaner = kit.cleaner("pro@example.com", location=DALLAS)
    owner = kit.customer()
    house = kit.house(owner.id)
    booking = kit.place_booking(owner.id, house.id)
    kit.lifecycle.accept_job_offer(booking.id, cleaner.id)
    return booking.id


def _event(booking_id, status):
    return TrackingEvent(booking_id=booking_id, status=status, emitted_at="2030-01-01T00:00:00+00:00")


def test_channel_routes_events_by_booking():
    channel = TrackingChannel()
    with channel.subscribe("booking-a") as first, channel.subscribe("booking-b") as second:
        assert channel.publish(_event("booking-a", "on_the_way")) == 1
        assert first.get(timeout=0.1).status == "on_the_way"
        assert second.get(timeout=0.01) is None
    assert channel.subscriber_count("booking-a") == 0
    assert channel.publish(_event("booking-a", "arrived")) == 0


def test_slow_subscriber_keeps_newest_events():
    channel = TrackingChannel()
    subscription = channel.subscribe("booking-a", maxsize=2)
    for status in ["confirmed", "on_the_way", "arrived"]:
        channel.publish(_event("booking-a", status))

    assert subscription.get(timeout=0.1).status == "on_the_way"
    assert subscription.get(timeout=0.1).status == "arrived"
    subscription.close()
    subscription.close()
    assert channel.subscriber_count("booking-a") == 0


def test_interval_loop_stops_when_tick_returns_false():
    calls = []

    def tick():
        calls.append(1)
        return len(calls) < 3

    loop = IntervalLoop(tick, interval=0.01, name="test-loop").start()
    assert loop.wait(timeout=2.0)
    assert loop.ticks == 3
    assert loop.running is False
    assert loop.error is None


def test_interval_loop_keeps_tick_error():
    def tick():
        raise RuntimeError("boom")

    loop = IntervalLoop(tick, interval=0.01).start()
    assert loop.wait(timeout=2.0)
    assert isinstance(loop.error, RuntimeError)
    assert loop.ticks == 0


def test_interval_loop_stops_on_context_exit():
    started = threading.Event()

    def tick():
        started.set()
        return True

    with IntervalLoop(tick, interval=0.01) as loop:
        assert started.wait(timeout=2.0)
    assert loop.running is False


def test_trip_reporter_counts_down_to_arrival(kit):
    booking_id = _confirmed(kit)
    reporter = ProviderTripReporter(kit.lifecycle, booking_id, start_distance=0.9, step=0.3, interval=0.01)

    seen = []
    while reporter.tick():
        seen.append(kit.lifecycle.get_booking(booking_id).tracking.distance)

    assert seen == [0.9, 0.6, 0.3]
    booking = kit.lifecycle.get_booking(booking_id)
    assert booking.status == "arrived"
    assert booking.tracking.eta == 0
    assert reporter.reports == 4


def test_trip_reporter_starting_at_the_door_arrives_on_second_report(kit):
    booking_id = _confirmed(kit)
    reporter = ProviderTripReporter(kit.lifecycle, booking_id, start_distance=0, interval=0.01)

    assert reporter.tick() is True
    assert kit.lifecycle.get_booking(booking_id).status == "on_the_way"
    assert reporter.tick() is False
    assert kit.lifecycle.get_booking(booking_id).status == "arrived"
    assert reporter.reports == 2


def test_trip_reporter_stops_when_booking_cannot_be_tracked(kit):
    booking_id = _confirmed(kit)
    kit.lifecycle.cancel_booking(booking_id, "changed plans")

    reporter = ProviderTripReporter(kit.lifecycle, booking_id, interval=0.01)

    assert reporter.tick() is False


def test_trip_reporter_runs_on_its_own_thread(kit):
    booking_id = _confirmed(kit)

    with ProviderTripReporter(kit.lifecycle, booking_id, start_distance=0.6, step=0.3, interval=0.01) as reporter:
        assert reporter.loop.wait(timeout=5.0)

    assert kit.lifecycle.get_booking(booking_id).status == "arrived"
    assert reporter.loop.error is None


def test_customer_poller_reports_only_status_changes(kit):
    booking_id = _confirmed(kit)
    changes = []
    poller = CustomerTrackingPoller(kit.lifecycle, booking_id, on_change=lambda b: changes.append(b.status), interval=0.01)

    assert poller.tick() is True
    assert poller.tick() is True
    kit.lifecycle.update_booking_tracking(booking_id, {"distance": 2.0})
    assert poller.tick() is True
    kit.lifecycle.update_booking_tracking(booking_id, {"distance": 1.0})
    assert poller.tick() is True
    kit.lifecycle.update_booking_tracking(booking_id, {"distance": 0})
    assert poller.tick() is False

    assert changes == ["confirmed", "on_the_way", "arrived"]


def test_customer_poller_stops_for_missing_booking(kit):
    poller = CustomerTrackingPoller(kit.lifecycle, "booking-missing", on_change=lambda b: None)
    assert poller.tick() is False

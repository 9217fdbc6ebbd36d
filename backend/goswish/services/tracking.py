import logging
import os
import queue
import threading
from threading import Lock
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from goswish.models import Booking, TrackingEvent, TrackingUpdateRequest
from goswish.services.document_store import utc_now
from goswish.services.geo import estimate_eta_minutes

if TYPE_CHECKING:
    from goswish.services.booking_lifecycle import BookingLifecycle

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


POLL_INTERVAL_SECONDS = _env_float("TRACKING_POLL_SECONDS", 3.0)

# Once the cleaner is at the door the tracking view has nothing left to follow.
TRACKING_VIEW_DONE = {
    "arrived",
    "verifying",
    "in_progress",
    "completed_pending_approval",
    "approved",
    "cancelled",
    "disputed",
}


def tracking_event(booking: Booking) -> TrackingEvent:
    return TrackingEvent(
        booking_id=booking.id,
        status=booking.status,
        tracking=booking.tracking,
        emitted_at=utc_now(),
    )


class Subscription:
    """Queue of tracking events for one booking; unsubscribes on context exit."""

    def __init__(self, channel: "TrackingChannel", booking_id: str, maxsize: int):
        self.channel = channel
        self.booking_id = booking_id
        self._queue: "queue.Queue[TrackingEvent]" = queue.Queue(maxsize=maxsize)
        self.closed = False

    def deliver(self, event: TrackingEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                # Slow consumer: the newest state wins.
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[TrackingEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.channel.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class TrackingChannel:
    def __init__(self):
        self._lock = Lock()
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, booking_id: str, maxsize: int = 32) -> Subscription:
        subscription = Subscription(self, booking_id, maxsize)
        with self._lock:
            self._subscribers.setdefault(booking_id, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            rows = self._subscribers.get(subscription.booking_id, [])
            if subscription in rows:
                rows.remove(subscription)
            if not rows:
                self._subscribers.pop(subscription.booking_id, None)

    def subscriber_count(self, booking_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(booking_id, []))

    def publish(self, event: TrackingEvent) -> int:
        with self._lock:
            targets = list(self._subscribers.get(event.booking_id, []))
        for subscription in targets:
            subscription.deliver(event)
        return len(targets)


class IntervalLoop:
    """Calls ``tick`` every ``interval`` seconds on a daemon thread.

    The loop ends when ``stop`` is called, when ``tick`` returns False, when
    ``tick`` raises (the error is kept on ``self.error``), or when the
    ``with`` block that started it exits.
    """

    def __init__(self, tick: Callable[[], bool], interval: float, name: str = "interval-loop"):
        self._tick = tick
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self.error: Optional[BaseException] = None
        self.ticks = 0

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                keep_going = self._tick()
            except Exception as exc:
                logger.exception("%s tick failed", self._thread.name)
                self.error = exc
                break
            self.ticks += 1
            if not keep_going:
                break
            self._stop.wait(self.interval)
        self._stop.set()

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> "IntervalLoop":
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def wait(self, timeout: Optional[float] = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def __enter__(self) -> "IntervalLoop":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop(timeout=self.interval + 1.0)


class ProviderTripReporter:
    """Cleaner session: reports a shrinking distance until arrival."""

    def __init__(
        self,
        lifecycle: "BookingLifecycle",
        booking_id: str,
        start_distance: float = 3.2,
        step: float = 0.3,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        interval: float = POLL_INTERVAL_SECONDS,
    ):
        self.lifecycle = lifecycle
        self.booking_id = booking_id
        self.distance = start_distance
        self.step = step
        self.lat = lat
        self.lng = lng
        self.reports = 0
        self.loop = IntervalLoop(self.tick, interval, name=f"trip-{booking_id}")

    def tick(self) -> bool:
        if self.reports:
            self.distance = max(0.0, round(self.distance - self.step, 2))
        arrived = self.distance <= 0
        updated = self.lifecycle.update_booking_tracking(
            self.booking_id,
            TrackingUpdateRequest(
                status="arrived" if arrived else "on_the_way",
                lat=self.lat,
                lng=self.lng,
                distance=self.distance,
                eta=estimate_eta_minutes(self.distance),
            ),
        )
        self.reports += 1
        if updated is None:
            logger.info("Trip reporting for %s stopped: booking no longer accepts tracking", self.booking_id)
            return False
        return updated.status != "arrived"

    def __enter__(self) -> "ProviderTripReporter":
        self.loop.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.loop.stop(timeout=self.loop.interval + 1.0)


class CustomerTrackingPoller:
    """Customer session: re-renders only when the polled status changes."""

    def __init__(
        self,
        lifecycle: "BookingLifecycle",
        booking_id: str,
        on_change: Callable[[Booking], None],
        interval: float = POLL_INTERVAL_SECONDS,
    ):
        self.lifecycle = lifecycle
        self.booking_id = booking_id
        self.on_change = on_change
        self.last_status: Optional[str] = None
        self.loop = IntervalLoop(self.tick, interval, name=f"poll-{booking_id}")

    def tick(self) -> bool:
        booking = self.lifecycle.get_booking_with_tracking(self.booking_id)
        if booking is None:
            return False
        if booking.status != self.last_status:
            self.last_status = booking.status
            self.on_change(booking)
        return booking.status not in TRACKING_VIEW_DONE

    def __enter__(self) -> "CustomerTrackingPoller":
        self.loop.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.loop.stop(timeout=self.loop.interval + 1.0)


tracking_channel = TrackingChannel()

import logging
from dataclasses import dataclass
from typing import List, Optional

from goswish.models import Booking, Cleaner, House, Notification
from goswish.services.geo import distance_between
from goswish.services.notification_store import NotificationStore, notification_store
from goswish.services.profiles import ProfileStore, profile_store

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    cleaner: Cleaner
    distance: Optional[float]


def house_point(house: House) -> Optional[tuple[float, float]]:
    if house.address.lat is None or house.address.lng is None:
        return None
    return house.address.lat, house.address.lng


def is_within_service_area(cleaner: Cleaner, distance: Optional[float]) -> bool:
    # A cleaner with no base location cannot be excluded.
    if cleaner.base_location is None:
        return True
    if distance is None:
        return False
    return distance <= cleaner.service_radius


class JobDispatcher:
    """Fans a newly placed booking out to the cleaners allowed to see it."""

    def __init__(self, profiles: ProfileStore, notifications: NotificationStore):
        self.profiles = profiles
        self.notifications = notifications

    def eligible_cleaners(self, booking: Booking) -> List[Candidate]:
        house = self.profiles.get_house(booking.house_id)
        if house is None:
            logger.warning("Broadcast skipped: house %s for booking %s not found", booking.house_id, booking.id)
            return []
        target = house_point(house)
        candidates: List[Candidate] = []
        for cleaner in self.profiles.list_active_cleaners():
            origin = None
            if cleaner.base_location is not None:
                origin = (cleaner.base_location.lat, cleaner.base_location.lng)
            distance = distance_between(origin, target)
            if is_within_service_area(cleaner, distance):
                candidates.append(Candidate(cleaner=cleaner, distance=distance))
        candidates.sort(key=lambda c: (c.distance is None, c.distance or 0.0))
        return candidates

    def broadcast_new_job(self, booking: Booking) -> List[Notification]:
        settings = self.profiles.get_app_settings()
        candidates = self.eligible_cleaners(booking)
        payout = round(booking.total_amount * settings.cleaner_earnings_rate, 2)
        offers: List[Notification] = []
        for candidate in candidates:
            where = "near you" if candidate.distance is None else f"{candidate.distance:.1f} mi away"
            offers.append(
                self.notifications.create(
                    user_id=candidate.cleaner.user_id,
                    type="job_offer",
                    title="New job offer",
                    message=f"New {booking.service_type_id} job {where} (${payout:.2f})",
                    related_id=booking.id,
                )
            )
        logger.info("Broadcast booking %s to %d cleaner(s)", booking.id, len(offers))
        return offers


job_dispatcher = JobDispatcher(profile_store, notification_store)

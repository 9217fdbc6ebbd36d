import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from goswish.models import Booking, PromoCode, PromoCreateRequest, PromoUsage, PromoValidation, User
from goswish.services.document_store import (
    Collection,
    DocumentStore,
    StoreConflictError,
    StoreValidationError,
    document_store,
    utc_now,
)
from goswish.services.repository import Repository

logger = logging.getLogger(__name__)

NEW_USER_DAYS = 7


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _reject(error: str) -> PromoValidation:
    return PromoValidation(valid=False, error=error)


class PromoStore:
    def __init__(self, store: DocumentStore):
        self.promos = Repository(store, Collection.PROMO_CODES, PromoCode)
        self.users = Repository(store, Collection.USERS, User)
        self.bookings = Repository(store, Collection.BOOKINGS, Booking)

    def create(self, request: PromoCreateRequest) -> PromoCode:
        code = request.code.strip().upper()
        if not code:
            raise StoreValidationError("Promo code is required")
        if request.type == "percentage" and request.value > 100:
            raise StoreValidationError("Percentage discount cannot exceed 100")
        if self.get_by_code(code) is not None:
            raise StoreConflictError(f"Promo code {code} already exists")
        promo = self.promos.add(PromoCode(**request.model_dump(exclude={"code"}), code=code))
        logger.info("Promo code %s created", promo.code)
        return promo

    def get_by_code(self, code: str) -> Optional[PromoCode]:
        matches = self.promos.query("code", code.strip().upper())
        return matches[0] if matches else None

    def validate(self, code: str, user_id: Optional[str], service_type_id: str, amount: float) -> PromoValidation:
        promo = self.get_by_code(code)
        if promo is None:
            return _reject("Invalid promo code")
        if not promo.active:
            return _reject("This promo code is no longer active")

        now = datetime.now(timezone.utc)
        valid_from = _parse_time(promo.valid_from)
        if valid_from and now < valid_from:
            return _reject("This promo code is not yet active")
        valid_until = _parse_time(promo.valid_until)
        if valid_until and now > valid_until:
            return _reject("This promo code has expired")

        if promo.max_uses is not None and promo.used_count >= promo.max_uses:
            return _reject("This promo code has reached its maximum uses")
        if user_id and promo.max_uses_per_user is not None:
            usage = promo.usage_by_user.get(user_id)
            if usage is not None and usage.count >= promo.max_uses_per_user:
                return _reject("You have already used this promo code the maximum number of times")

        if amount < promo.min_order_amount:
            return _reject(f"Minimum order amount is ${promo.min_order_amount:.2f}")
        if promo.service_types and service_type_id and service_type_id not in promo.service_types:
            return _reject("This promo code is not valid for this service type")

        if promo.first_time_only and user_id:
            if any(b.status == "approved" for b in self.bookings.query("customer_id", user_id)):
                return _reject("This promo code is only valid for your first order")
        if promo.new_users_only and user_id:
            user = self.users.get(user_id)
            created = _parse_time(user.created_at) if user else None
            if created and now - created > timedelta(days=NEW_USER_DAYS):
                return _reject("This promo code is only valid for new users")

        if promo.type == "percentage":
            discount = amount * promo.value / 100
            if promo.max_discount is not None:
                discount = min(discount, promo.max_discount)
        else:
            discount = promo.value
        discount = round(min(discount, amount), 2)
        return PromoValidation(valid=True, promo_id=promo.id, code=promo.code, discount=discount)

    def apply(self, promo_id: str, user_id: Optional[str], discount: float, booking_id: Optional[str]) -> bool:
        """Record one use of a promo code; False when it is gone or used up."""
        for _ in range(5):
            promo = self.promos.get(promo_id)
            if promo is None:
                logger.warning("Promo code %s not found", promo_id)
                return False
            if promo.max_uses is not None and promo.used_count >= promo.max_uses:
                logger.warning("Promo code %s reached max uses", promo.code)
                return False
            now = utc_now()
            changes = {
                "used_count": promo.used_count + 1,
                "total_discount_given": round(promo.total_discount_given + discount, 2),
                "last_used_at": now,
            }
            if user_id:
                usage = promo.usage_by_user.get(user_id) or PromoUsage()
                usage_by_user = dict(promo.usage_by_user)
                usage_by_user[user_id] = PromoUsage(
                    count=usage.count + 1,
                    total_discount=round(usage.total_discount + discount, 2),
                    last_used=now,
                    bookings=[*usage.bookings, booking_id] if booking_id else list(usage.bookings),
                )
                changes["usage_by_user"] = usage_by_user
            if self.promos.update_if(promo.id, {"used_count": promo.used_count}, **changes) is not None:
                logger.info("Promo code %s applied (%d uses)", promo.code, promo.used_count + 1)
                return True
        logger.warning("Promo code %s kept racing; giving up", promo_id)
        return False


promo_store = PromoStore(document_store)

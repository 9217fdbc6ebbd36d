import hashlib
import hmac
import secrets
from typing import List, Optional

from goswish.models import (
    AppSettings,
    Cleaner,
    CleanerProfileRequest,
    House,
    HouseCreateRequest,
    RegisterRequest,
    User,
)
from goswish.services.document_store import (
    Collection,
    DocumentStore,
    StoreConflictError,
    StoreValidationError,
    document_store,
)
from goswish.services.repository import Repository

APP_SETTINGS_ID = "app"


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(8)
    digest = hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()
    return f"{salt}${digest}"


def check_password(password: str, stored: str) -> bool:
    salt, _, _ = stored.partition("$")
    if not salt:
        return False
    return hmac.compare_digest(hash_password(password, salt), stored)


class ProfileStore:
    """Users, houses, cleaner profiles and app settings."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.users = Repository(store, Collection.USERS, User)
        self.houses = Repository(store, Collection.HOUSES, House)
        self.cleaners = Repository(store, Collection.CLEANERS, Cleaner)
        self.settings = Repository(store, Collection.SETTINGS, AppSettings)

    def register_user(self, request: RegisterRequest) -> User:
        email = request.email.strip().lower()
        if "@" not in email:
            raise StoreValidationError("A valid email is required")
        if len(request.password) < 6:
            raise StoreValidationError("Password must be at least 6 characters")
        if self.users.query("email", email):
            raise StoreConflictError("Email already registered")
        user = self.users.add(
            User(
                email=email,
                name=request.name.strip() or email,
                role=request.role,
                password_hash=hash_password(request.password),
            )
        )
        if user.role == "cleaner":
            self.cleaners.add(Cleaner(user_id=user.id, name=user.name, status="inactive"))
        return user

    def ensure_admin(self, email: str, password: str) -> User:
        email = email.strip().lower()
        matches = self.users.query("email", email)
        if matches:
            return self.users.update(matches[0].id, role="admin", password_hash=hash_password(password))
        return self.users.add(User(email=email, name="Admin", role="admin", password_hash=hash_password(password)))

    def authenticate(self, email: str, password: str) -> Optional[User]:
        matches = self.users.query("email", email.strip().lower())
        if not matches or not check_password(password, matches[0].password_hash):
            return None
        return matches[0]

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def create_house(self, user_id: str, request: HouseCreateRequest) -> House:
        if not request.address.street.strip() or not request.address.city.strip():
            raise StoreValidationError("House address needs a street and a city")
        return self.houses.add(House(user_id=user_id, name=request.name, address=request.address))

    def list_houses(self, user_id: str) -> List[House]:
        return self.houses.query("user_id", user_id)

    def get_house(self, house_id: str) -> Optional[House]:
        return self.houses.get(house_id)

    def get_cleaner(self, cleaner_id: str) -> Optional[Cleaner]:
        return self.cleaners.get(cleaner_id)

    def get_cleaner_by_user_id(self, user_id: str) -> Optional[Cleaner]:
        matches = self.cleaners.query("user_id", user_id)
        return matches[0] if matches else None

    def list_active_cleaners(self) -> List[Cleaner]:
        return self.cleaners.query("status", "active")

    def upsert_cleaner_profile(self, user_id: str, request: CleanerProfileRequest) -> Cleaner:
        radius = request.service_radius
        if radius is None:
            radius = self.get_app_settings().default_service_radius
        if radius <= 0:
            raise StoreValidationError("service_radius must be positive")
        existing = self.get_cleaner_by_user_id(user_id)
        if existing is None:
            return self.cleaners.add(
                Cleaner(
                    user_id=user_id,
                    name=request.name,
                    base_location=request.base_location,
                    service_radius=radius,
                    status=request.status,
                    service_types=request.service_types,
                )
            )
        return self.cleaners.update(
            existing.id,
            name=request.name or existing.name,
            base_location=request.base_location,
            service_radius=radius,
            status=request.status,
            service_types=request.service_types,
        )

    def get_app_settings(self) -> AppSettings:
        return self.settings.get(APP_SETTINGS_ID) or AppSettings(id=APP_SETTINGS_ID)

    def save_app_settings(self, settings: AppSettings) -> AppSettings:
        return self.settings.save(settings.model_copy(update={"id": APP_SETTINGS_ID}))


profile_store = ProfileStore(document_store)

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


BookingStatus = Literal[
    "placed",
    "confirmed",
    "on_the_way",
    "arrived",
    "verifying",
    "in_progress",
    "completed_pending_approval",
    "approved",
    "cancelled",
    "disputed",
]

VerifierRole = Literal["customer", "cleaner"]


class Document(BaseModel):
    id: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class GeoPoint(BaseModel):
    lat: float
    lng: float
    city: Optional[str] = None


class Address(BaseModel):
    street: str
    city: str
    state: str = ""
    zip_code: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None


class User(Document):
    email: str
    name: str
    role: Literal["customer", "cleaner", "admin"] = "customer"
    password_hash: str = ""
    device_tokens: List[str] = Field(default_factory=list)


class House(Document):
    user_id: str
    name: str = ""
    address: Address


class Cleaner(Document):
    user_id: str
    name: str = ""
    base_location: Optional[GeoPoint] = None
    service_radius: float = 25.0
    status: Literal["active", "inactive"] = "active"
    service_types: List[str] = Field(default_factory=list)
    rating: float = 0.0
    review_count: int = 0


class VerificationCodes(BaseModel):
    customer_code: str
    cleaner_code: str
    customer_verified: bool = False
    cleaner_verified: bool = False
    generated_at: Optional[str] = None


class Tracking(BaseModel):
    status: Literal["on_the_way", "arrived"] = "on_the_way"
    lat: Optional[float] = None
    lng: Optional[float] = None
    distance: Optional[float] = None
    eta: Optional[int] = None
    updated_at: Optional[str] = None


class RatingData(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str = ""
    tags: List[str] = Field(default_factory=list)
    rated_at: Optional[str] = None


class Booking(Document):
    booking_number: str
    customer_id: str
    cleaner_id: Optional[str] = None
    house_id: str
    service_type_id: str
    add_on_ids: List[str] = Field(default_factory=list)
    dates: List[str] = Field(default_factory=list)
    time_slots: Dict[str, List[str]] = Field(default_factory=dict)
    special_notes: str = ""
    total_amount: float = 0.0
    promo_code: Optional[str] = None
    discount_amount: float = 0.0
    status: BookingStatus = "placed"
    payment_status: Literal["pending", "released", "refunded"] = "pending"
    verification_codes: Optional[VerificationCodes] = None
    tracking: Optional[Tracking] = None
    job_started_at: Optional[str] = None
    completed_at: Optional[str] = None
    cleaner_notes: str = ""
    final_photos: List[str] = Field(default_factory=list)
    approved_at: Optional[str] = None
    customer_rating: Optional[RatingData] = None
    cleaner_rating: Optional[RatingData] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[str] = None
    dispute_reason: Optional[str] = None
    disputed_at: Optional[str] = None
    version: int = 1


class Job(Document):
    booking_id: str
    booking_number: str
    customer_id: str
    cleaner_id: str
    house_id: str
    service_type_id: str
    amount: float = 0.0
    earnings: float = 0.0
    status: Literal["confirmed", "in_progress", "completed", "cancelled"] = "confirmed"
    scheduled_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class Notification(Document):
    user_id: str
    type: str
    title: str = ""
    message: str = ""
    related_id: Optional[str] = None
    read: bool = False


class Review(Document):
    booking_id: str
    cleaner_id: str
    customer_id: str
    reviewer_role: Literal["homeowner", "cleaner"]
    rating: int = Field(ge=1, le=5)
    comment: str = ""
    tags: List[str] = Field(default_factory=list)


class TagCount(BaseModel):
    tag: str
    count: int


class ReviewStats(BaseModel):
    avg_rating: float = 0.0
    total_reviews: int = 0
    distribution: Dict[str, int] = Field(default_factory=lambda: {str(star): 0 for star in range(5, 0, -1)})
    top_tags: List[TagCount] = Field(default_factory=list)


class CleanerReviews(BaseModel):
    cleaner_id: str
    reviews: List[Review]
    stats: ReviewStats


class PromoUsage(BaseModel):
    count: int = 0
    total_discount: float = 0.0
    last_used: Optional[str] = None
    bookings: List[str] = Field(default_factory=list)


class PromoCode(Document):
    code: str
    type: Literal["percentage", "fixed"] = "percentage"
    value: float = Field(ge=0)
    active: bool = True
    valid_from: Optional[str] = None
    valid_until: Optional[str] = None
    max_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    min_order_amount: float = 0.0
    max_discount: Optional[float] = None
    service_types: List[str] = Field(default_factory=list)
    first_time_only: bool = False
    new_users_only: bool = False
    used_count: int = 0
    total_discount_given: float = 0.0
    usage_by_user: Dict[str, PromoUsage] = Field(default_factory=dict)
    last_used_at: Optional[str] = None


class Transaction(Document):
    cleaner_id: str
    booking_id: str
    type: Literal["payout"] = "payout"
    gross_amount: float
    amount: float
    status: Literal["released"] = "released"


class Conversation(Document):
    booking_id: str
    participant_ids: List[str]
    status: Literal["active", "closed"] = "active"
    last_message: Optional[str] = None
    last_message_time: Optional[str] = None
    closed_at: Optional[str] = None


class Message(Document):
    conversation_id: str
    sender_id: str
    content: str
    status: Literal["sent", "read"] = "sent"


class AppSettings(Document):
    cleaner_earnings_rate: float = 0.90
    default_service_radius: float = 25.0


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str
    role: Literal["customer", "cleaner"] = "customer"


class AuthLoginRequest(BaseModel):
    email: str
    password: str


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    role: str
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    role: str
    session_started_at: str


class HouseCreateRequest(BaseModel):
    name: str = ""
    address: Address


class CleanerProfileRequest(BaseModel):
    name: str = ""
    base_location: Optional[GeoPoint] = None
    service_radius: Optional[float] = None
    status: Literal["active", "inactive"] = "active"
    service_types: List[str] = Field(default_factory=list)


class BookingCreateRequest(BaseModel):
    house_id: str
    service_type_id: str
    add_on_ids: List[str] = Field(default_factory=list)
    dates: List[str]
    time_slots: Dict[str, List[str]] = Field(default_factory=dict)
    special_notes: str = ""
    total_amount: float = Field(default=0.0, ge=0)
    promo_code: Optional[str] = None


class PromoCreateRequest(BaseModel):
    code: str
    type: Literal["percentage", "fixed"] = "percentage"
    value: float = Field(ge=0)
    valid_from: Optional[str] = None
    valid_until: Optional[str] = None
    max_uses: Optional[int] = Field(default=None, ge=1)
    max_uses_per_user: Optional[int] = Field(default=None, ge=1)
    min_order_amount: float = Field(default=0.0, ge=0)
    max_discount: Optional[float] = Field(default=None, ge=0)
    service_types: List[str] = Field(default_factory=list)
    first_time_only: bool = False
    new_users_only: bool = False


class PromoValidateRequest(BaseModel):
    code: str
    service_type_id: str = ""
    amount: float = Field(ge=0)


class PromoValidation(BaseModel):
    valid: bool
    error: str = ""
    promo_id: Optional[str] = None
    code: Optional[str] = None
    discount: float = 0.0


class TrackingUpdateRequest(BaseModel):
    status: Literal["on_the_way", "arrived"] = "on_the_way"
    lat: Optional[float] = None
    lng: Optional[float] = None
    distance: Optional[float] = None
    eta: Optional[int] = None


class VerificationCodesResponse(BaseModel):
    customer_code: str
    cleaner_code: str


class VerifyCodeRequest(BaseModel):
    code: str


class VerifyCodeResponse(BaseModel):
    verified: bool
    message: str = ""


class OwnCodeResponse(BaseModel):
    role: VerifierRole
    code: str


class TransitionResult(BaseModel):
    ok: bool
    booking: Optional[Booking] = None


class SubmitJobRequest(BaseModel):
    note: str = ""
    photos: List[str] = Field(default_factory=list)


class ReasonRequest(BaseModel):
    reason: str = ""


class DeviceTokenRegisterRequest(BaseModel):
    device_token: str
    platform: Literal["android", "ios", "web"] = "web"


class MessageSendRequest(BaseModel):
    content: str


class EarningsSummary(BaseModel):
    cleaner_id: str
    total: float
    jobs: int
    transactions: List[Transaction]


class TrackingEvent(BaseModel):
    booking_id: str
    status: BookingStatus
    tracking: Optional[Tracking] = None
    emitted_at: str


class DatabaseSnapshot(BaseModel):
    collections: Dict[str, List[Dict[str, Any]]]

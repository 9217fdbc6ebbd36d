import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from goswish.auth import Session, require_role, require_session
from goswish.models import (
    Booking,
    BookingCreateRequest,
    Job,
    OwnCodeResponse,
    RatingData,
    ReasonRequest,
    SubmitJobRequest,
    TrackingUpdateRequest,
    TransitionResult,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from goswish.routers.errors import raise_store_http_error
from goswish.services.booking_lifecycle import BOOKING_TERMINAL_STATUSES, booking_lifecycle
from goswish.services.document_store import StoreError
from goswish.services.profiles import profile_store
from goswish.services.tracking import tracking_event

router = APIRouter(prefix="/bookings", tags=["bookings"])

STREAM_KEEPALIVE_SECONDS = 15.0


def _cleaner_id_for(session: Session) -> str:
    cleaner = profile_store.get_cleaner_by_user_id(session.user_id)
    if cleaner is None:
        raise HTTPException(status_code=404, detail="Cleaner profile not found")
    return cleaner.id


def _view(booking: Booking, session: Session) -> Booking:
    # Each party only ever sees the code they must read out loud.
    codes = booking.verification_codes
    if codes is None:
        return booking
    if session.role == "customer":
        codes = codes.model_copy(update={"cleaner_code": ""})
    elif session.role == "cleaner":
        codes = codes.model_copy(update={"customer_code": ""})
    return booking.model_copy(update={"verification_codes": codes})


def _load_for_party(booking_id: str, session: Session) -> Booking:
    try:
        booking = booking_lifecycle.require_booking(booking_id)
        if session.role != "admin":
            booking_lifecycle.assert_party(booking, session.user_id, session.role)
    except StoreError as exc:
        raise_store_http_error(exc)
    return booking


def _result(updated: Optional[Booking], booking_id: str, session: Session) -> TransitionResult:
    if updated is None:
        current = booking_lifecycle.get_booking(booking_id)
        return TransitionResult(ok=False, booking=_view(current, session) if current else None)
    return TransitionResult(ok=True, booking=_view(updated, session))


@router.post("", response_model=Booking)
def create_booking(payload: BookingCreateRequest, session: Session = Depends(require_session)):
    require_role(session, "customer")
    try:
        return booking_lifecycle.create_booking(session.user_id, payload)
    except StoreError as exc:
        raise_store_http_error(exc)


@router.get("", response_model=list[Booking])
def list_bookings(session: Session = Depends(require_session)):
    if session.role == "cleaner":
        rows = booking_lifecycle.list_cleaner_bookings(_cleaner_id_for(session))
    else:
        rows = booking_lifecycle.list_customer_bookings(session.user_id)
    return [_view(row, session) for row in rows]


@router.get("/available", response_model=list[Booking])
def list_available_bookings(session: Session = Depends(require_session)):
    require_role(session, "cleaner")
    return booking_lifecycle.list_available_bookings()


@router.get("/{booking_id}", response_model=Booking)
def get_booking(booking_id: str, session: Session = Depends(require_session)):
    return _view(_load_for_party(booking_id, session), session)


@router.post("/{booking_id}/accept", response_model=Job)
def accept_job_offer(booking_id: str, session: Session = Depends(require_session)):
    require_role(session, "cleaner")
    cleaner_id = _cleaner_id_for(session)
    try:
        return booking_lifecycle.accept_job_offer(booking_id, cleaner_id)
    except StoreError as exc:
        raise_store_http_error(exc)


@router.post("/{booking_id}/tracking", response_model=TransitionResult)
def update_tracking(booking_id: str, payload: TrackingUpdateRequest, session: Session = Depends(require_session)):
    require_role(session, "cleaner")
    booking = _load_for_party(booking_id, session)
    return _result(booking_lifecycle.update_booking_tracking(booking.id, payload), booking.id, session)


@router.get("/{booking_id}/tracking", response_model=Booking)
def get_tracking(booking_id: str, session: Session = Depends(require_session)):
    booking = _load_for_party(booking_id, session)
    return _view(booking_lifecycle.get_booking_with_tracking(booking.id) or booking, session)


@router.get("/{booking_id}/tracking/stream")
def stream_tracking(
    booking_id: str,
    keepalive: float = Query(default=STREAM_KEEPALIVE_SECONDS, gt=0, le=60),
    session: Session = Depends(require_session),
):
    booking = _load_for_party(booking_id, session)
    subscription = booking_lifecycle.channel.subscribe(booking.id)

    def event_generator():
        with subscription:
            current = booking_lifecycle.get_booking_with_tracking(booking.id) or booking
            yield f"data: {tracking_event(_view(current, session)).model_dump_json()}\n\n"
            status = current.status
            while status not in BOOKING_TERMINAL_STATUSES:
                event = subscription.get(timeout=keepalive)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                status = event.status
                yield f"data: {event.model_dump_json()}\n\n"
        yield f"data: {json.dumps({'type': 'done', 'status': status})}\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.post("/{booking_id}/verification-codes", response_model=OwnCodeResponse)
def generate_verification_codes(booking_id: str, session: Session = Depends(require_session)):
    require_role(session, "cleaner")
    booking = _load_for_party(booking_id, session)
    codes = booking_lifecycle.generate_verification_codes(booking.id)
    if codes is None:
        raise HTTPException(status_code=409, detail=f"Cannot generate codes while booking is {booking.status}")
    return OwnCodeResponse(role="cleaner", code=codes.cleaner_code)


@router.get("/{booking_id}/verification-code", response_model=OwnCodeResponse)
def get_own_code(booking_id: str, session: Session = Depends(require_session)):
    require_role(session, "customer", "cleaner")
    booking = _load_for_party(booking_id, session)
    codes = booking.verification_codes
    if codes is None:
        raise HTTPException(status_code=404, detail="Verification codes not generated yet")
    code = codes.customer_code if session.role == "customer" else codes.cleaner_code
    return OwnCodeResponse(role=session.role, code=code)


@router.post("/{booking_id}/verify", response_model=VerifyCodeResponse)
def verify_code(booking_id: str, payload: VerifyCodeRequest, session: Session = Depends(require_session)):
    require_role(session, "customer", "cleaner")
    booking = _load_for_party(booking_id, session)
    try:
        verified = booking_lifecycle.verify_job_code(booking.id, session.role, payload.code)
    except StoreError as exc:
        raise_store_http_error(exc)
    if not verified:
        return VerifyCodeResponse(verified=False, message="Incorrect code, please try again")
    return VerifyCodeResponse(verified=True, message="Code verified")


@router.post("/{booking_id}/start", response_model=TransitionResult)
def start_job(booking_id: str, session: Session = Depends(require_session)):
    booking = _load_for_party(booking_id, session)
    started = booking_lifecycle.check_verification_and_start(booking.id)
    current = booking_lifecycle.get_booking(booking.id)
    return TransitionResult(ok=started, booking=_view(current, session) if current else None)


@router.post("/{booking_id}/submit", response_model=TransitionResult)
def submit_job(booking_id: str, payload: SubmitJobRequest, session: Session = Depends(require_session)):
    require_role(session, "cleaner")
    booking = _load_for_party(booking_id, session)
    updated = booking_lifecycle.submit_job_for_approval(booking.id, payload.note, payload.photos)
    return _result(updated, booking.id, session)


@router.post("/{booking_id}/approve", response_model=TransitionResult)
def approve_job(booking_id: str, payload: RatingData, session: Session = Depends(require_session)):
    require_role(session, "customer")
    booking = _load_for_party(booking_id, session)
    approved = booking_lifecycle.approve_job(booking.id, payload)
    current = booking_lifecycle.get_booking(booking.id)
    return TransitionResult(ok=approved, booking=_view(current, session) if current else None)


@router.post("/{booking_id}/rate-customer", response_model=TransitionResult)
def rate_customer(booking_id: str, payload: RatingData, session: Session = Depends(require_session)):
    require_role(session, "cleaner")
    booking = _load_for_party(booking_id, session)
    rated = booking_lifecycle.rate_customer(booking.id, payload)
    current = booking_lifecycle.get_booking(booking.id)
    return TransitionResult(ok=rated, booking=_view(current, session) if current else None)


@router.post("/{booking_id}/cancel", response_model=TransitionResult)
def cancel_booking(booking_id: str, payload: ReasonRequest, session: Session = Depends(require_session)):
    booking = _load_for_party(booking_id, session)
    return _result(booking_lifecycle.cancel_booking(booking.id, payload.reason), booking.id, session)


@router.post("/{booking_id}/dispute", response_model=TransitionResult)
def dispute_job(booking_id: str, payload: ReasonRequest, session: Session = Depends(require_session)):
    booking = _load_for_party(booking_id, session)
    return _result(booking_lifecycle.dispute_job(booking.id, payload.reason), booking.id, session)

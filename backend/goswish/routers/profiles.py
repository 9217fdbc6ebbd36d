from fastapi import APIRouter, Depends, HTTPException

from goswish.auth import Session, require_role, require_session
from goswish.models import Cleaner, CleanerProfileRequest, CleanerReviews, EarningsSummary, House, HouseCreateRequest
from goswish.routers.errors import raise_store_http_error
from goswish.services.booking_lifecycle import booking_lifecycle
from goswish.services.document_store import StoreError
from goswish.services.profiles import profile_store
from goswish.services.reviews import review_store

router = APIRouter(tags=["profiles"])


@router.post("/houses", response_model=House)
def create_house(payload: HouseCreateRequest, session: Session = Depends(require_session)):
    require_role(session, "customer")
    try:
        return profile_store.create_house(session.user_id, payload)
    except StoreError as exc:
        raise_store_http_error(exc)


@router.get("/houses", response_model=list[House])
def list_houses(session: Session = Depends(require_session)):
    return profile_store.list_houses(session.user_id)


@router.put("/cleaners/me", response_model=Cleaner)
def upsert_cleaner_profile(payload: CleanerProfileRequest, session: Session = Depends(require_session)):
    require_role(session, "cleaner")
    try:
        return profile_store.upsert_cleaner_profile(session.user_id, payload)
    except StoreError as exc:
        raise_store_http_error(exc)


@router.get("/cleaners/me", response_model=Cleaner)
def get_cleaner_profile(session: Session = Depends(require_session)):
    cleaner = profile_store.get_cleaner_by_user_id(session.user_id)
    if cleaner is None:
        raise HTTPException(status_code=404, detail="Cleaner profile not found")
    return cleaner


@router.get("/cleaners/me/earnings", response_model=EarningsSummary)
def get_cleaner_earnings(session: Session = Depends(require_session)):
    cleaner = profile_store.get_cleaner_by_user_id(session.user_id)
    if cleaner is None:
        raise HTTPException(status_code=404, detail="Cleaner profile not found")
    return booking_lifecycle.get_cleaner_earnings(cleaner.id)


@router.get("/cleaners/{cleaner_id}/reviews", response_model=CleanerReviews)
def get_cleaner_reviews(cleaner_id: str, session: Session = Depends(require_session)):
    if cleaner_id == "me":
        cleaner = profile_store.get_cleaner_by_user_id(session.user_id)
    else:
        cleaner = profile_store.get_cleaner(cleaner_id)
    if cleaner is None:
        raise HTTPException(status_code=404, detail="Cleaner profile not found")
    return review_store.cleaner_reviews_with_stats(cleaner.id)

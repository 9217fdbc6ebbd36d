from fastapi import APIRouter, Depends

from goswish.auth import Session, require_role, require_session
from goswish.models import DatabaseSnapshot
from goswish.routers.errors import raise_store_http_error
from goswish.services.document_store import StoreError, document_store

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/export", response_model=DatabaseSnapshot)
def export_database(session: Session = Depends(require_session)):
    require_role(session, "admin")
    return DatabaseSnapshot(collections=document_store.export_database())


@router.post("/import", response_model=dict)
def import_database(payload: DatabaseSnapshot, session: Session = Depends(require_session)):
    require_role(session, "admin")
    try:
        document_store.import_database(payload.collections)
    except StoreError as exc:
        raise_store_http_error(exc)
    return {"status": "ok", "collections": sorted(payload.collections)}

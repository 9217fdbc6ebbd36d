from fastapi import HTTPException

from goswish.services.document_store import (
    DocumentNotFoundError,
    StoreConflictError,
    StoreError,
    StorePermissionError,
)


def raise_store_http_error(exc: StoreError) -> None:
    if isinstance(exc, DocumentNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, StorePermissionError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, StoreConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))

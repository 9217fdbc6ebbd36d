import logging
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from goswish.models import Document
from goswish.services.document_store import Collection, DocumentStore

T = TypeVar("T", bound=Document)

logger = logging.getLogger(__name__)


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(item) for item in value]
    if isinstance(value, dict):
        return {key: _dump(item) for key, item in value.items()}
    return value


class Repository(Generic[T]):
    """Typed view over one collection of the document store."""

    def __init__(self, store: DocumentStore, collection: Collection, model: Type[T]) -> None:
        self.store = store
        self.collection = collection
        self.model = model

    def _load(self, raw: Optional[Dict[str, Any]]) -> Optional[T]:
        if raw is None:
            return None
        try:
            return self.model.model_validate(raw)
        except ValidationError as exc:
            # Imported or hand-edited records may not match the model.
            logger.warning(
                "Skipping invalid %s record %s: %d error(s)", self.collection.value, raw.get("id"), exc.error_count()
            )
            return None

    def _load_all(self, rows: List[Dict[str, Any]]) -> List[T]:
        loaded = [self._load(raw) for raw in rows]
        return [item for item in loaded if item is not None]

    def get(self, doc_id: Optional[str]) -> Optional[T]:
        if not doc_id:
            return None
        return self._load(self.store.get_doc(self.collection, doc_id))

    def list(self) -> List[T]:
        return self._load_all(self.store.get_docs(self.collection))

    def query(self, field: str, value: Any) -> List[T]:
        return self._load_all(self.store.query_docs(self.collection, field, value))

    def add(self, entity: T) -> T:
        data = entity.model_dump(mode="json")
        if not data.get("id"):
            data.pop("id", None)
        doc_id = self.store.add_doc(self.collection, data)
        return self._load(self.store.get_doc(self.collection, doc_id))

    def save(self, entity: T) -> T:
        return self.model.model_validate(
            self.store.set_doc(self.collection, entity.id, entity.model_dump(mode="json"))
        )

    def update(self, doc_id: str, **changes: Any) -> T:
        return self.model.model_validate(self.store.update_doc(self.collection, doc_id, _dump(changes)))

    def update_if(self, doc_id: str, condition: Dict[str, Any], **changes: Any) -> Optional[T]:
        applied, raw = self.store.conditional_update(self.collection, doc_id, _dump(changes), _dump(condition))
        if not applied:
            return None
        return self._load(raw)

    def delete(self, doc_id: str) -> bool:
        return self.store.delete_doc(self.collection, doc_id)

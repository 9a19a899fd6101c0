"""Creation of subtopic records as top-level documents or nested units."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from bson import ObjectId

from .errors import NotFoundError, ValidationError
from .resolver import UNITS_FIELD, RecordLocation, parse_object_id
from .store import Document, DocumentStore


LOGGER = logging.getLogger(__name__)

NAME_FIELDS = ("unitName", "subtopicName")
PARENT_FIELD = "parentId"
CREATED_AT_FIELD = "createdAt"
UPDATED_AT_FIELD = "updatedAt"


@dataclass(frozen=True)
class CreatedRecord:
    """Identifier and storage shape of a freshly created record."""

    identifier: str
    location: RecordLocation
    collection_name: str
    parent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "location": self.location.value,
            "collectionName": self.collection_name,
            "parentId": self.parent_id,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_name(payload: Mapping[str, Any]) -> str:
    for field_name in NAME_FIELDS:
        value = payload.get(field_name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise ValidationError("A unitName or subtopicName is required")


class RecordWriter:
    """Insert new records and report where they ended up."""

    def __init__(self, store: DocumentStore, *, now: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._now = now

    def for_store(self, store: DocumentStore) -> "RecordWriter":
        if store is self._store:
            return self
        return RecordWriter(store, now=self._now)

    async def create_record(self, collection_name: str, payload: Mapping[str, Any]) -> CreatedRecord:
        collection = (collection_name or "").strip()
        if not collection:
            raise ValidationError("A collection name is required")
        name = _require_name(payload)

        timestamp = self._now()
        document: Document = {
            key: value for key, value in payload.items() if key not in {"_id", PARENT_FIELD}
        }
        document[CREATED_AT_FIELD] = timestamp
        document[UPDATED_AT_FIELD] = timestamp

        raw_parent = payload.get(PARENT_FIELD)
        parent_id = str(raw_parent).strip() if raw_parent is not None else ""
        if parent_id:
            return await self._append_unit(collection, parent_id, name, document)

        inserted_id = await self._store.insert_one(collection, document)
        LOGGER.info("Inserted record '%s' into '%s' as %s", name, collection, inserted_id)
        return CreatedRecord(
            identifier=str(inserted_id),
            location=RecordLocation.MAIN_DOCUMENT,
            collection_name=collection,
        )

    async def _append_unit(
        self, collection: str, parent_id: str, name: str, document: Document
    ) -> CreatedRecord:
        unit_id = str(document.get("id") or ObjectId())
        document["id"] = unit_id
        document[PARENT_FIELD] = parent_id

        candidates = []
        native_parent = parse_object_id(parent_id)
        if native_parent is not None:
            candidates.append(native_parent)
        candidates.append(parent_id)

        for candidate in candidates:
            result = await self._store.update_one(
                collection,
                {"_id": candidate},
                {
                    "$push": {UNITS_FIELD: document},
                    "$set": {UPDATED_AT_FIELD: document[UPDATED_AT_FIELD]},
                },
            )
            if result.matched_count:
                LOGGER.info(
                    "Appended unit '%s' (%s) to parent '%s' in '%s'",
                    name,
                    unit_id,
                    parent_id,
                    collection,
                )
                return CreatedRecord(
                    identifier=unit_id,
                    location=RecordLocation.NESTED_UNIT,
                    collection_name=collection,
                    parent_id=parent_id,
                )

        raise NotFoundError(parent_id, [collection])


__all__ = ["CreatedRecord", "RecordWriter"]

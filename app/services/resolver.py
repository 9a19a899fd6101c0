"""Locate and update subtopic records whose shape and id type vary by producer.

A subtopic may be stored as a top-level document or as an element of a
parent's ``units`` array, and its identity may be a native ``ObjectId`` or a
plain string held under ``_id`` or ``id``. Resolution walks a fixed list of
strategies, one (shape, id field, id type) combination each, and stops at the
first one that matches. The order never changes so repeated calls behave the
same way.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from bson import ObjectId
from bson.errors import InvalidId

from .errors import NotFoundError, ValidationError
from .store import Document, DocumentStore


LOGGER = logging.getLogger(__name__)

UNITS_FIELD = "units"
VIDEO_URL_FIELD = "aiVideoUrl"
UPDATED_AT_FIELD = "updatedAt"
_RESERVED_FIELDS = frozenset({"_id", "id", UNITS_FIELD})


class RecordLocation(str, Enum):
    MAIN_DOCUMENT = "mainDocument"
    NESTED_UNIT = "nestedUnit"
    NOT_FOUND = "notFound"


def parse_object_id(identifier: Any) -> Optional[ObjectId]:
    """Return *identifier* as an :class:`ObjectId`, or ``None`` when it does not parse."""

    if isinstance(identifier, ObjectId):
        return identifier
    try:
        return ObjectId(identifier)
    except (InvalidId, TypeError):
        return None


@dataclass(frozen=True)
class FlatRecord:
    collection: str
    document: Document

    @property
    def location(self) -> RecordLocation:
        return RecordLocation.MAIN_DOCUMENT

    @property
    def target(self) -> Document:
        return self.document


@dataclass(frozen=True)
class NestedRecord:
    collection: str
    parent: Document
    element: Document
    id_field: str

    @property
    def location(self) -> RecordLocation:
        return RecordLocation.NESTED_UNIT

    @property
    def target(self) -> Document:
        return self.element


ResolvedRecord = Union[FlatRecord, NestedRecord]


@dataclass(frozen=True)
class Strategy:
    """One candidate (shape, id field, id type) combination."""

    name: str
    location: RecordLocation
    id_field: str
    native_id: bool

    def coerce(self, identifier: str) -> Any:
        if not self.native_id:
            return identifier
        return parse_object_id(identifier)

    def build_filter(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Return the store filter for *identifier*, or ``None`` when not applicable."""

        value = self.coerce(identifier)
        if value is None:
            return None
        if self.location is RecordLocation.NESTED_UNIT:
            return {f"{UNITS_FIELD}.{self.id_field}": value}
        return {self.id_field: value}

    def field_path(self, name: str) -> str:
        if self.location is RecordLocation.NESTED_UNIT:
            return f"{UNITS_FIELD}.$.{name}"
        return name

    def extract(self, collection: str, document: Document, identifier: str) -> Optional[ResolvedRecord]:
        if self.location is RecordLocation.MAIN_DOCUMENT:
            return FlatRecord(collection=collection, document=document)

        value = self.coerce(identifier)
        for element in document.get(UNITS_FIELD) or ():
            if isinstance(element, dict) and element.get(self.id_field) == value:
                return NestedRecord(
                    collection=collection,
                    parent=document,
                    element=element,
                    id_field=self.id_field,
                )
        return None

    async def find(
        self, store: DocumentStore, collection: str, identifier: str
    ) -> Optional[ResolvedRecord]:
        query = self.build_filter(identifier)
        if query is None:
            return None
        return await self.fetch(store, collection, query, identifier)

    async def fetch(
        self,
        store: DocumentStore,
        collection: str,
        query: Mapping[str, Any],
        identifier: str,
    ) -> Optional[ResolvedRecord]:
        document = await store.find_one(collection, query)
        if document is None:
            return None
        return self.extract(collection, document, identifier)


DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (
    Strategy("nested_string__id", RecordLocation.NESTED_UNIT, "_id", native_id=False),
    Strategy("nested_string_id", RecordLocation.NESTED_UNIT, "id", native_id=False),
    Strategy("nested_native__id", RecordLocation.NESTED_UNIT, "_id", native_id=True),
    Strategy("nested_native_id", RecordLocation.NESTED_UNIT, "id", native_id=True),
    Strategy("main_native_id", RecordLocation.MAIN_DOCUMENT, "_id", native_id=True),
    Strategy("main_string_id", RecordLocation.MAIN_DOCUMENT, "_id", native_id=False),
)


@dataclass(frozen=True)
class ResolutionOutcome:
    matched: bool
    location: RecordLocation
    collection_name: Optional[str] = None
    modified_count: int = 0
    strategy: Optional[str] = None
    record: Optional[ResolvedRecord] = field(default=None, compare=False)
    collections_searched: Tuple[str, ...] = ()

    @classmethod
    def not_found(cls, collections: Sequence[str]) -> "ResolutionOutcome":
        return cls(
            matched=False,
            location=RecordLocation.NOT_FOUND,
            collections_searched=tuple(collections),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "location": self.location.value,
            "collectionName": self.collection_name,
            "modifiedCount": self.modified_count,
            "strategy": self.strategy,
        }


def _require_identifier(identifier: Optional[str]) -> str:
    if identifier is None or not str(identifier).strip():
        raise ValidationError("A record identifier is required")
    return str(identifier).strip()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordResolver:
    """Resolve record identifiers against every collection of a database."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._strategies = tuple(strategies)
        self._now = now

    @property
    def strategies(self) -> Tuple[Strategy, ...]:
        return self._strategies

    def for_store(self, store: DocumentStore) -> "RecordResolver":
        """Return a resolver with the same strategies working against *store*."""

        if store is self._store:
            return self
        return RecordResolver(store, strategies=self._strategies, now=self._now)

    async def _iter_collections(
        self, scope_hint: Optional[str], searched: List[str]
    ) -> AsyncIterator[str]:
        hint = (scope_hint or "").strip() or None
        if hint is not None:
            searched.append(hint)
            yield hint
        for name in await self._store.list_collection_names():
            if name == hint:
                continue
            searched.append(name)
            yield name

    async def locate(self, identifier: str, scope_hint: Optional[str] = None) -> ResolutionOutcome:
        """Return where *identifier* lives without modifying anything."""

        identifier = _require_identifier(identifier)
        searched: List[str] = []
        async with contextlib.aclosing(self._iter_collections(scope_hint, searched)) as collections:
            async for collection in collections:
                for strategy in self._strategies:
                    record = await strategy.find(self._store, collection, identifier)
                    if record is None:
                        continue
                    LOGGER.info(
                        "Resolved '%s' in collection '%s' via %s",
                        identifier,
                        collection,
                        strategy.name,
                    )
                    return self._matched(strategy, record, collection, 0, searched)

        LOGGER.info("Record '%s' not found in any of %s collection(s)", identifier, len(searched))
        return ResolutionOutcome.not_found(searched)

    async def attach_video(
        self,
        identifier: str,
        video_url: str,
        metadata: Optional[Mapping[str, Any]] = None,
        scope_hint: Optional[str] = None,
    ) -> ResolutionOutcome:
        """Store *video_url* and *metadata* on the first record matching *identifier*.

        Only the winning strategy writes. When the target already carries the
        same values nothing is written and ``modified_count`` is 0.
        """

        identifier = _require_identifier(identifier)
        if not video_url or not str(video_url).strip():
            raise ValidationError("A video URL is required")
        changes = self._build_changes(str(video_url).strip(), metadata)

        searched: List[str] = []
        async with contextlib.aclosing(self._iter_collections(scope_hint, searched)) as collections:
            async for collection in collections:
                for strategy in self._strategies:
                    query = strategy.build_filter(identifier)
                    if query is None:
                        continue
                    record = await strategy.fetch(self._store, collection, query, identifier)
                    if record is None:
                        continue
                    outcome = await self._write(
                        strategy, record, query, identifier, changes, searched
                    )
                    if outcome is not None:
                        return outcome

        LOGGER.warning(
            "Cannot attach video: record '%s' not found (searched: %s)",
            identifier,
            ", ".join(searched) or "<none>",
        )
        raise NotFoundError(identifier, searched)

    async def _write(
        self,
        strategy: Strategy,
        record: ResolvedRecord,
        query: Mapping[str, Any],
        identifier: str,
        changes: Mapping[str, Any],
        searched: Sequence[str],
    ) -> Optional[ResolutionOutcome]:
        collection = record.collection
        target = record.target
        if all(key in target and target[key] == value for key, value in changes.items()):
            LOGGER.info(
                "Record '%s' in '%s' already holds the requested video; nothing to write",
                identifier,
                collection,
            )
            return self._matched(strategy, record, collection, 0, searched)

        update_fields = {strategy.field_path(key): value for key, value in changes.items()}
        update_fields[strategy.field_path(UPDATED_AT_FIELD)] = self._now()
        result = await self._store.update_one(collection, query, {"$set": update_fields})
        if result.matched_count == 0:
            LOGGER.warning(
                "Record '%s' vanished from '%s' between lookup and update (%s)",
                identifier,
                collection,
                strategy.name,
            )
            return None
        if result.modified_count > 1:
            LOGGER.error(
                "Update for '%s' in '%s' modified %s documents; expected at most one",
                identifier,
                collection,
                result.modified_count,
            )
        LOGGER.info(
            "Attached video to '%s' in '%s' via %s (modified=%s)",
            identifier,
            collection,
            strategy.name,
            result.modified_count,
        )
        return self._matched(strategy, record, collection, result.modified_count, searched)

    @staticmethod
    def _build_changes(video_url: str, metadata: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        for key, value in (metadata or {}).items():
            name = str(key)
            if not name or name in _RESERVED_FIELDS or name.startswith("$") or "." in name:
                raise ValidationError(f"Metadata field '{name}' cannot be written")
            changes[name] = value
        changes[VIDEO_URL_FIELD] = video_url
        return changes

    @staticmethod
    def _matched(
        strategy: Strategy,
        record: ResolvedRecord,
        collection: str,
        modified_count: int,
        searched: Sequence[str],
    ) -> ResolutionOutcome:
        return ResolutionOutcome(
            matched=True,
            location=record.location,
            collection_name=collection,
            modified_count=modified_count,
            strategy=strategy.name,
            record=record,
            collections_searched=tuple(searched),
        )


__all__ = [
    "DEFAULT_STRATEGIES",
    "FlatRecord",
    "NestedRecord",
    "RecordLocation",
    "RecordResolver",
    "ResolutionOutcome",
    "ResolvedRecord",
    "Strategy",
    "UNITS_FIELD",
    "UPDATED_AT_FIELD",
    "VIDEO_URL_FIELD",
    "parse_object_id",
]

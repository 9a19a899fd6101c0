"""Document store access backed by MongoDB."""

from __future__ import annotations

import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Protocol

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from .errors import StoreUnavailableError, ValidationError
from .events import emit_db_event


LOGGER = logging.getLogger(__name__)

Document = Dict[str, Any]

# Characters MongoDB refuses in database names.
_FORBIDDEN_DATABASE_CHARS = frozenset("/\\. \"$*<>:|?\0")
_MAX_DATABASE_NAME_LENGTH = 63


def validate_database_name(name: str) -> str:
    """Return *name* stripped, or raise :class:`ValidationError` when MongoDB would reject it."""

    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("A database name is required")
    if len(cleaned) > _MAX_DATABASE_NAME_LENGTH or _FORBIDDEN_DATABASE_CHARS.intersection(cleaned):
        raise ValidationError(f"Invalid database name: '{cleaned}'")
    return cleaned


@dataclass(frozen=True)
class UpdateOutcome:
    matched_count: int
    modified_count: int


class DocumentStore(Protocol):
    """Narrow set of store primitives consumed by the record services."""

    async def ping(self) -> None:
        ...

    @property
    def database_name(self) -> str:
        ...

    def with_database(self, database_name: Optional[str]) -> "DocumentStore":
        ...

    async def list_collection_names(self) -> List[str]:
        ...

    async def find_one(self, collection: str, filter: Mapping[str, Any]) -> Optional[Document]:
        ...

    async def update_one(
        self, collection: str, filter: Mapping[str, Any], update: Mapping[str, Any]
    ) -> UpdateOutcome:
        ...

    async def insert_one(self, collection: str, document: Document) -> Any:
        ...

    async def count_documents(self, collection: str) -> int:
        ...

    async def sample_documents(self, collection: str, limit: int = 2) -> List[Document]:
        ...


class MongoDocumentStore:
    """:class:`DocumentStore` implementation on top of pymongo's asyncio client.

    The client is created once at process start and reused by every request.
    Driver failures are reported as :class:`StoreUnavailableError`.
    """

    def __init__(self, client: AsyncMongoClient, database_name: str) -> None:
        self._client = client
        self._database_name = database_name
        self._database = client[database_name]

    @classmethod
    def from_uri(cls, uri: str, database_name: str, **client_options: Any) -> "MongoDocumentStore":
        client_options.setdefault("serverSelectionTimeoutMS", 5000)
        return cls(AsyncMongoClient(uri, **client_options), database_name)

    @property
    def database_name(self) -> str:
        return self._database_name

    def with_database(self, database_name: Optional[str]) -> "MongoDocumentStore":
        """Return a store for *database_name* sharing this client.

        ``None`` selects the configured database. Views never own the
        client; only the store built by :meth:`from_uri` should be closed.
        """

        if database_name is None:
            return self
        name = validate_database_name(database_name)
        if name == self._database_name:
            return self
        return MongoDocumentStore(self._client, name)

    @contextlib.asynccontextmanager
    async def _track(self, action: str, **payload: Any) -> AsyncIterator[Dict[str, Any]]:
        start = time.perf_counter()
        event_payload: Dict[str, Any] = {"database": self._database_name, **payload}
        try:
            yield event_payload
        except PyMongoError as error:
            event_payload["status"] = "error"
            event_payload["error"] = f"{error.__class__.__name__}: {error}"
            emit_db_event(
                action,
                payload=event_payload,
                duration_ms=(time.perf_counter() - start) * 1000.0,
                level=logging.ERROR,
            )
            raise StoreUnavailableError(
                f"Document store operation '{action}' failed: {error}"
            ) from error
        else:
            event_payload.setdefault("status", "ok")
            emit_db_event(
                action,
                payload=event_payload,
                duration_ms=(time.perf_counter() - start) * 1000.0,
            )

    async def ping(self) -> None:
        async with self._track("ping"):
            await self._client.admin.command("ping")
        LOGGER.info("Connected to MongoDB database '%s'", self._database_name)

    async def close(self) -> None:
        await self._client.close()

    async def list_collection_names(self) -> List[str]:
        async with self._track("list_collections") as event:
            names = await self._database.list_collection_names()
            event["count"] = len(names)
        return sorted(names)

    async def find_one(self, collection: str, filter: Mapping[str, Any]) -> Optional[Document]:
        async with self._track("find_one", collection=collection, filter=dict(filter)) as event:
            document = await self._database[collection].find_one(dict(filter))
            event["found"] = document is not None
        return document

    async def update_one(
        self, collection: str, filter: Mapping[str, Any], update: Mapping[str, Any]
    ) -> UpdateOutcome:
        async with self._track("update_one", collection=collection, filter=dict(filter)) as event:
            result = await self._database[collection].update_one(dict(filter), dict(update))
            event["matched"] = result.matched_count
            event["modified"] = result.modified_count
        return UpdateOutcome(
            matched_count=int(result.matched_count),
            modified_count=int(result.modified_count),
        )

    async def insert_one(self, collection: str, document: Document) -> Any:
        async with self._track("insert_one", collection=collection) as event:
            result = await self._database[collection].insert_one(document)
            event["inserted_id"] = result.inserted_id
        return result.inserted_id

    async def count_documents(self, collection: str) -> int:
        async with self._track("count_documents", collection=collection) as event:
            count = await self._database[collection].count_documents({})
            event["count"] = count
        return int(count)

    async def sample_documents(self, collection: str, limit: int = 2) -> List[Document]:
        async with self._track("sample_documents", collection=collection, limit=limit):
            cursor = self._database[collection].find({}).limit(limit)
            documents = await cursor.to_list(length=limit)
        return documents


__all__ = [
    "Document",
    "DocumentStore",
    "MongoDocumentStore",
    "UpdateOutcome",
    "validate_database_name",
]

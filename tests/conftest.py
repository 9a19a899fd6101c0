from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bson import ObjectId

from app.config import AppConfig
from app.services.errors import ProviderError, StoreUnavailableError
from app.services.generation import VideoGenerationOrchestrator
from app.services.provider import TalkStatus
from app.services.store import UpdateOutcome, validate_database_name


_MISSING = object()


def _lookup(document: Mapping[str, Any], path: str) -> List[Any]:
    """Return every value reachable through dotted *path*, descending into arrays."""

    head, _, rest = path.partition(".")
    value = document.get(head, _MISSING)
    if value is _MISSING:
        return []
    if not rest:
        return [value]
    if isinstance(value, list):
        found: List[Any] = []
        for item in value:
            if isinstance(item, dict):
                found.extend(_lookup(item, rest))
        return found
    if isinstance(value, dict):
        return _lookup(value, rest)
    return []


def _matches(document: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    return all(
        any(candidate == expected for candidate in _lookup(document, path))
        for path, expected in query.items()
    )


class InMemoryDocumentStore:
    """Dictionary-backed stand-in for the document store used by the services."""

    def __init__(
        self,
        database_name: str = "professional",
        databases: Optional[Dict[str, "InMemoryDocumentStore"]] = None,
    ) -> None:
        self.database_name = database_name
        self.databases = databases if databases is not None else {}
        self.databases.setdefault(database_name, self)
        self.collections: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.unavailable = False
        self.pinged = 0
        self.closed = False

    # helpers -----------------------------------------------------------
    def seed(self, collection: str, *documents: Dict[str, Any]) -> None:
        bucket = self.collections.setdefault(collection, [])
        for document in documents:
            stored = copy.deepcopy(document)
            stored.setdefault("_id", ObjectId())
            bucket.append(stored)

    def documents(self, collection: str) -> List[Dict[str, Any]]:
        return self.collections.get(collection, [])

    def queries(self, method: str = "find_one") -> List[Dict[str, Any]]:
        return [query for name, _, query in self.calls if name == method]

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailableError("Document store operation failed: connection refused")

    # DocumentStore interface -------------------------------------------
    def with_database(self, database_name: Optional[str]) -> "InMemoryDocumentStore":
        if database_name is None:
            return self
        name = validate_database_name(database_name)
        if name not in self.databases:
            InMemoryDocumentStore(name, self.databases)
        return self.databases[name]

    async def ping(self) -> None:
        self._check()
        self.pinged += 1

    async def close(self) -> None:
        self.closed = True

    async def list_collection_names(self) -> List[str]:
        self._check()
        return sorted(self.collections)

    async def find_one(self, collection: str, filter: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        self._check()
        self.calls.append(("find_one", collection, dict(filter)))
        for document in self.collections.get(collection, []):
            if _matches(document, filter):
                return copy.deepcopy(document)
        return None

    async def update_one(
        self, collection: str, filter: Mapping[str, Any], update: Mapping[str, Any]
    ) -> UpdateOutcome:
        self._check()
        self.calls.append(("update_one", collection, dict(filter)))
        for document in self.collections.get(collection, []):
            if not _matches(document, filter):
                continue
            before = copy.deepcopy(document)
            for path, value in update.get("$set", {}).items():
                self._apply_set(document, filter, path, value)
            for path, value in update.get("$push", {}).items():
                document.setdefault(path, []).append(copy.deepcopy(value))
            return UpdateOutcome(matched_count=1, modified_count=int(before != document))
        return UpdateOutcome(matched_count=0, modified_count=0)

    @staticmethod
    def _apply_set(
        document: Dict[str, Any], filter: Mapping[str, Any], path: str, value: Any
    ) -> None:
        if ".$." not in path:
            document[path] = copy.deepcopy(value)
            return
        array_field, _, element_field = path.partition(".$.")
        for element in document.get(array_field, []):
            element_query = {
                key[len(array_field) + 1 :]: expected
                for key, expected in filter.items()
                if key.startswith(f"{array_field}.")
            }
            if isinstance(element, dict) and _matches(element, element_query):
                element[element_field] = copy.deepcopy(value)
                return

    async def insert_one(self, collection: str, document: Dict[str, Any]) -> Any:
        self._check()
        self.calls.append(("insert_one", collection, {}))
        stored = copy.deepcopy(document)
        stored.setdefault("_id", ObjectId())
        self.collections.setdefault(collection, []).append(stored)
        return stored["_id"]

    async def count_documents(self, collection: str) -> int:
        self._check()
        return len(self.collections.get(collection, []))

    async def sample_documents(self, collection: str, limit: int = 2) -> List[Dict[str, Any]]:
        self._check()
        return copy.deepcopy(self.collections.get(collection, [])[:limit])


class ScriptedProvider:
    """Provider double replaying a fixed sequence of status tokens."""

    def __init__(
        self,
        statuses: Sequence[str] = ("done",),
        *,
        result_url: Optional[str] = "https://cdn/video1.mp4",
        talk_id: str = "talk_1",
        repeat_last: bool = True,
    ) -> None:
        self._statuses = list(statuses)
        self._result_url = result_url
        self._talk_id = talk_id
        self._repeat_last = repeat_last
        self.created: List[Tuple[str, str]] = []
        self.polled: List[str] = []
        self.poll_errors: Dict[int, Exception] = {}
        self.closed = False

    async def create_talk(self, script: str, presenter_id: str) -> str:
        self.created.append((script, presenter_id))
        return self._talk_id

    async def get_talk(self, talk_id: str) -> TalkStatus:
        self.polled.append(talk_id)
        index = len(self.polled) - 1
        if index in self.poll_errors:
            raise self.poll_errors[index]
        if index < len(self._statuses):
            status = self._statuses[index]
        elif self._repeat_last and self._statuses:
            status = self._statuses[-1]
        else:
            raise ProviderError("script exhausted")
        result_url = self._result_url if status == "done" else None
        return TalkStatus(status=status, result_url=result_url, raw={"status": status})

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Monotonic clock advanced only by the injected sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def build_orchestrator(
    provider: ScriptedProvider,
    clock: FakeClock,
    *,
    poll_interval: float = 3.0,
    max_wait: float = 600.0,
) -> VideoGenerationOrchestrator:
    return VideoGenerationOrchestrator(
        provider,
        presenter_id="amy-jcwqj4g",
        poll_interval=poll_interval,
        max_wait=max_wait,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def temp_config(tmp_path: Path) -> AppConfig:
    return AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_name": "professional",
            "allowed_origins": ["http://localhost:5173"],
        },
        base_path=tmp_path,
        environ={"MONGO_URI": "mongodb://localhost:27017", "DID_API_KEY": "user:secret"},
    )


def seed_physics(store: InMemoryDocumentStore, extra_units: Iterable[Dict[str, Any]] = ()) -> ObjectId:
    parent_id = ObjectId()
    store.seed(
        "physics",
        {
            "_id": parent_id,
            "unitName": "Mechanics",
            "units": [
                {"id": "sub-42", "unitName": "Kinematics", "description": "A body moving under..."},
                *extra_units,
            ],
        },
    )
    return parent_id

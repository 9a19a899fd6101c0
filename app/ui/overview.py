"""Shared helpers for building inspection snapshots of the document store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..services.resolver import UNITS_FIELD
from ..services.store import Document, DocumentStore


SAMPLE_LIMIT = 2


@dataclass
class UnitSample:
    id: Optional[str]
    unit_name: Optional[str]


@dataclass
class DocumentSample:
    id: str
    unit_name: Optional[str]
    parent_id: Optional[str]
    has_units: bool
    units_count: int
    units_sample: List[UnitSample]


@dataclass
class CollectionOverview:
    name: str
    document_count: int
    samples: List[DocumentSample]


@dataclass
class InspectionSnapshot:
    database: str
    collections: List[CollectionOverview]

    @property
    def collection_count(self) -> int:
        return len(self.collections)

    @property
    def document_count(self) -> int:
        return sum(collection.document_count for collection in self.collections)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "database": self.database,
            "collections": {
                collection.name: {
                    "documentCount": collection.document_count,
                    "sample": [
                        {
                            "_id": sample.id,
                            "unitName": sample.unit_name,
                            "parentId": sample.parent_id,
                            "hasUnits": sample.has_units,
                            "unitsCount": sample.units_count,
                            "unitsSample": [
                                {"id": unit.id, "unitName": unit.unit_name}
                                for unit in sample.units_sample
                            ],
                        }
                        for sample in collection.samples
                    ],
                }
                for collection in self.collections
            },
        }


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def summarize_document(document: Document) -> DocumentSample:
    units = document.get(UNITS_FIELD)
    unit_list = [unit for unit in units if isinstance(unit, dict)] if isinstance(units, list) else []
    return DocumentSample(
        id=str(document.get("_id")),
        unit_name=_optional_str(document.get("unitName")),
        parent_id=_optional_str(document.get("parentId")),
        has_units=isinstance(units, list),
        units_count=len(unit_list),
        units_sample=[
            UnitSample(
                id=_optional_str(unit.get("id", unit.get("_id"))),
                unit_name=_optional_str(unit.get("unitName")),
            )
            for unit in unit_list[:SAMPLE_LIMIT]
        ],
    )


async def collect_inspection(store: DocumentStore, database: str) -> InspectionSnapshot:
    """Aggregate per-collection counts and samples into a snapshot for UIs."""

    collections: List[CollectionOverview] = []
    for name in await store.list_collection_names():
        count = await store.count_documents(name)
        samples = await store.sample_documents(name, SAMPLE_LIMIT)
        collections.append(
            CollectionOverview(
                name=name,
                document_count=count,
                samples=[summarize_document(document) for document in samples],
            )
        )
    return InspectionSnapshot(database=database, collections=collections)


__all__ = [
    "CollectionOverview",
    "DocumentSample",
    "InspectionSnapshot",
    "UnitSample",
    "collect_inspection",
    "summarize_document",
]

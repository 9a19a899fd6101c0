"""Plain-text rendering of a database inspection snapshot."""

from __future__ import annotations

from typing import Iterator, List

from .overview import CollectionOverview, DocumentSample, InspectionSnapshot


class ConsoleUI:
    """Print collection counts and sample shapes without any styling."""

    def __init__(self, snapshot: InspectionSnapshot) -> None:
        self._snapshot = snapshot

    def run(self) -> None:
        for line in self.render():
            print(line)

    def render(self) -> List[str]:
        lines = [f"Database: {self._snapshot.database}", "=" * 40]
        if not self._snapshot.collections:
            lines.append("(no collections)")
        for collection in self._snapshot.collections:
            heading = f"Collection: {collection.name} ({collection.document_count} documents)"
            lines.extend([heading, "-" * len(heading)])
            lines.extend(_collection_lines(collection) or ["(empty)"])
            lines.append("")
        return lines


def _collection_lines(collection: CollectionOverview) -> List[str]:
    return [line for sample in collection.samples for line in _sample_lines(sample)]


def _sample_lines(sample: DocumentSample) -> Iterator[str]:
    notes = []
    if sample.parent_id:
        notes.append(f"parent {sample.parent_id}")
    if sample.has_units:
        notes.append(f"{sample.units_count} units")
    suffix = f" ({', '.join(notes)})" if notes else ""
    yield f"  {sample.id}: {sample.unit_name or '(unnamed)'}{suffix}"
    for unit in sample.units_sample:
        yield f"    unit {unit.id}: {unit.unit_name or '(unnamed)'}"


__all__ = ["ConsoleUI"]

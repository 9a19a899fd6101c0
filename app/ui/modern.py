"""A Rich-powered console view of the document store layout."""

from __future__ import annotations

from typing import Optional

from rich import box
from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .overview import DocumentSample, InspectionSnapshot


class ModernUI:
    """Render an inspection snapshot as a collection tree beside a count table."""

    def __init__(self, snapshot: InspectionSnapshot, *, console: Optional[Console] = None) -> None:
        self._snapshot = snapshot
        self._console = console or Console()

    def run(self) -> None:
        snapshot = self._snapshot
        self._console.rule(f"[bold magenta]Database {snapshot.database}")

        if not snapshot.collections:
            self._console.print(
                Panel(
                    "No collections exist in this database yet.\n"
                    "Create a subtopic with [bold]POST /api/subtopics[/bold] first.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        layout = Columns(
            [
                Panel(self._collection_tree(), title="Samples", border_style="cyan", box=box.ROUNDED),
                Panel(self._count_table(), title="At a glance", border_style="magenta", box=box.ROUNDED),
            ],
            expand=True,
            equal=True,
        )
        self._console.print(layout)

    def _collection_tree(self) -> Tree:
        tree = Tree(f"[bold cyan]{self._snapshot.database}", guide_style="cyan")
        for collection in self._snapshot.collections:
            branch = tree.add(Text(collection.name, style="bold"))
            if not collection.samples:
                branch.add("[dim]empty")
            for sample in collection.samples:
                leaf = branch.add(_sample_label(sample))
                for unit in sample.units_sample:
                    leaf.add(Text.assemble((unit.unit_name or "(unnamed)", "white"), (f"  {unit.id}", "dim")))
        return tree

    def _count_table(self) -> Table:
        table = Table(box=box.SIMPLE_HEAD, expand=True, show_footer=True)
        table.add_column("Collection", footer="Total", style="dim")
        table.add_column(
            "Documents",
            footer=str(self._snapshot.document_count),
            justify="right",
            style="bold",
        )
        for collection in self._snapshot.collections:
            table.add_row(collection.name, str(collection.document_count))
        return table


def _sample_label(sample: DocumentSample) -> Text:
    label = Text.assemble((sample.unit_name or "(unnamed)", "bright_cyan"), (f"  {sample.id}", "dim"))
    if sample.has_units:
        label.append(f"  {sample.units_count} units", style="green")
    if sample.parent_id:
        label.append(f"\nparent {sample.parent_id}", style="dim")
    return label


__all__ = ["ModernUI"]

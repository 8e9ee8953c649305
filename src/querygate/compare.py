"""Column-level diff of two table definitions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from querygate.adapters._base import ColumnInfo, TableInfo


class DiffStatus(enum.Enum):
    IDENTICAL = "identical"
    MODIFIED = "modified"
    ADDED = "added"
    REMOVED = "removed"


# Attributes compared between two versions of a column.
_COMPARED = ("data_type", "nullable", "length", "precision", "scale", "default")
# Size attributes only count as a difference when both sides report them.
_SIZE_ATTRS = frozenset({"length", "precision", "scale"})


@dataclass(frozen=True)
class AttributeChange:
    attribute: str
    before: object
    after: object


@dataclass(frozen=True)
class ColumnDiff:
    name: str
    status: DiffStatus
    before: ColumnInfo | None = None
    after: ColumnInfo | None = None
    changes: tuple[AttributeChange, ...] = ()


@dataclass(frozen=True)
class SchemaDiffResult:
    table_name: str
    status: DiffStatus
    columns: list[ColumnDiff] = field(default_factory=list)

    @property
    def added_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.status is DiffStatus.ADDED]

    @property
    def removed_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.status is DiffStatus.REMOVED]

    @property
    def modified_columns(self) -> list[ColumnDiff]:
        return [c for c in self.columns if c.status is DiffStatus.MODIFIED]


def _column_changes(before: ColumnInfo, after: ColumnInfo) -> tuple[AttributeChange, ...]:
    changes: list[AttributeChange] = []
    for attr in _COMPARED:
        old, new = getattr(before, attr), getattr(after, attr)
        if attr in _SIZE_ATTRS and (old is None or new is None):
            continue
        if old != new:
            changes.append(AttributeChange(attr, old, new))
    return tuple(changes)


def compare_tables(a: TableInfo | None, b: TableInfo | None) -> SchemaDiffResult:
    """Diff table *a* (before) against table *b* (after).

    A missing *a* means the table was added, a missing *b* that it was removed.
    Columns are reported in A's order followed by columns only B has.
    """
    if a is None and b is None:
        raise ValueError("At least one table must be provided")

    if a is None:
        assert b is not None
        return SchemaDiffResult(
            table_name=b.name,
            status=DiffStatus.ADDED,
            columns=[ColumnDiff(c.name, DiffStatus.ADDED, after=c) for c in b.columns],
        )
    if b is None:
        return SchemaDiffResult(
            table_name=a.name,
            status=DiffStatus.REMOVED,
            columns=[ColumnDiff(c.name, DiffStatus.REMOVED, before=c) for c in a.columns],
        )

    before = {c.name: c for c in a.columns}
    after = {c.name: c for c in b.columns}
    names = list(before) + [n for n in after if n not in before]

    diffs: list[ColumnDiff] = []
    for name in names:
        old, new = before.get(name), after.get(name)
        if old is None:
            diffs.append(ColumnDiff(name, DiffStatus.ADDED, after=new))
        elif new is None:
            diffs.append(ColumnDiff(name, DiffStatus.REMOVED, before=old))
        else:
            changes = _column_changes(old, new)
            status = DiffStatus.MODIFIED if changes else DiffStatus.IDENTICAL
            diffs.append(ColumnDiff(name, status, before=old, after=new, changes=changes))

    identical = all(d.status is DiffStatus.IDENTICAL for d in diffs)
    return SchemaDiffResult(
        table_name=a.name,
        status=DiffStatus.IDENTICAL if identical else DiffStatus.MODIFIED,
        columns=diffs,
    )

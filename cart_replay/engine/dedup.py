"""Reduce raw remote rows to one canonical record per identity key."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..models import CanonicalRecord, RemoteRow, WorkingSet
from .predicates import Clause


@dataclass(frozen=True, slots=True)
class FilterPlan:
    """Client-side filters for one replay.

    ``standing`` clauses always apply (e.g. blocked labels) and are never user
    toggleable; ``user`` clauses mirror what the user selected.
    """

    standing: tuple[Clause, ...] = ()
    user: tuple[Clause, ...] = ()


def _passes(row: RemoteRow, clauses: Iterable[Clause]) -> bool:
    return all(clause.matches(row) for clause in clauses)


class RecordCollector:
    """Incremental :func:`aggregate` fed one page at a time.

    Rows without an identity key are counted in ``keyless`` and dropped.
    ``relaxed`` may be set after construction; it is settled on the first page,
    before any rows are added.
    """

    def __init__(self, plan: FilterPlan | None = None, relaxed: Clause | None = None) -> None:
        self.plan = plan or FilterPlan()
        self.relaxed = relaxed
        self.records: WorkingSet = []
        self._seen: set[str] = set()
        self.keyless = 0

    def __len__(self) -> int:
        return len(self.records)

    def add(self, rows: Iterable[RemoteRow]) -> int:
        """Filter and dedup ``rows``; return how many new records they produced."""

        before = len(self.records)
        for row in rows:
            if row.key is None:
                self.keyless += 1
                continue
            if not _passes(row, self.plan.standing):
                continue
            if self.relaxed is not None and not self.relaxed.matches(row):
                continue
            if not _passes(row, self.plan.user):
                continue
            if row.key in self._seen:
                continue
            self._seen.add(row.key)
            self.records.append(CanonicalRecord.from_row(row))
        return len(self.records) - before


def aggregate(
    rows: Iterable[RemoteRow],
    plan: FilterPlan,
    relaxed: Clause | None = None,
) -> WorkingSet:
    """Filter ``rows`` and keep the first row seen for every key.

    Filters run in order: standing exclusions, the clause the server refused
    (if any), then user filters. Filtering happens before dedup so a relaxed
    fetch yields the same records as one where the server applied the clause.
    Row order is preserved, which keeps the result most-recent-first.
    """

    collector = RecordCollector(plan, relaxed)
    collector.add(rows)
    return collector.records


__all__ = ["FilterPlan", "RecordCollector", "aggregate"]

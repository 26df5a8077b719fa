"""Reconcile a fresh working set with the count the user was shown."""

from __future__ import annotations

from dataclasses import dataclass

from ..models import WorkingSet


@dataclass(frozen=True, slots=True)
class CountMismatch:
    """Informational: fewer records exist now than were estimated."""

    expected: int
    actual: int

    def describe(self) -> str:
        return f"expected {self.expected}, found {self.actual}"


@dataclass(slots=True)
class ReconciledResult:
    records: WorkingSet
    expected: int
    trimmed: int = 0
    mismatch: CountMismatch | None = None

    @property
    def count(self) -> int:
        return len(self.records)


def reconcile(working_set: WorkingSet, estimated_count: int) -> ReconciledResult:
    """Make the exported size never exceed ``estimated_count``.

    Larger sets keep their first ``estimated_count`` records (the most recent,
    given fetch order). Smaller sets are kept whole and annotated.
    """

    if estimated_count < 0:
        raise ValueError("estimated_count must be >= 0")
    size = len(working_set)
    if size > estimated_count:
        return ReconciledResult(
            records=list(working_set[:estimated_count]),
            expected=estimated_count,
            trimmed=size - estimated_count,
        )
    if size < estimated_count:
        return ReconciledResult(
            records=list(working_set),
            expected=estimated_count,
            mismatch=CountMismatch(expected=estimated_count, actual=size),
        )
    return ReconciledResult(records=list(working_set), expected=estimated_count)


__all__ = ["CountMismatch", "ReconciledResult", "reconcile"]

"""Predicate clauses that can be pushed to the server or evaluated locally.

Every clause renders to the ArcGIS SQL ``where`` dialect and can also be
evaluated against a fetched :class:`RemoteRow`. The second form is what lets a
clause the server refused be applied client-side instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Iterable

from ..models import RemoteRow


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def _fold(value: Any, case_insensitive: bool) -> Any:
    if case_insensitive and isinstance(value, str):
        return value.casefold()
    return value


class Clause(ABC):
    """A single conjunct of a query predicate."""

    name: str

    @abstractmethod
    def to_sql(self) -> str:
        """Render the clause in the ArcGIS ``where`` dialect."""

    @abstractmethod
    def matches(self, row: RemoteRow) -> bool:
        """Evaluate the clause against an already fetched row."""


@dataclass(frozen=True)
class DateRange(Clause):
    """Inclusive calendar-day range over the row timestamp."""

    field: str
    start: date
    end: date
    name: str = "date_range"

    def bounds(self) -> tuple[datetime, datetime]:
        return (
            datetime.combine(self.start, time.min, tzinfo=timezone.utc),
            datetime.combine(self.end, time.max, tzinfo=timezone.utc),
        )

    def to_sql(self) -> str:
        return (
            f"{self.field} >= DATE '{self.start.isoformat()}' "
            f"AND {self.field} <= DATE '{self.end.isoformat()}'"
        )

    def matches(self, row: RemoteRow) -> bool:
        if row.timestamp is None:
            return False
        low, high = self.bounds()
        return low <= row.timestamp <= high


@dataclass(frozen=True)
class InSet(Clause):
    field: str
    values: tuple[Any, ...]
    case_insensitive: bool = False
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))
        if not self.name:
            object.__setattr__(self, "name", f"{self.field}_in")

    def _allowed(self) -> set[Any]:
        return {_fold(value, self.case_insensitive) for value in self.values}

    def to_sql(self) -> str:
        values = [_fold(value, self.case_insensitive) for value in self.values]
        column = f"LOWER({self.field})" if self.case_insensitive else self.field
        return f"{column} IN ({','.join(_literal(value) for value in values)})"

    def matches(self, row: RemoteRow) -> bool:
        return _fold(row.get(self.field), self.case_insensitive) in self._allowed()


@dataclass(frozen=True)
class NotInSet(Clause):
    field: str
    values: tuple[Any, ...]
    case_insensitive: bool = False
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))
        if not self.name:
            object.__setattr__(self, "name", f"{self.field}_not_in")

    def to_sql(self) -> str:
        values = [_fold(value, self.case_insensitive) for value in self.values]
        column = f"LOWER({self.field})" if self.case_insensitive else self.field
        return f"{column} NOT IN ({','.join(_literal(value) for value in values)})"

    def matches(self, row: RemoteRow) -> bool:
        value = row.get(self.field)
        if value is None:
            return True
        excluded = {_fold(item, self.case_insensitive) for item in self.values}
        return _fold(value, self.case_insensitive) not in excluded


@dataclass(frozen=True)
class Equals(Clause):
    field: str
    value: Any
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", f"{self.field}_eq")

    def to_sql(self) -> str:
        return f"{self.field} = {_literal(self.value)}"

    def matches(self, row: RemoteRow) -> bool:
        return row.get(self.field) == self.value


@dataclass(frozen=True)
class Contains(Clause):
    """Case-insensitive substring match on any of ``fields``."""

    fields: tuple[str, ...]
    text: str
    name: str = "name_contains"

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))

    def to_sql(self) -> str:
        needle = _literal(f"%{self.text.lower()}%")
        parts = [f"LOWER({name}) LIKE {needle}" for name in self.fields]
        return "(" + " OR ".join(parts) + ")"

    def matches(self, row: RemoteRow) -> bool:
        needle = self.text.casefold()
        for name in self.fields:
            value = row.get(name)
            if isinstance(value, str) and needle in value.casefold():
                return True
        return False


@dataclass(frozen=True)
class MonthIn(Clause):
    """Month-of-year (1-12) of the row timestamp."""

    field: str
    months: tuple[int, ...]
    name: str = "month_in"

    def __post_init__(self) -> None:
        object.__setattr__(self, "months", tuple(self.months))

    def to_sql(self) -> str:
        return f"EXTRACT(MONTH FROM {self.field}) IN ({','.join(str(m) for m in self.months)})"

    def matches(self, row: RemoteRow) -> bool:
        return row.timestamp is not None and row.timestamp.month in self.months


@dataclass(frozen=True)
class Presence(Clause):
    """Field is (or is not) populated."""

    field: str
    present: bool = True
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            suffix = "present" if self.present else "absent"
            object.__setattr__(self, "name", f"{self.field}_{suffix}")

    def to_sql(self) -> str:
        return f"{self.field} IS NOT NULL" if self.present else f"{self.field} IS NULL"

    def matches(self, row: RemoteRow) -> bool:
        return bool(row.get(self.field)) is self.present


@dataclass(frozen=True)
class Predicate:
    """Immutable conjunction of clauses."""

    clauses: tuple[Clause, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, clauses: Iterable[Clause | None]) -> "Predicate":
        return cls(tuple(clause for clause in clauses if clause is not None))

    def where(self) -> str:
        return " AND ".join(["1=1", *(clause.to_sql() for clause in self.clauses)])

    def without(self, clause: Clause) -> "Predicate":
        return Predicate(tuple(item for item in self.clauses if item != clause))

    def __contains__(self, clause: object) -> bool:
        return clause in self.clauses

    def matches(self, row: RemoteRow) -> bool:
        return all(clause.matches(row) for clause in self.clauses)


__all__ = [
    "Clause",
    "Contains",
    "DateRange",
    "Equals",
    "InSet",
    "MonthIn",
    "NotInSet",
    "Predicate",
    "Presence",
]

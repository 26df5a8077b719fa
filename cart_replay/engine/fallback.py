"""Relax a pushed-down clause when the server rejects it.

A fetch starts ``ATTEMPTING`` with its full predicate. If the *first* page is
rejected and the predicate still holds the relaxable clause, the fetch moves to
``RELAXED``: the clause is stripped for every remaining page and handed back to
the caller for client-side evaluation. There is no transition out of
``RELAXED``, so the full predicate is never sent twice within one fetch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from ..errors import QueryError, ServerPredicateError
from .predicates import Clause, Predicate


class FallbackPhase(str, Enum):
    ATTEMPTING = "attempting"
    RELAXED = "relaxed"


@dataclass(frozen=True, slots=True)
class TranslatorState:
    phase: FallbackPhase
    predicate: Predicate
    relaxable: Clause | None = None
    relaxed: Clause | None = None

    @classmethod
    def start(cls, predicate: Predicate, relaxable: Clause | None = None) -> "TranslatorState":
        if relaxable is not None and relaxable not in predicate:
            relaxable = None
        return cls(FallbackPhase.ATTEMPTING, predicate, relaxable)

    @property
    def where(self) -> str:
        return self.predicate.where()


def on_rejection(
    state: TranslatorState, page_number: int, error: ServerPredicateError
) -> TranslatorState:
    """Return the next state after ``error`` or raise :class:`QueryError`."""

    if state.phase is FallbackPhase.RELAXED:
        raise QueryError(f"Relaxed query also rejected: {error}") from error
    if page_number != 1:
        raise QueryError(f"Query rejected on page {page_number}: {error}") from error
    if state.relaxable is None:
        raise QueryError(f"Query rejected and no clause can be relaxed: {error}") from error
    return replace(
        state,
        phase=FallbackPhase.RELAXED,
        predicate=state.predicate.without(state.relaxable),
        relaxed=state.relaxable,
    )


__all__ = ["FallbackPhase", "TranslatorState", "on_rejection"]

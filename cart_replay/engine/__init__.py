"""Engine components orchestrating fetch → fallback → dedup → reconcile."""

from .dedup import FilterPlan, RecordCollector, aggregate
from .fallback import FallbackPhase, TranslatorState, on_rejection
from .fetcher import FetchOutcome, PageSource, PaginatedFetcher
from .predicates import (
    Clause,
    Contains,
    DateRange,
    Equals,
    InSet,
    MonthIn,
    NotInSet,
    Predicate,
    Presence,
)
from .rate_limit import RateLimiter
from .reconcile import CountMismatch, ReconciledResult, reconcile

__all__ = [
    "Clause",
    "Contains",
    "CountMismatch",
    "DateRange",
    "Equals",
    "FallbackPhase",
    "FetchOutcome",
    "FilterPlan",
    "InSet",
    "MonthIn",
    "NotInSet",
    "PageSource",
    "PaginatedFetcher",
    "Predicate",
    "Presence",
    "RateLimiter",
    "ReconciledResult",
    "RecordCollector",
    "TranslatorState",
    "aggregate",
    "on_rejection",
    "reconcile",
]

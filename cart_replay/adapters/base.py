"""Adapter contract translating a filter snapshot into a replayable fetch."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from ..config import GlobalConfig, SizingConfig
from ..engine import (
    Clause,
    FetchOutcome,
    FilterPlan,
    PageSource,
    PaginatedFetcher,
    Predicate,
    RateLimiter,
)
from ..models import DataSourceKind, FilterSnapshot, WorkingSet


@dataclass(frozen=True, slots=True)
class SizingPolicy:
    """Decide how many rows to request when replaying a snapshot."""

    narrow_ratio: float = 0.10
    narrow_floor: int = 50
    broad_buffer: int = 100
    hard_ceiling: int = 10000

    @classmethod
    def from_config(cls, config: SizingConfig) -> "SizingPolicy":
        return cls(
            narrow_ratio=config.narrow_ratio,
            narrow_floor=config.narrow_floor,
            broad_buffer=config.broad_buffer,
            hard_ceiling=config.hard_ceiling,
        )

    def buffer(self, estimate: int, broad: bool) -> int:
        if broad:
            return self.broad_buffer
        return max(math.ceil(estimate * self.narrow_ratio), self.narrow_floor)

    def request_size(self, estimate: int, broad: bool) -> int:
        return min(estimate + self.buffer(estimate, broad), self.hard_ceiling)


@dataclass(slots=True)
class QueryPlan:
    """Everything one replay needs: where to fetch, what to push, what to filter."""

    source: PageSource
    predicate: Predicate
    filters: FilterPlan
    relaxable: Clause | None = None
    broad: bool = True
    count_source: PageSource | None = None

    @property
    def client_only(self) -> bool:
        """True when some user filter is not pushed to the server."""

        return any(clause not in self.predicate for clause in self.filters.user)


@dataclass(slots=True)
class ReplayResult:
    """Working set of one re-execution, before reconciliation."""

    snapshot_id: str
    working_set: WorkingSet
    requested: int
    raw_rows: int
    pages: int
    limit_exceeded: bool = False
    relaxed_clause: str | None = None


class QueryAdapter(ABC):
    """Base class for per-source re-executors."""

    kind: DataSourceKind

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: GlobalConfig,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.sizing = SizingPolicy.from_config(config.sizing)
        self.logger = logger or structlog.get_logger("cart_replay.adapter").bind(
            data_source=self.kind.value
        )
        self.rate_limiter = self.build_rate_limiter(config)
        self.fetcher = PaginatedFetcher(
            client,
            page_size=self.page_size(config),
            max_pages=config.max_pages,
            rate_limiter=self.rate_limiter,
            logger=self.logger,
        )

    # ------------------------------------------------------------------
    def page_size(self, config: GlobalConfig) -> int:
        return config.page_size

    def build_rate_limiter(self, config: GlobalConfig) -> RateLimiter | None:
        return None

    @abstractmethod
    def plan(self, snapshot: FilterSnapshot, now: datetime) -> QueryPlan:
        """Translate the snapshot filters into fetch parameters."""

    async def _fetch(self, plan: QueryPlan, target: int | None) -> FetchOutcome:
        return await self.fetcher.fetch_all(
            plan.source,
            plan.predicate,
            relaxable=plan.relaxable,
            filters=plan.filters,
            target=target,
        )

    # ------------------------------------------------------------------
    async def count(self, snapshot: FilterSnapshot, *, now: datetime | None = None) -> int:
        """Server-side count-only query for the snapshot's pushed-down predicate."""

        plan = self.plan(snapshot, now or datetime.now(timezone.utc))
        return await self.fetcher.count(plan.count_source or plan.source, plan.predicate)

    async def estimate(self, snapshot: FilterSnapshot, *, now: datetime | None = None) -> int:
        """Count the user should be shown before committing to the cart.

        Falls back to a full replay when some filters only exist client-side,
        since the server count cannot see them.
        """

        now = now or datetime.now(timezone.utc)
        plan = self.plan(snapshot, now)
        if not plan.client_only:
            return await self.fetcher.count(plan.count_source or plan.source, plan.predicate)
        outcome = await self._fetch(plan, self.sizing.hard_ceiling)
        return len(outcome.records)

    async def preview(
        self, snapshot: FilterSnapshot, size: int, *, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        if size <= 0:
            return []
        plan = self.plan(snapshot, now or datetime.now(timezone.utc))
        outcome = await self.fetcher.fetch_all(
            plan.source,
            plan.predicate,
            relaxable=plan.relaxable,
            filters=plan.filters,
            target=size,
        )
        return [record.to_dict() for record in outcome.records]

    async def execute(
        self, snapshot: FilterSnapshot, *, now: datetime | None = None
    ) -> ReplayResult:
        """Re-run the snapshot's query and build its working set.

        Relative time windows are resolved against ``now`` (replay time). The
        requested size counts filtered, deduplicated records, so rows the
        client-side filters drop do not eat into it.
        """

        now = now or datetime.now(timezone.utc)
        plan = self.plan(snapshot, now)
        requested = self.sizing.request_size(snapshot.estimated_count, plan.broad)
        outcome = await self._fetch(plan, requested)
        working_set = outcome.records
        self.logger.info(
            "snapshot_replayed",
            item=snapshot.id,
            requested=requested,
            raw_rows=len(outcome.rows),
            records=len(working_set),
            pages=outcome.pages,
            relaxed=outcome.relaxed_clause.name if outcome.relaxed_clause else None,
        )
        return ReplayResult(
            snapshot_id=snapshot.id,
            working_set=working_set,
            requested=requested,
            raw_rows=len(outcome.rows),
            pages=outcome.pages,
            limit_exceeded=outcome.limit_exceeded,
            relaxed_clause=outcome.relaxed_clause.name if outcome.relaxed_clause else None,
        )


__all__ = ["QueryAdapter", "QueryPlan", "ReplayResult", "SizingPolicy"]

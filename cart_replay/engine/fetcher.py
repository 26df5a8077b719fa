"""Offset-paginated HTTP fetching with predicate fallback."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog

from ..errors import NetworkError, QueryError, ServerPredicateError
from ..models import RemoteRow, WorkingSet
from .dedup import FilterPlan, RecordCollector
from .fallback import TranslatorState, on_rejection
from .predicates import Clause, Predicate
from .rate_limit import RateLimiter


class PageSource(Protocol):
    """Endpoint description an adapter hands to the fetcher."""

    url: str
    method: str

    def page_params(self, predicate: Predicate, offset: int, limit: int) -> dict[str, Any]:
        """Build query parameters for one page, ordered most-recent-first."""

    def parse_page(self, payload: Any) -> list[RemoteRow]:
        """Turn a decoded page payload into rows, preserving server order."""

    def count_params(self, predicate: Predicate) -> dict[str, Any]:
        """Build query parameters for the count-only form of the query."""

    def parse_count(self, payload: Any) -> int:
        """Extract the row count from a count-only response."""


@dataclass(slots=True)
class FetchOutcome:
    """Rows gathered by one fetch plus what happened along the way.

    ``records`` holds the filtered, deduplicated rows in fetch order.
    """

    rows: list[RemoteRow] = field(default_factory=list)
    pages: int = 0
    limit_exceeded: bool = False
    relaxed_clause: Clause | None = None
    records: WorkingSet = field(default_factory=list)


class PaginatedFetcher:
    """Iterate fixed-size pages of a single query until the data runs out."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        page_size: int = 1000,
        max_pages: int = 50,
        rate_limiter: RateLimiter | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if page_size < 1 or max_pages < 1:
            raise ValueError("page_size and max_pages must be positive")
        self._client = client
        self.page_size = page_size
        self.max_pages = max_pages
        self.rate_limiter = rate_limiter
        self.logger = logger or structlog.get_logger("cart_replay.fetcher")

    # ------------------------------------------------------------------
    async def request_json(
        self, url: str, params: dict[str, Any], method: str = "GET"
    ) -> Any:
        """Issue one request and classify the failure modes."""

        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()
        try:
            if method.upper() == "POST":
                response = await self._client.post(url, data=params)
            else:
                response = await self._client.get(url, params=params)
        except httpx.TransportError as exc:
            raise NetworkError(url, str(exc) or exc.__class__.__name__) from exc

        if response.status_code >= 400:
            raise ServerPredicateError(
                url, f"HTTP {response.status_code}: {response.text[:200]}", response.status_code
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ServerPredicateError(url, "response body is not JSON", response.status_code) from exc
        # ArcGIS reports bad queries as 200 with an error object
        if isinstance(payload, dict) and payload.get("error"):
            detail = json.dumps(payload["error"], ensure_ascii=False)[:300]
            raise ServerPredicateError(url, detail, response.status_code)
        return payload

    async def _fetch_page(
        self,
        source: PageSource,
        state: TranslatorState,
        offset: int,
        limit: int,
        page_number: int,
    ) -> tuple[list[RemoteRow], TranslatorState]:
        while True:
            params = source.page_params(state.predicate, offset, limit)
            try:
                payload = await self.request_json(source.url, params, source.method)
            except ServerPredicateError as exc:
                state = on_rejection(state, page_number, exc)
                self.logger.warning(
                    "predicate_relaxed",
                    url=source.url,
                    clause=state.relaxed.name if state.relaxed else None,
                    error=str(exc),
                )
                continue
            return source.parse_page(payload)[:limit], state

    def _finish(
        self, outcome: FetchOutcome, collector: RecordCollector, target: int | None
    ) -> FetchOutcome:
        records = collector.records
        outcome.records = records if target is None else records[:target]
        return outcome

    def _collect(
        self, source: PageSource, collector: RecordCollector, rows: list[RemoteRow]
    ) -> int:
        skipped = collector.keyless
        added = collector.add(rows)
        if collector.keyless > skipped:
            self.logger.warning(
                "rows_without_key", url=source.url, rows=collector.keyless - skipped
            )
        return added

    def _breaker_tripped(self, source: PageSource, outcome: FetchOutcome, records: int) -> None:
        outcome.limit_exceeded = True
        self.logger.warning(
            "pagination_limit_exceeded",
            url=source.url,
            max_pages=self.max_pages,
            rows=len(outcome.rows),
            records=records,
        )

    # ------------------------------------------------------------------
    async def fetch_all(
        self,
        source: PageSource,
        predicate: Predicate,
        *,
        relaxable: Clause | None = None,
        filters: FilterPlan | None = None,
        target: int | None = None,
        max_total: int | None = None,
    ) -> FetchOutcome:
        """Fetch pages sequentially until a short page, the target or the breaker.

        Every page is filtered and deduplicated as it arrives, so ``target``
        counts canonical records rather than raw rows. ``max_total`` caps raw
        rows and shrinks the last page request to the remainder. The breaker
        trips when another page is due after ``max_pages`` full pages; a
        sequential fetch cannot tell whether that page would have been empty.
        """

        state = TranslatorState.start(predicate, relaxable)
        collector = RecordCollector(filters)
        outcome = FetchOutcome()
        offset = 0
        while True:
            if target is not None and len(collector) >= target:
                break
            limit = self.page_size
            if max_total is not None:
                limit = min(limit, max_total - len(outcome.rows))
            if limit <= 0:
                break
            if outcome.pages >= self.max_pages:
                self._breaker_tripped(source, outcome, len(collector))
                break
            page_rows, state = await self._fetch_page(
                source, state, offset, limit, outcome.pages + 1
            )
            collector.relaxed = state.relaxed
            outcome.pages += 1
            outcome.rows.extend(page_rows)
            added = self._collect(source, collector, page_rows)
            self.logger.debug(
                "page_fetched",
                url=source.url,
                page=outcome.pages,
                offset=offset,
                rows=len(page_rows),
                records=added,
                total=len(outcome.rows),
            )
            if len(page_rows) < limit:
                break
            offset += len(page_rows)
        outcome.relaxed_clause = state.relaxed
        return self._finish(outcome, collector, target)

    async def count(self, source: PageSource, predicate: Predicate) -> int:
        """Run the source's count-only query for ``predicate``."""

        payload = await self.request_json(
            source.url, source.count_params(predicate), source.method
        )
        return source.parse_count(payload)

    async def fetch_fanout(
        self,
        source: PageSource,
        predicate: Predicate,
        *,
        relaxable: Clause | None = None,
        filters: FilterPlan | None = None,
        target: int | None = None,
        max_total: int | None = None,
        concurrency: int = 4,
    ) -> FetchOutcome:
        """Fetch page 1, count, then fetch the remaining offsets in waves of K.

        Page 1 goes through the fallback translator like any sequential fetch.
        The count and every later page reuse the predicate page 1 settled on, so
        a rejection past that point fails the whole fetch. Each wave is put back
        into offset order before its rows are collected, and no further wave is
        started once ``target`` records are in hand. The count bounds the
        offsets, so the breaker only trips when rows are really left behind.
        """

        state = TranslatorState.start(predicate, relaxable)
        collector = RecordCollector(filters)
        outcome = FetchOutcome()
        first_limit = self.page_size if max_total is None else min(self.page_size, max_total)
        if first_limit <= 0:
            return self._finish(outcome, collector, target)
        first_rows, state = await self._fetch_page(source, state, 0, first_limit, 1)
        collector.relaxed = state.relaxed
        outcome.pages = 1
        outcome.rows.extend(first_rows)
        outcome.relaxed_clause = state.relaxed
        self._collect(source, collector, first_rows)
        if len(first_rows) < first_limit:
            return self._finish(outcome, collector, target)
        if target is not None and len(collector) >= target:
            return self._finish(outcome, collector, target)

        try:
            total = await self.count(source, state.predicate)
        except ServerPredicateError as exc:
            raise QueryError(f"Count query rejected: {exc}") from exc
        end = total if max_total is None else min(total, max_total)
        pending = list(range(self.page_size, end, self.page_size))
        settled = state

        async def _one(page_offset: int) -> tuple[int, int, list[RemoteRow]]:
            limit = min(self.page_size, end - page_offset)
            page_number = page_offset // self.page_size + 1
            rows, _ = await self._fetch_page(source, settled, page_offset, limit, page_number)
            return page_offset, limit, rows

        while pending:
            if target is not None and len(collector) >= target:
                break
            if outcome.pages >= self.max_pages:
                self._breaker_tripped(source, outcome, len(collector))
                break
            size = min(max(1, concurrency), self.max_pages - outcome.pages)
            wave, pending = pending[:size], pending[size:]
            results = await asyncio.gather(
                *(_one(page_offset) for page_offset in wave), return_exceptions=True
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            short = False
            for page_offset, limit, rows in sorted(results, key=lambda item: item[0]):
                outcome.rows.extend(rows)
                outcome.pages += 1
                added = self._collect(source, collector, rows)
                short = short or len(rows) < limit
                self.logger.debug(
                    "page_fetched", url=source.url, offset=page_offset, rows=len(rows), records=added
                )
            if short:
                break
        return self._finish(outcome, collector, target)


__all__ = ["FetchOutcome", "PageSource", "PaginatedFetcher"]

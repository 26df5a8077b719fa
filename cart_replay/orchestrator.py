"""Export orchestrator wiring the cart, adapters, reconciliation and exporters."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable

import httpx
import structlog

from .adapters import QueryAdapter, build_adapter
from .config import GlobalConfig
from .engine import CountMismatch, reconcile
from .engine.exporter import BaseExporter
from .errors import CapacityExceeded, CartReplayError, NetworkError
from .logging_conf import item_logger
from .models import CanonicalRecord, DataSourceKind, FilterSnapshot, WorkingSet
from .queue import PersistedQueue

AdapterFactory = Callable[..., QueryAdapter]
ExporterFactory = Callable[[FilterSnapshot, str], BaseExporter]

USER_AGENT = "cart-replay/0.1"


@dataclass(slots=True)
class ItemResult:
    """Outcome of exporting one cart item."""

    snapshot_id: str
    label: str
    data_source: str
    status: str
    expected: int = 0
    records: WorkingSet = field(default_factory=list)
    trimmed: int = 0
    mismatch: CountMismatch | None = None
    limit_exceeded: bool = False
    relaxed_clause: str | None = None
    reason: str | None = None
    preview: tuple[dict[str, Any], ...] = ()
    output_path: Path | None = None

    @property
    def count(self) -> int:
        return len(self.records)

    @property
    def ok(self) -> bool:
        return self.status != "failed"


@dataclass(slots=True)
class ExportReport:
    generation: int
    run_tag: str
    items: list[ItemResult] = field(default_factory=list)

    @property
    def exported(self) -> list[ItemResult]:
        return [item for item in self.items if item.ok]

    @property
    def failed(self) -> list[ItemResult]:
        return [item for item in self.items if not item.ok]


def _preview_records(snapshot: FilterSnapshot) -> WorkingSet:
    return [
        CanonicalRecord(key=f"{snapshot.id}:{index}", timestamp=None, attributes=dict(row))
        for index, row in enumerate(snapshot.preview_sample)
    ]


class ExportOrchestrator:
    """Central coordinator for putting snapshots in the cart and exporting them.

    Every export run takes a new generation number. ``cancel`` bumps the
    generation, and a run that finds itself stale stops without writing files
    or replacing ``last_report``.
    """

    def __init__(
        self,
        queue: PersistedQueue,
        config: GlobalConfig,
        client: httpx.AsyncClient,
        *,
        adapter_factory: AdapterFactory = build_adapter,
        exporter_factory: ExporterFactory | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.queue = queue
        self.config = config
        self.client = client
        self.adapter_factory = adapter_factory
        self.exporter_factory = exporter_factory
        self.logger = logger or structlog.get_logger("cart_replay").bind(component="orchestrator")
        self._adapters: dict[DataSourceKind, QueryAdapter] = {}
        self._generation = 0
        self.last_report: ExportReport | None = None

    # ------------------------------------------------------------------
    @property
    def generation(self) -> int:
        return self._generation

    def cancel(self) -> int:
        self._generation += 1
        self.logger.info("export_cancelled", generation=self._generation)
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def adapter_for(self, kind: DataSourceKind) -> QueryAdapter:
        # one instance per source so rate-limit state spans the whole run
        if kind not in self._adapters:
            self._adapters[kind] = self.adapter_factory(kind, self.client, self.config)
        return self._adapters[kind]

    # ------------------------------------------------------------------
    async def add_to_cart(
        self,
        snapshot: FilterSnapshot,
        *,
        estimated_count: int | None = None,
        now: datetime | None = None,
    ) -> FilterSnapshot:
        """Estimate, sample and append ``snapshot`` to the cart."""

        if len(self.queue) >= self.queue.capacity:
            raise CapacityExceeded(self.queue.capacity)
        adapter = self.adapter_for(snapshot.data_source)
        if estimated_count is None:
            estimated_count = await adapter.estimate(snapshot, now=now)
        preview = await adapter.preview(snapshot, self.config.preview_sample_size, now=now)
        return self.queue.append(snapshot.with_estimate(estimated_count, tuple(preview)))

    async def replay_item(
        self, snapshot: FilterSnapshot, *, now: datetime | None = None
    ) -> ItemResult:
        log = item_logger(snapshot.id, snapshot.data_source.value)
        base = dict(
            snapshot_id=snapshot.id,
            label=snapshot.label,
            data_source=snapshot.data_source.value,
            expected=snapshot.estimated_count,
        )
        try:
            adapter = self.adapter_for(snapshot.data_source)
            replay = await adapter.execute(snapshot, now=now)
        except NetworkError as exc:
            log.error("item_failed", reason=str(exc), offline_preview=len(snapshot.preview_sample))
            return ItemResult(status="failed", reason=str(exc), preview=snapshot.preview_sample, **base)
        except CartReplayError as exc:
            log.error("item_failed", reason=str(exc))
            return ItemResult(status="failed", reason=str(exc), **base)

        reconciled = reconcile(replay.working_set, snapshot.estimated_count)
        if reconciled.trimmed:
            log.info(
                "working_set_trimmed",
                expected=reconciled.expected,
                trimmed=reconciled.trimmed,
            )
        if reconciled.mismatch is not None:
            log.warning(
                "count_mismatch",
                expected=reconciled.mismatch.expected,
                actual=reconciled.mismatch.actual,
            )
        return ItemResult(
            status="exported",
            records=reconciled.records,
            trimmed=reconciled.trimmed,
            mismatch=reconciled.mismatch,
            limit_exceeded=replay.limit_exceeded,
            relaxed_clause=replay.relaxed_clause,
            **base,
        )

    def _select(self, ids: Iterable[str] | None) -> tuple[list[FilterSnapshot], list[str]]:
        items = self.queue.items()
        if not ids:
            return items, []
        wanted = list(dict.fromkeys(ids))
        known = {item.id for item in items}
        return [item for item in items if item.id in wanted], [i for i in wanted if i not in known]

    def _write(self, snapshot: FilterSnapshot, result: ItemResult, run_tag: str) -> None:
        if self.exporter_factory is None or not result.ok:
            return
        try:
            exporter = self.exporter_factory(snapshot, run_tag)
            try:
                exporter.export_many(result.records)
                exporter.flush()
            finally:
                exporter.close()
        except OSError as exc:
            result.status = "failed"
            result.reason = f"Could not write export: {exc}"
            self.logger.error("export_write_failed", item=snapshot.id, error=str(exc))
            return
        result.output_path = getattr(exporter, "path", None)

    async def export(
        self,
        ids: Iterable[str] | None = None,
        *,
        use_preview: bool = False,
        now: datetime | None = None,
    ) -> ExportReport | None:
        """Replay the selected cart items (all when ``ids`` is empty).

        Returns ``None`` when the run was superseded by ``cancel`` or a newer
        export before it finished.
        """

        self._generation += 1
        generation = self._generation
        now = now or datetime.now(timezone.utc)
        run_tag = now.strftime("%Y%m%d-%H%M%S")
        report = ExportReport(generation=generation, run_tag=run_tag)
        snapshots, missing = self._select(ids)
        for snapshot_id in missing:
            report.items.append(
                ItemResult(
                    snapshot_id=snapshot_id,
                    label=snapshot_id,
                    data_source="",
                    status="failed",
                    reason="Not in cart",
                )
            )

        for snapshot in snapshots:
            if use_preview:
                result = ItemResult(
                    snapshot_id=snapshot.id,
                    label=snapshot.label,
                    data_source=snapshot.data_source.value,
                    status="preview",
                    expected=snapshot.estimated_count,
                    records=_preview_records(snapshot),
                )
            else:
                result = await self.replay_item(snapshot, now=now)
            if not self._is_current(generation):
                self.logger.info(
                    "stale_generation_discarded",
                    generation=generation,
                    current=self._generation,
                    item=snapshot.id,
                )
                return None
            self._write(snapshot, result, run_tag)
            report.items.append(result)

        self.last_report = report
        self.logger.info(
            "export_finished",
            generation=generation,
            exported=len(report.exported),
            failed=len(report.failed),
        )
        return report


@asynccontextmanager
async def open_session(
    queue: PersistedQueue,
    config: GlobalConfig,
    *,
    exporter_factory: ExporterFactory | None = None,
) -> AsyncIterator[ExportOrchestrator]:
    """Yield an orchestrator bound to a fresh HTTP client for one event loop."""

    async with httpx.AsyncClient(
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
    ) as client:
        yield ExportOrchestrator(queue, config, client, exporter_factory=exporter_factory)


__all__ = ["ExportOrchestrator", "ExportReport", "ItemResult", "open_session"]

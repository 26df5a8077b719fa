from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from cart_replay.adapters import ReplayResult, build_adapter
from cart_replay.engine import CountMismatch
from cart_replay.engine.exporter import BaseExporter
from cart_replay.errors import CapacityExceeded, NetworkError
from cart_replay.models import CanonicalRecord, DataSourceKind
from cart_replay.orchestrator import ExportOrchestrator, open_session

NOW = datetime(2024, 6, 30, tzinfo=timezone.utc)


def _records(count: int, prefix: str = "img") -> list[CanonicalRecord]:
    return [
        CanonicalRecord(key=f"{prefix}-{index}", timestamp=None, attributes={"rank": index})
        for index in range(count)
    ]


class StubAdapter:
    def __init__(self, records=None, error: Exception | None = None, estimate: int = 0) -> None:
        self.records = records or []
        self.error = error
        self.estimate_value = estimate
        self.calls: list[str] = []
        self.on_execute = None

    async def execute(self, snapshot, *, now=None) -> ReplayResult:
        self.calls.append("execute")
        if self.on_execute is not None:
            self.on_execute()
        if self.error is not None:
            raise self.error
        return ReplayResult(
            snapshot_id=snapshot.id,
            working_set=list(self.records),
            requested=len(self.records),
            raw_rows=len(self.records),
            pages=1,
        )

    async def estimate(self, snapshot, *, now=None) -> int:
        self.calls.append("estimate")
        return self.estimate_value

    async def preview(self, snapshot, size, *, now=None):
        self.calls.append("preview")
        return [record.to_dict() for record in self.records[:size]]


class MemoryExporter(BaseExporter):
    def __init__(self, sink: dict, label: str) -> None:
        self.sink = sink
        self.label = label
        self.rows: list[CanonicalRecord] = []

    def export(self, record: CanonicalRecord) -> None:
        self.rows.append(record)

    def flush(self) -> None:
        return

    def close(self) -> None:
        self.sink[self.label] = self.rows


def _orchestrator(queue, config, adapters: dict, sink: dict | None = None) -> ExportOrchestrator:
    def adapter_factory(kind, client, cfg):
        return adapters[kind]

    exporter_factory = None
    if sink is not None:
        exporter_factory = lambda snapshot, run_tag: MemoryExporter(sink, snapshot.title)  # noqa: E731
    return ExportOrchestrator(
        queue,
        config,
        client=None,  # type: ignore[arg-type]
        adapter_factory=adapter_factory,
        exporter_factory=exporter_factory,
    )


def test_larger_result_is_trimmed_to_estimate(cart_queue, sample_global_config, make_snapshot) -> None:
    fresh = _records(130)
    cart_queue.append(make_snapshot(title="deer", estimated_count=120))
    sink: dict = {}
    orchestrator = _orchestrator(cart_queue, sample_global_config, {DataSourceKind.ANIML: StubAdapter(fresh)}, sink)

    report = asyncio.run(orchestrator.export(now=NOW))
    item = report.items[0]
    assert item.status == "exported"
    assert item.count == 120
    assert item.trimmed == 10
    assert sink["deer"] == fresh[:120]


def test_smaller_result_reports_mismatch(cart_queue, sample_global_config, make_snapshot) -> None:
    cart_queue.append(make_snapshot(title="deer", estimated_count=50))
    sink: dict = {}
    orchestrator = _orchestrator(
        cart_queue, sample_global_config, {DataSourceKind.ANIML: StubAdapter(_records(41))}, sink
    )

    report = asyncio.run(orchestrator.export(now=NOW))
    item = report.items[0]
    assert item.count == 41
    assert item.mismatch == CountMismatch(expected=50, actual=41)
    assert len(sink["deer"]) == 41


def test_replay_is_idempotent(cart_queue, sample_global_config, make_snapshot) -> None:
    snapshot = cart_queue.append(make_snapshot(estimated_count=7))
    orchestrator = _orchestrator(cart_queue, sample_global_config, {DataSourceKind.ANIML: StubAdapter(_records(9))})

    first = asyncio.run(orchestrator.replay_item(snapshot, now=NOW))
    second = asyncio.run(orchestrator.replay_item(snapshot, now=NOW))
    assert first.records == second.records
    assert first.count == 7


def test_failures_are_isolated_per_item(cart_queue, sample_global_config, make_snapshot) -> None:
    offline = make_snapshot(title="birds", data_source="inaturalist", estimated_count=3, preview_sample=[{"id": 1}])
    cart_queue.append(offline)
    cart_queue.append(make_snapshot(title="plants", data_source="calflora", estimated_count=4))
    cart_queue.append(make_snapshot(title="deer", estimated_count=2))
    adapters = {
        DataSourceKind.ANIML: StubAdapter(_records(2)),
        DataSourceKind.INATURALIST: StubAdapter(error=NetworkError("https://api.test", "timed out")),
        DataSourceKind.CALFLORA: build_adapter(DataSourceKind.CALFLORA, None, sample_global_config),  # type: ignore[arg-type]
    }
    sink: dict = {}
    orchestrator = _orchestrator(cart_queue, sample_global_config, adapters, sink)

    report = asyncio.run(orchestrator.export(now=NOW))
    by_label = {item.label: item for item in report.items}
    assert by_label["deer"].status == "exported"
    assert by_label["plants"].status == "failed"
    assert by_label["plants"].reason == "calflora export not yet implemented"
    assert by_label["birds"].status == "failed"
    assert by_label["birds"].preview == ({"id": 1},)
    assert set(sink) == {"deer"}
    assert len(report.failed) == 2


def test_unknown_ids_are_reported(cart_queue, sample_global_config, make_snapshot) -> None:
    kept = cart_queue.append(make_snapshot(estimated_count=1))
    orchestrator = _orchestrator(cart_queue, sample_global_config, {DataSourceKind.ANIML: StubAdapter(_records(1))})

    report = asyncio.run(orchestrator.export([kept.id, "missing"], now=NOW))
    assert [(item.snapshot_id, item.status) for item in report.items] == [
        ("missing", "failed"),
        (kept.id, "exported"),
    ]


def test_cancelled_run_is_discarded(cart_queue, sample_global_config, make_snapshot) -> None:
    cart_queue.append(make_snapshot(title="deer", estimated_count=2))
    adapter = StubAdapter(_records(2))
    sink: dict = {}
    orchestrator = _orchestrator(cart_queue, sample_global_config, {DataSourceKind.ANIML: adapter}, sink)
    adapter.on_execute = orchestrator.cancel

    assert asyncio.run(orchestrator.export(now=NOW)) is None
    assert orchestrator.last_report is None
    assert sink == {}

    adapter.on_execute = None
    report = asyncio.run(orchestrator.export(now=NOW))
    assert report is not None
    assert orchestrator.last_report is report
    assert report.generation == orchestrator.generation


def test_use_preview_skips_network(cart_queue, sample_global_config, make_snapshot) -> None:
    cart_queue.append(make_snapshot(title="deer", estimated_count=9, preview_sample=[{"a": 1}, {"a": 2}]))
    adapter = StubAdapter(_records(9))
    sink: dict = {}
    orchestrator = _orchestrator(cart_queue, sample_global_config, {DataSourceKind.ANIML: adapter}, sink)

    report = asyncio.run(orchestrator.export(use_preview=True, now=NOW))
    assert report.items[0].status == "preview"
    assert [record.attributes for record in sink["deer"]] == [{"a": 1}, {"a": 2}]
    assert adapter.calls == []


def test_add_to_cart_records_estimate_and_preview(cart_queue, sample_global_config, make_snapshot) -> None:
    adapter = StubAdapter(_records(5), estimate=77)
    orchestrator = _orchestrator(cart_queue, sample_global_config, {DataSourceKind.ANIML: adapter})

    added = asyncio.run(orchestrator.add_to_cart(make_snapshot(), now=NOW))
    assert added.estimated_count == 77
    assert len(added.preview_sample) == sample_global_config.preview_sample_size
    assert cart_queue.items() == [added]

    adapter.calls.clear()
    explicit = asyncio.run(orchestrator.add_to_cart(make_snapshot(), estimated_count=4, now=NOW))
    assert explicit.estimated_count == 4
    assert adapter.calls == ["preview"]


def test_add_to_full_cart_fails_before_querying(cart_queue, sample_global_config, make_snapshot) -> None:
    for _ in range(cart_queue.capacity):
        cart_queue.append(make_snapshot())
    adapter = StubAdapter(estimate=1)
    orchestrator = _orchestrator(cart_queue, sample_global_config, {DataSourceKind.ANIML: adapter})

    with pytest.raises(CapacityExceeded):
        asyncio.run(orchestrator.add_to_cart(make_snapshot()))
    assert adapter.calls == []
    assert len(cart_queue) == cart_queue.capacity


def test_end_to_end_relaxed_replay(
    arcgis_server, client_factory, cart_queue, sample_global_config, make_snapshot
) -> None:
    june = int(datetime(2024, 6, 20, tzinfo=timezone.utc).timestamp() * 1000)
    day = 24 * 3600 * 1000
    rows = [
        {"id": 1, "animl_image_id": "img-9", "timestamp": june, "label": "deer"},
        {"id": 2, "animl_image_id": "img-7", "timestamp": june - day, "label": "deer"},
        {"id": 3, "animl_image_id": "img-7", "timestamp": june - day, "label": "deer"},
        {"id": 4, "animl_image_id": "img-5", "timestamp": june - 60 * day, "label": "deer"},
        {"id": 5, "animl_image_id": "img-4", "timestamp": june - 2 * day, "label": "human"},
        {"id": 6, "animl_image_id": "img-3", "timestamp": june - 3 * day, "label": "deer"},
    ]
    server = arcgis_server(rows, reject="DATE")
    cart_queue.append(make_snapshot(title="deer", estimated_count=2, core_filters={"days_back": 30}))
    sink: dict = {}

    async def _go():
        async with client_factory(server) as client:
            orchestrator = ExportOrchestrator(
                cart_queue,
                sample_global_config,
                client,
                exporter_factory=lambda snapshot, run_tag: MemoryExporter(sink, snapshot.title),
            )
            return await orchestrator.export(now=NOW)

    report = asyncio.run(_go())
    item = report.items[0]
    assert item.relaxed_clause == "date_range"
    assert item.trimmed == 1
    assert [record.key for record in sink["deer"]] == ["img-9", "img-7"]
    assert sink["deer"][1].attributes["id"] == 2


def test_unchanged_store_exports_what_was_estimated(
    arcgis_server, client_factory, cart_queue, sample_global_config, make_snapshot
) -> None:
    june = int(datetime(2024, 6, 20, tzinfo=timezone.utc).timestamp() * 1000)
    rows = []
    for image in range(60):
        for offset, label in enumerate(("deer", "coyote", "deer")):
            rows.append(
                {
                    "id": image * 3 + offset,
                    "animl_image_id": f"img-{image}",
                    "timestamp": june - image,
                    "label": label,
                }
            )
    server = arcgis_server(rows)
    config = sample_global_config.model_copy(update={"max_pages": 50})
    sink: dict = {}

    async def _go():
        async with client_factory(server) as client:
            orchestrator = ExportOrchestrator(
                cart_queue,
                config,
                client,
                exporter_factory=lambda snapshot, run_tag: MemoryExporter(sink, snapshot.title),
            )
            added = await orchestrator.add_to_cart(make_snapshot(title="deer"), now=NOW)
            return added, await orchestrator.export(now=NOW)

    added, report = asyncio.run(_go())
    item = report.items[0]
    assert added.estimated_count == 60
    assert item.count == 60
    assert item.mismatch is None
    assert len(sink["deer"]) == 60


def test_session_client_keeps_transport_default_timeout(cart_queue, sample_global_config) -> None:
    async def _go():
        async with open_session(cart_queue, sample_global_config) as orchestrator:
            return orchestrator.client.timeout, orchestrator.client.headers["User-Agent"]

    timeout, user_agent = asyncio.run(_go())
    assert timeout == httpx.Timeout(5.0)
    assert user_agent.startswith("cart-replay/")

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

from cart_replay.adapters import AnimlAdapter
from cart_replay.engine import DateRange

NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)
JUNE_15 = int(datetime(2024, 6, 15, tzinfo=timezone.utc).timestamp() * 1000)
HOUR = 3600 * 1000


def _label_row(row_id: int, image: str, label: str = "deer", *, hours_ago: int = 0, **extra) -> dict:
    row = {
        "id": row_id,
        "animl_image_id": image,
        "deployment_id": 3,
        "deployment_name": "Cam 3",
        "timestamp": JUNE_15 - hours_ago * HOUR,
        "label": label,
        "medium_url": f"https://img.test/{image}-m.jpg",
        "small_url": f"https://img.test/{image}-s.jpg",
    }
    row.update(extra)
    return row


def _replay(client_factory, handler, config, call):
    async def _go():
        async with client_factory(handler) as client:
            return await call(AnimlAdapter(client, config))

    return asyncio.run(_go())


def test_plan_pushes_filters_and_blocked_labels(sample_global_config, make_snapshot) -> None:
    snapshot = make_snapshot(
        core_filters={"days_back": 30},
        custom_filters={"deployment_ids": [3], "labels": ["Deer"], "has_images": True},
    )
    adapter = AnimlAdapter(client=None, config=sample_global_config)  # type: ignore[arg-type]
    plan = adapter.plan(snapshot, NOW)

    where = plan.predicate.where()
    assert "timestamp >= DATE '2024-05-31' AND timestamp <= DATE '2024-06-30'" in where
    assert "LOWER(label) NOT IN ('person','people','human')" in where
    assert "deployment_id IN (3)" in where
    assert "LOWER(label) IN ('deer')" in where
    assert "medium_url IS NOT NULL" in where
    assert plan.relaxable == DateRange("timestamp", date(2024, 5, 31), date(2024, 6, 30))
    assert plan.source.url.endswith("/Animl/MapServer/4/query")
    assert not plan.broad
    assert not plan.client_only


def test_execute_dedups_image_rows_and_drops_blocked_labels(
    arcgis_server, client_factory, sample_global_config, make_snapshot
) -> None:
    rows = [
        _label_row(1, "img-9", hours_ago=0),
        _label_row(2, "img-8", "Person", hours_ago=1),
        _label_row(3, "img-7", hours_ago=2),
        _label_row(4, "img-7", hours_ago=2),
        _label_row(5, "img-6", "coyote", hours_ago=3),
        _label_row(6, "img-9", "coyote", hours_ago=0),
    ]
    server = arcgis_server(rows)
    snapshot = make_snapshot(estimated_count=3)
    result = _replay(client_factory, server, sample_global_config, lambda a: a.execute(snapshot, now=NOW))

    assert [record.key for record in result.working_set] == ["img-9", "img-7", "img-6"]
    # first-seen row is kept for the duplicated image
    assert result.working_set[1].attributes["id"] == 3
    assert result.raw_rows == 6
    assert result.relaxed_clause is None
    assert server.page_requests[0]["orderByFields"] == "timestamp DESC,id DESC"


def test_execute_requests_estimate_plus_buffer(
    arcgis_server, client_factory, sample_global_config, make_snapshot
) -> None:
    rows = [_label_row(index, f"img-{index}", hours_ago=index) for index in range(1, 200)]
    server = arcgis_server(rows)
    config = sample_global_config.model_copy(update={"max_pages": 50})
    snapshot = make_snapshot(estimated_count=20, custom_filters={"labels": ["deer"]})
    result = _replay(client_factory, server, config, lambda a: a.execute(snapshot, now=NOW))

    # narrow filter: 20 + max(ceil(2.0), 50)
    assert result.requested == 70
    assert len(result.working_set) == 70


def test_rejected_date_clause_is_applied_client_side(
    arcgis_server, client_factory, sample_global_config, make_snapshot
) -> None:
    rows = [
        _label_row(1, "img-1", hours_ago=0),
        _label_row(2, "img-2", hours_ago=24 * 40),
        _label_row(3, "img-3", hours_ago=5),
    ]
    server = arcgis_server(rows, reject="DATE")
    snapshot = make_snapshot(estimated_count=2, core_filters={"days_back": 30})
    result = _replay(client_factory, server, sample_global_config, lambda a: a.execute(snapshot, now=NOW))

    assert result.relaxed_clause == "date_range"
    assert [record.key for record in result.working_set] == ["img-1", "img-3"]
    wheres = [params["where"] for params in server.page_requests]
    assert sum("DATE" in where for where in wheres) == 1
    assert "DATE" in wheres[0]


def test_estimate_counts_distinct_images(
    arcgis_server, client_factory, sample_global_config, make_snapshot
) -> None:
    rows = [
        _label_row(1, "img-1"),
        _label_row(2, "img-1", "coyote"),
        _label_row(3, "img-2"),
        _label_row(4, "img-3"),
    ]
    server = arcgis_server(rows)
    snapshot = make_snapshot()
    count = _replay(client_factory, server, sample_global_config, lambda a: a.estimate(snapshot, now=NOW))

    assert count == 3
    request = server.count_requests[0]
    assert request["returnDistinctValues"] == "true"
    assert request["outFields"] == "animl_image_id"


def test_preview_returns_first_records(
    arcgis_server, client_factory, sample_global_config, make_snapshot
) -> None:
    rows = [_label_row(index, f"img-{index}", hours_ago=index) for index in range(1, 8)]
    server = arcgis_server(rows)
    snapshot = make_snapshot()
    preview = _replay(client_factory, server, sample_global_config, lambda a: a.preview(snapshot, 3, now=NOW))

    assert [row["animl_image_id"] for row in preview] == ["img-1", "img-2", "img-3"]
    assert len(server.page_requests) == 1


def test_replay_with_many_labels_per_image_matches_estimate(
    arcgis_server, client_factory, sample_global_config, make_snapshot
) -> None:
    rows = []
    for image in range(100):
        for offset, label in enumerate(("deer", "coyote", "bobcat")):
            rows.append(_label_row(image * 3 + offset, f"img-{image}", label, hours_ago=image))
    server = arcgis_server(rows)
    config = sample_global_config.model_copy(update={"max_pages": 50})

    async def _go():
        async with client_factory(server) as client:
            adapter = AnimlAdapter(client, config)
            estimate = await adapter.estimate(make_snapshot(), now=NOW)
            result = await adapter.execute(make_snapshot(estimated_count=estimate), now=NOW)
            return estimate, result

    estimate, result = asyncio.run(_go())
    assert estimate == 100
    assert result.requested == 200
    assert len(result.working_set) == 100
    assert [record.key for record in result.working_set[:2]] == ["img-0", "img-1"]
    assert not result.limit_exceeded

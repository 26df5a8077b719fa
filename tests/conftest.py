"""Pytest configuration providing shared fixtures and fake remote services."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable
from urllib.parse import parse_qsl

import httpx
import pytest

from cart_replay.config import ConfigLocator, ConfigRepository, GlobalConfig, RateLimitConfig
from cart_replay.infra import KeyValueStore
from cart_replay.models import FilterSnapshot
from cart_replay.queue import PersistedQueue


def request_params(request: httpx.Request) -> dict[str, str]:
    """Query string for GET, form body for POST."""

    if request.method == "POST":
        return dict(parse_qsl(request.content.decode("utf-8")))
    return dict(request.url.params)


class FakeArcGIS:
    """Serve attribute rows page by page the way an ArcGIS ``query`` does.

    The ``where`` clause is recorded but not evaluated, so every row comes
    back in the given order. ``reject`` makes any request whose ``where``
    contains that text fail with an ArcGIS error body.
    """

    def __init__(
        self,
        rows: list[dict[str, Any]],
        *,
        reject: str | None = None,
        reject_status: int = 200,
    ) -> None:
        self.rows = rows
        self.reject = reject
        self.reject_status = reject_status
        self.requests: list[dict[str, str]] = []

    @property
    def page_requests(self) -> list[dict[str, str]]:
        return [params for params in self.requests if "returnCountOnly" not in params]

    @property
    def count_requests(self) -> list[dict[str, str]]:
        return [params for params in self.requests if "returnCountOnly" in params]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        params = request_params(request)
        self.requests.append(params)
        if self.reject and self.reject in params.get("where", ""):
            payload = {"error": {"code": 400, "message": "Unable to complete operation."}}
            return httpx.Response(self.reject_status, json=payload)
        if params.get("returnCountOnly") == "true":
            if params.get("returnDistinctValues") == "true":
                field = params["outFields"]
                return httpx.Response(200, json={"count": len({row.get(field) for row in self.rows})})
            return httpx.Response(200, json={"count": len(self.rows)})
        offset = int(params.get("resultOffset", 0))
        limit = int(params.get("resultRecordCount", 1000))
        page = self.rows[offset : offset + limit]
        return httpx.Response(200, json={"features": [{"attributes": dict(row)} for row in page]})


def make_client(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def arcgis_server() -> type[FakeArcGIS]:
    return FakeArcGIS


@pytest.fixture
def client_factory() -> Callable[[Callable[[httpx.Request], Any]], httpx.AsyncClient]:
    return make_client


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CART_REPLAY_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(
        page_size=10,
        max_pages=5,
        fanout_concurrency=2,
        queue_capacity=3,
        preview_sample_size=3,
        outputs_dir=tmp_path / "outputs",
        store_path=tmp_path / "cart.db",
        inaturalist_rate=RateLimitConfig(min_interval=0.0, daily_max=None),
    )


@pytest.fixture
def make_snapshot() -> Callable[..., FilterSnapshot]:
    def _builder(**overrides: Any) -> FilterSnapshot:
        base: dict[str, Any] = {
            "data_source": "animl",
            "title": "Camera traps",
            "estimated_count": 0,
        }
        base.update(overrides)
        return FilterSnapshot.model_validate(base)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> Iterable[ConfigRepository]:
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


@pytest.fixture
def cart_queue(tmp_path: Path) -> Iterable[PersistedQueue]:
    store = KeyValueStore(tmp_path / "cart.db")
    yield PersistedQueue(store, capacity=3)
    store.close()

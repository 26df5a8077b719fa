"""Per-source query re-executors and the registry that picks one."""

from __future__ import annotations

from datetime import datetime

import httpx
import structlog

from ..config import GlobalConfig
from ..errors import AdapterNotImplemented
from ..models import DataSourceKind, FilterSnapshot
from .animl import AnimlAdapter
from .arcgis import ArcGISLayerSource, spatial_params
from .base import QueryAdapter, QueryPlan, ReplayResult, SizingPolicy
from .inaturalist import INaturalistAdapter, ObservationsSource
from .tnc_inaturalist import TNCINaturalistAdapter

ADAPTERS: dict[DataSourceKind, type[QueryAdapter]] = {
    DataSourceKind.ANIML: AnimlAdapter,
    DataSourceKind.TNC_INATURALIST: TNCINaturalistAdapter,
    DataSourceKind.INATURALIST: INaturalistAdapter,
}


class UnimplementedAdapter(QueryAdapter):
    """Placeholder for sources that are listed but cannot be replayed yet.

    Every operation fails before touching the network.
    """

    def __init__(self, kind: DataSourceKind, client: httpx.AsyncClient, config: GlobalConfig, logger=None) -> None:
        self.kind = kind
        super().__init__(client, config, logger)

    def plan(self, snapshot: FilterSnapshot, now: datetime) -> QueryPlan:
        raise AdapterNotImplemented(self.kind.value)


def build_adapter(
    kind: DataSourceKind,
    client: httpx.AsyncClient,
    config: GlobalConfig,
    logger: structlog.BoundLogger | None = None,
) -> QueryAdapter:
    adapter_cls = ADAPTERS.get(kind)
    if adapter_cls is None:
        return UnimplementedAdapter(kind, client, config, logger)
    return adapter_cls(client, config, logger)


__all__ = [
    "ADAPTERS",
    "AnimlAdapter",
    "ArcGISLayerSource",
    "INaturalistAdapter",
    "ObservationsSource",
    "QueryAdapter",
    "QueryPlan",
    "ReplayResult",
    "SizingPolicy",
    "TNCINaturalistAdapter",
    "UnimplementedAdapter",
    "build_adapter",
    "spatial_params",
]

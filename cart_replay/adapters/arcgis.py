"""ArcGIS REST ``/query`` endpoints as paginated page sources."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ..engine import Predicate
from ..models import RemoteRow, SpatialMode, SpatialScope, parse_timestamp

# xmin, ymin, xmax, ymax in WGS84
PRESERVE_EXTENT = (-120.498, 34.415, -120.357, 34.570)
EXPANDED_EXTENT = (-120.55, 34.35, -120.30, 34.62)

WGS84 = "4326"


def _envelope(extent: tuple[float, float, float, float]) -> dict[str, str]:
    return {
        "geometry": ",".join(str(value) for value in extent),
        "geometryType": "esriGeometryEnvelope",
        "inSR": WGS84,
        "spatialRel": "esriSpatialRelIntersects",
    }


def _esri_polygon(polygon: dict[str, Any]) -> dict[str, Any]:
    if "rings" in polygon:
        return polygon
    # GeoJSON Polygon
    return {"rings": polygon.get("coordinates", []), "spatialReference": {"wkid": 4326}}


def spatial_params(scope: SpatialScope) -> tuple[dict[str, str], str]:
    """Return ``(params, method)`` for a spatial scope.

    Custom polygons can be large, so they go in a POST body.
    """

    if scope.mode is SpatialMode.PRESERVE_ONLY:
        return _envelope(PRESERVE_EXTENT), "GET"
    if scope.mode is SpatialMode.EXPANDED:
        return _envelope(EXPANDED_EXTENT), "GET"
    params = {
        "geometry": json.dumps(_esri_polygon(scope.polygon or {})),
        "geometryType": "esriGeometryPolygon",
        "inSR": WGS84,
        "spatialRel": "esriSpatialRelIntersects",
    }
    return params, "POST"


@dataclass(slots=True)
class ArcGISLayerSource:
    """One layer's ``query`` operation.

    ``key_fields`` are tried in order to find the identity key of a row.
    When ``distinct_count_field`` is set the count-only query counts distinct
    values of that field instead of raw rows.
    """

    url: str
    out_fields: str
    order_by: str
    key_fields: tuple[str, ...]
    timestamp_field: str
    method: str = "GET"
    return_geometry: bool = False
    spatial: dict[str, str] = field(default_factory=dict)
    distinct_count_field: str | None = None

    @classmethod
    def for_layer(cls, service_url: str, layer: int, **kwargs: Any) -> "ArcGISLayerSource":
        return cls(url=f"{service_url.rstrip('/')}/{layer}/query", **kwargs)

    # ------------------------------------------------------------------
    def page_params(self, predicate: Predicate, offset: int, limit: int) -> dict[str, Any]:
        return {
            "where": predicate.where(),
            "outFields": self.out_fields,
            "returnGeometry": "true" if self.return_geometry else "false",
            "orderByFields": self.order_by,
            "resultOffset": offset,
            "resultRecordCount": limit,
            "outSR": WGS84,
            "f": "json",
            **self.spatial,
        }

    def count_params(self, predicate: Predicate) -> dict[str, Any]:
        params: dict[str, Any] = {
            "where": predicate.where(),
            "returnCountOnly": "true",
            "f": "json",
            **self.spatial,
        }
        if self.distinct_count_field:
            params["outFields"] = self.distinct_count_field
            params["returnDistinctValues"] = "true"
        return params

    def parse_count(self, payload: Any) -> int:
        return int(payload.get("count") or 0)

    def parse_page(self, payload: Any) -> list[RemoteRow]:
        return [self._row(feature) for feature in payload.get("features") or []]

    def _row(self, feature: dict[str, Any]) -> RemoteRow:
        attributes = dict(feature.get("attributes") or {})
        geometry = feature.get("geometry") or {}
        if "x" in geometry and "y" in geometry:
            attributes["longitude"] = geometry["x"]
            attributes["latitude"] = geometry["y"]
        key = next(
            (attributes[name] for name in self.key_fields if attributes.get(name) is not None),
            None,
        )
        return RemoteRow(
            key=None if key is None else str(key),
            timestamp=parse_timestamp(attributes.get(self.timestamp_field)),
            attributes=attributes,
        )


__all__ = [
    "ArcGISLayerSource",
    "EXPANDED_EXTENT",
    "PRESERVE_EXTENT",
    "spatial_params",
]

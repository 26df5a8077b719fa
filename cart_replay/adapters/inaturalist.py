"""Public iNaturalist API (v1) adapter."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..config import GlobalConfig
from ..engine import (
    Contains,
    DateRange,
    Equals,
    FilterPlan,
    InSet,
    MonthIn,
    Predicate,
    Presence,
    RateLimiter,
)
from ..models import DataSourceKind, FilterSnapshot, INaturalistFilters, RemoteRow, parse_timestamp
from .base import QueryAdapter, QueryPlan

MAX_PER_PAGE = 200


def render_params(predicate: Predicate) -> dict[str, Any]:
    """Translate the clauses the API understands into query parameters.

    Clauses with no parameter equivalent (name substring) are skipped here and
    only applied client-side.
    """

    params: dict[str, Any] = {}
    for clause in predicate.clauses:
        if isinstance(clause, DateRange):
            params["d1"] = clause.start.isoformat()
            params["d2"] = clause.end.isoformat()
        elif isinstance(clause, InSet) and clause.field == "iconic_taxon_name":
            params["iconic_taxa"] = ",".join(str(value) for value in clause.values)
        elif isinstance(clause, Equals) and clause.field == "quality_grade":
            params["quality_grade"] = clause.value
        elif isinstance(clause, MonthIn):
            params["month"] = ",".join(str(month) for month in clause.months)
        elif isinstance(clause, Presence) and clause.field == "photo_url":
            params["photos"] = "true" if clause.present else "false"
    return params


def _observation_row(observation: dict[str, Any]) -> RemoteRow:
    taxon = observation.get("taxon") or {}
    photos = observation.get("photos") or []
    coordinates = (observation.get("geojson") or {}).get("coordinates") or [None, None]
    attributes = {
        "id": observation.get("id"),
        "uuid": observation.get("uuid"),
        "observed_on": observation.get("observed_on"),
        "time_observed_at": observation.get("time_observed_at"),
        "quality_grade": observation.get("quality_grade"),
        "scientific_name": taxon.get("name"),
        "common_name": taxon.get("preferred_common_name"),
        "iconic_taxon_name": taxon.get("iconic_taxon_name"),
        "user_login": (observation.get("user") or {}).get("login"),
        "place_guess": observation.get("place_guess"),
        "photo_url": photos[0].get("url") if photos else None,
        "photo_count": len(photos),
        "uri": observation.get("uri"),
        "longitude": coordinates[0],
        "latitude": coordinates[1],
    }
    # observed_on is the local calendar day d1/d2 and month filter on
    timestamp = parse_timestamp(observation.get("observed_on") or observation.get("time_observed_at"))
    obs_id = observation.get("id")
    return RemoteRow(
        key=None if obs_id is None else str(obs_id), timestamp=timestamp, attributes=attributes
    )


@dataclass(slots=True)
class ObservationsSource:
    """``GET /observations`` paged by ``page``/``per_page``.

    Offsets handed in by the fetcher are always multiples of ``per_page``.
    """

    url: str
    place_id: int
    per_page: int = MAX_PER_PAGE
    method: str = "GET"

    def _base(self, predicate: Predicate) -> dict[str, Any]:
        return {
            "place_id": self.place_id,
            "has": "geo",
            **render_params(predicate),
        }

    def page_params(self, predicate: Predicate, offset: int, limit: int) -> dict[str, Any]:
        return {
            **self._base(predicate),
            "per_page": self.per_page,
            "page": offset // self.per_page + 1,
            "order": "desc",
            "order_by": "id",
        }

    def count_params(self, predicate: Predicate) -> dict[str, Any]:
        return {**self._base(predicate), "per_page": 0}

    def parse_page(self, payload: Any) -> list[RemoteRow]:
        return [_observation_row(item) for item in payload.get("results") or []]

    def parse_count(self, payload: Any) -> int:
        return int(payload.get("total_results") or 0)


class INaturalistAdapter(QueryAdapter):
    """Replay snapshots against the public iNaturalist API.

    The API is paced by a limiter owned by this adapter instance.
    """

    kind = DataSourceKind.INATURALIST

    def page_size(self, config: GlobalConfig) -> int:
        return min(config.page_size, MAX_PER_PAGE)

    def build_rate_limiter(self, config: GlobalConfig) -> RateLimiter | None:
        return RateLimiter(
            min_interval=config.inaturalist_rate.min_interval,
            daily_max=config.inaturalist_rate.daily_max,
        )

    def plan(self, snapshot: FilterSnapshot, now: datetime) -> QueryPlan:
        filters = snapshot.custom_filters
        if not isinstance(filters, INaturalistFilters):
            filters = INaturalistFilters()
        window = snapshot.core_filters.resolve_window(now)
        date_clause = DateRange("observed_on", *window) if window else None
        taxa = InSet("iconic_taxon_name", filters.iconic_taxa) if filters.iconic_taxa else None
        quality = Equals("quality_grade", filters.quality_grade) if filters.quality_grade else None
        months = MonthIn("observed_on", filters.months) if filters.months else None
        photos = None
        if filters.photo_filter != "any":
            photos = Presence("photo_url", filters.photo_filter == "with")
        name = (
            Contains(("scientific_name", "common_name"), filters.taxon_name)
            if filters.taxon_name
            else None
        )
        pushed = [clause for clause in (taxa, quality, months, photos) if clause]
        source = ObservationsSource(
            url=f"{self.config.endpoints.inaturalist_url}/observations",
            place_id=self.config.endpoints.inaturalist_place_id,
            per_page=self.fetcher.page_size,
        )
        return QueryPlan(
            source=source,
            predicate=Predicate.of([date_clause, *pushed]),
            filters=FilterPlan(user=tuple(pushed + ([name] if name else []))),
            relaxable=date_clause,
            broad=filters.is_broad,
        )


__all__ = ["INaturalistAdapter", "MAX_PER_PAGE", "ObservationsSource", "render_params"]

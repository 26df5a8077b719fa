"""Camera-trap (ANiML) adapter over the flattened image-label layer."""

from __future__ import annotations

from datetime import datetime

from ..engine import DateRange, FetchOutcome, FilterPlan, InSet, NotInSet, Predicate, Presence
from ..models import AnimlFilters, DataSourceKind, FilterSnapshot
from .arcgis import ArcGISLayerSource
from .base import QueryAdapter, QueryPlan

ANIML_FIELDS = (
    "id,animl_image_id,deployment_id,deployment_name,timestamp,label,medium_url,small_url"
)


class AnimlAdapter(QueryAdapter):
    """Replay ANiML snapshots.

    The layer holds one row per (image, label) pair, so the identity key is
    ``animl_image_id`` and the estimate counts distinct image ids. Replays keep
    fetching until that many distinct images pass the filters. Pages after
    the first are fetched concurrently. The date clause is the one the server
    is allowed to refuse.
    """

    kind = DataSourceKind.ANIML

    def _source(self, *, distinct: bool = False) -> ArcGISLayerSource:
        endpoints = self.config.endpoints
        return ArcGISLayerSource.for_layer(
            endpoints.animl_url,
            endpoints.animl_labels_layer,
            out_fields=ANIML_FIELDS,
            order_by="timestamp DESC,id DESC",
            key_fields=("animl_image_id",),
            timestamp_field="timestamp",
            distinct_count_field="animl_image_id" if distinct else None,
        )

    def plan(self, snapshot: FilterSnapshot, now: datetime) -> QueryPlan:
        filters = snapshot.custom_filters
        if not isinstance(filters, AnimlFilters):
            filters = AnimlFilters()
        window = snapshot.core_filters.resolve_window(now)
        date_clause = DateRange("timestamp", *window) if window else None
        blocked = (
            NotInSet("label", self.config.blocked_labels, case_insensitive=True, name="blocked_labels")
            if self.config.blocked_labels
            else None
        )
        deployments = (
            InSet("deployment_id", filters.deployment_ids) if filters.deployment_ids else None
        )
        labels = InSet("label", filters.labels, case_insensitive=True) if filters.labels else None
        images = (
            Presence("medium_url", filters.has_images) if filters.has_images is not None else None
        )
        return QueryPlan(
            source=self._source(),
            count_source=self._source(distinct=True),
            predicate=Predicate.of([date_clause, blocked, deployments, labels, images]),
            filters=FilterPlan(
                standing=tuple(clause for clause in (blocked,) if clause),
                user=tuple(clause for clause in (deployments, labels, images) if clause),
            ),
            relaxable=date_clause,
            broad=filters.is_broad,
        )

    async def _fetch(self, plan: QueryPlan, target: int | None) -> FetchOutcome:
        return await self.fetcher.fetch_fanout(
            plan.source,
            plan.predicate,
            relaxable=plan.relaxable,
            filters=plan.filters,
            target=target,
            concurrency=self.config.fanout_concurrency,
        )


__all__ = ["ANIML_FIELDS", "AnimlAdapter"]

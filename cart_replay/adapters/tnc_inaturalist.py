"""TNC-hosted iNaturalist observations (ArcGIS feature layer)."""

from __future__ import annotations

from datetime import datetime

from ..engine import Contains, DateRange, FilterPlan, InSet, Predicate, Presence
from ..models import DataSourceKind, FilterSnapshot, INaturalistFilters
from .arcgis import ArcGISLayerSource, spatial_params
from .base import QueryAdapter, QueryPlan

TNC_FIELDS = (
    "OBJECTID,observation_id,observation_uuid,scientific_name,common_name,"
    "taxon_category_name,observed_on,observed_on_month,user_name,image_url,image_license"
)


class TNCINaturalistAdapter(QueryAdapter):
    kind = DataSourceKind.TNC_INATURALIST

    def plan(self, snapshot: FilterSnapshot, now: datetime) -> QueryPlan:
        filters = snapshot.custom_filters
        if not isinstance(filters, INaturalistFilters):
            filters = INaturalistFilters()
        if filters.quality_grade:
            # the hosted layer carries no quality grade column
            self.logger.warning(
                "filter_ignored", item=snapshot.id, filter="quality_grade", value=filters.quality_grade
            )

        window = snapshot.core_filters.resolve_window(now)
        date_clause = DateRange("observed_on", *window) if window else None
        taxa = InSet("taxon_category_name", filters.iconic_taxa) if filters.iconic_taxa else None
        name = (
            Contains(("scientific_name", "common_name"), filters.taxon_name)
            if filters.taxon_name
            else None
        )
        months = InSet("observed_on_month", filters.months, name="month_in") if filters.months else None
        photos = None
        if filters.photo_filter != "any":
            photos = Presence("image_url", filters.photo_filter == "with")

        spatial, method = spatial_params(snapshot.core_filters.spatial)
        source = ArcGISLayerSource.for_layer(
            self.config.endpoints.tnc_inaturalist_url,
            self.config.endpoints.tnc_inaturalist_layer,
            out_fields=TNC_FIELDS,
            order_by="OBJECTID DESC",
            key_fields=("observation_uuid", "observation_id", "OBJECTID"),
            timestamp_field="observed_on",
            method=method,
            return_geometry=True,
            spatial=spatial,
        )
        user = tuple(clause for clause in (taxa, name, months, photos) if clause)
        return QueryPlan(
            source=source,
            predicate=Predicate.of([date_clause, *user]),
            filters=FilterPlan(user=user),
            relaxable=date_clause,
            broad=filters.is_broad,
        )


__all__ = ["TNCINaturalistAdapter", "TNC_FIELDS"]

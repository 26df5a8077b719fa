"""Cart domain models: filter snapshots, remote rows and canonical records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PREVIEW_SAMPLE_LIMIT = 25


class DataSourceKind(str, Enum):
    """Remote data sources a cart item can point at."""

    ANIML = "animl"
    TNC_INATURALIST = "tnc_inaturalist"
    INATURALIST = "inaturalist"
    CALFLORA = "calflora"
    EBIRD = "ebird"
    DENDRA = "dendra"


class SpatialMode(str, Enum):
    PRESERVE_ONLY = "preserve_only"
    EXPANDED = "expanded"
    CUSTOM = "custom"


class SpatialScope(BaseModel):
    """Where the query looks: the preserve polygon, a padded envelope or a drawn polygon."""

    model_config = ConfigDict(frozen=True)

    mode: SpatialMode = SpatialMode.EXPANDED
    polygon: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _validate_polygon(self) -> "SpatialScope":
        if self.mode is SpatialMode.CUSTOM and not self.polygon:
            raise ValueError("custom spatial scope requires a polygon")
        return self


class CoreFilters(BaseModel):
    """Filters shared by every data source.

    The time window is either relative (``days_back``) or an explicit
    ``start_date``/``end_date`` pair. Leaving both out means no time bound.
    """

    model_config = ConfigDict(frozen=True)

    category: str = ""
    source: str = ""
    time_range: str = ""
    days_back: int | None = Field(default=None, ge=1)
    start_date: date | None = None
    end_date: date | None = None
    spatial: SpatialScope = Field(default_factory=SpatialScope)

    @model_validator(mode="after")
    def _validate_window(self) -> "CoreFilters":
        has_start = self.start_date is not None
        has_end = self.end_date is not None
        if has_start != has_end:
            raise ValueError("start_date and end_date must be given together")
        if has_start and self.days_back is not None:
            raise ValueError("days_back cannot be combined with an explicit date range")
        if has_start and self.end_date < self.start_date:
            raise ValueError("end_date cannot be earlier than start_date")
        return self

    @property
    def is_relative(self) -> bool:
        return self.days_back is not None

    def resolve_window(self, reference: datetime | None = None) -> tuple[date, date] | None:
        """Return the concrete ``(start, end)`` dates for this window.

        Relative windows are anchored at ``reference`` (the replay time), not at
        the moment the snapshot was taken, so two replays on different days may
        legitimately cover different dates.
        """

        if self.start_date is not None and self.end_date is not None:
            return self.start_date, self.end_date
        if self.days_back is not None:
            reference = reference or datetime.now(timezone.utc)
            end = reference.date()
            return end - timedelta(days=self.days_back), end
        return None


class AnimlFilters(BaseModel):
    """Camera-trap filters: cameras, species labels and image presence."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["animl"] = "animl"
    deployment_ids: tuple[int, ...] = ()
    labels: tuple[str, ...] = ()
    has_images: bool | None = None

    @property
    def is_broad(self) -> bool:
        return not (self.deployment_ids or self.labels or self.has_images)


class INaturalistFilters(BaseModel):
    """Observation filters for both iNaturalist-backed sources."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["inaturalist"] = "inaturalist"
    quality_grade: Literal["research", "needs_id", "casual"] | None = None
    iconic_taxa: tuple[str, ...] = ()
    taxon_name: str | None = None
    photo_filter: Literal["any", "with", "without"] = "any"
    months: tuple[int, ...] = ()

    @field_validator("months")
    @classmethod
    def _check_months(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        if any(month < 1 or month > 12 for month in value):
            raise ValueError("months must be between 1 and 12")
        return tuple(sorted(set(value)))

    @field_validator("taxon_name", mode="before")
    @classmethod
    def _blank_taxon(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_broad(self) -> bool:
        return not (
            self.quality_grade
            or self.iconic_taxa
            or self.taxon_name
            or self.photo_filter != "any"
            or self.months
        )


class PassthroughFilters(BaseModel):
    """Opaque filters for sources that have no adapter yet."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["passthrough"] = "passthrough"
    values: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_broad(self) -> bool:
        return not self.values


CustomFilters = Annotated[
    Union[AnimlFilters, INaturalistFilters, PassthroughFilters],
    Field(discriminator="kind"),
]

_FILTER_KINDS: dict[DataSourceKind, str] = {
    DataSourceKind.ANIML: "animl",
    DataSourceKind.TNC_INATURALIST: "inaturalist",
    DataSourceKind.INATURALIST: "inaturalist",
}


class FilterSnapshot(BaseModel):
    """Immutable record of a filtered query plus the count shown to the user."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    data_source: DataSourceKind
    title: str = ""
    core_filters: CoreFilters = Field(default_factory=CoreFilters)
    custom_filters: CustomFilters = Field(default_factory=PassthroughFilters)
    estimated_count: int = Field(default=0, ge=0)
    preview_sample: tuple[dict[str, Any], ...] = Field(
        default=(), max_length=PREVIEW_SAMPLE_LIMIT
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="before")
    @classmethod
    def _default_filter_kind(cls, data: Any) -> Any:
        # Let request files omit ``kind`` (or custom_filters altogether).
        if isinstance(data, dict):
            custom = data.get("custom_filters") or {}
            source = data.get("data_source")
            if isinstance(custom, dict) and "kind" not in custom and source is not None:
                try:
                    kind = _FILTER_KINDS.get(DataSourceKind(source), "passthrough")
                except ValueError:
                    return data
                data = {**data, "custom_filters": {**custom, "kind": kind}}
        return data

    @model_validator(mode="after")
    def _validate_filter_kind(self) -> "FilterSnapshot":
        expected = _FILTER_KINDS.get(self.data_source, "passthrough")
        if self.custom_filters.kind != expected:
            raise ValueError(
                f"{self.data_source.value} expects '{expected}' custom filters, "
                f"got '{self.custom_filters.kind}'"
            )
        return self

    @property
    def label(self) -> str:
        return self.title or self.core_filters.source or self.data_source.value

    def with_estimate(
        self, estimated_count: int, preview_sample: tuple[dict[str, Any], ...] = ()
    ) -> "FilterSnapshot":
        return self.model_copy(
            update={
                "estimated_count": estimated_count,
                "preview_sample": tuple(preview_sample[:PREVIEW_SAMPLE_LIMIT]),
            }
        )


@dataclass(frozen=True, slots=True)
class RemoteRow:
    """One record as returned by a page of a remote query.

    ``key`` is None when the row carries none of its source's identity fields;
    such rows never become canonical records.
    """

    key: str | None
    timestamp: datetime | None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)


@dataclass(frozen=True, slots=True)
class CanonicalRecord(RemoteRow):
    """The single surviving row for one identity key."""

    @classmethod
    def from_row(cls, row: RemoteRow) -> "CanonicalRecord":
        return cls(key=row.key, timestamp=row.timestamp, attributes=row.attributes)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.attributes)


WorkingSet = list[CanonicalRecord]


def parse_timestamp(value: Any) -> datetime | None:
    """Normalise epoch milliseconds, ISO strings and dates to aware UTC datetimes."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


__all__ = [
    "AnimlFilters",
    "CanonicalRecord",
    "CoreFilters",
    "CustomFilters",
    "DataSourceKind",
    "FilterSnapshot",
    "INaturalistFilters",
    "PREVIEW_SAMPLE_LIMIT",
    "PassthroughFilters",
    "RemoteRow",
    "SpatialMode",
    "SpatialScope",
    "WorkingSet",
    "parse_timestamp",
]

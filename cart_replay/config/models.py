"""Pydantic models describing cart replay settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models import PREVIEW_SAMPLE_LIMIT


class SizingConfig(BaseModel):
    """How many rows to ask for when replaying a snapshot.

    The request is ``min(estimate + buffer, hard_ceiling)``. Narrow filters get a
    proportional buffer with a floor; broad filters get a fixed, larger buffer
    because their size drifts more between snapshot and replay.
    """

    narrow_ratio: float = Field(default=0.10, ge=0.0)
    narrow_floor: int = Field(default=50, ge=0)
    broad_buffer: int = Field(default=100, ge=0)
    hard_ceiling: int = Field(default=10000, ge=1)


class RateLimitConfig(BaseModel):
    """Request pacing for APIs that publish a rate limit."""

    min_interval: float = Field(default=1.0, ge=0.0)
    daily_max: int | None = Field(default=10000, ge=1)


class EndpointConfig(BaseModel):
    """Base URLs of the remote query services."""

    animl_url: str = "https://dangermondpreserve-spatial.com/server/rest/services/Animl/MapServer"
    animl_labels_layer: int = 4
    tnc_inaturalist_url: str = (
        "https://services9.arcgis.com/RHVPKKiFTONKtxq3/arcgis/rest/services/"
        "iNat_PreUC_View/FeatureServer"
    )
    tnc_inaturalist_layer: int = 0
    inaturalist_url: str = "https://api.inaturalist.org/v1"
    inaturalist_place_id: int = 136122

    @field_validator("animl_url", "tnc_inaturalist_url", "inaturalist_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")


class GlobalConfig(BaseModel):
    """Global controls shared by every replay."""

    page_size: int = Field(default=1000, ge=1)
    max_pages: int = Field(default=50, ge=1)
    fanout_concurrency: int = Field(default=4, ge=1)
    queue_capacity: int = Field(default=50, ge=1)
    preview_sample_size: int = Field(default=10, ge=0, le=PREVIEW_SAMPLE_LIMIT)
    blocked_labels: list[str] = Field(default_factory=lambda: ["person", "people", "human"])
    sizing: SizingConfig = Field(default_factory=SizingConfig)
    endpoints: EndpointConfig = Field(default_factory=EndpointConfig)
    inaturalist_rate: RateLimitConfig = Field(default_factory=RateLimitConfig)
    outputs_dir: Path = Field(default=Path("data/outputs"))
    store_path: Path = Field(default=Path("data/cart.db"))

    @field_validator("outputs_dir", "store_path", mode="before")
    @classmethod
    def _coerce_paths(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("blocked_labels", mode="before")
    @classmethod
    def _normalise_labels(cls, value: Any) -> list[str]:
        if value in (None, ""):
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip().lower() for item in value if str(item).strip()]

    @model_validator(mode="after")
    def _validate_preview(self) -> "GlobalConfig":
        if self.preview_sample_size > self.page_size:
            raise ValueError("preview_sample_size cannot exceed page_size")
        return self

    def resolve(self, path: Path, base_dir: Path) -> Path:
        """Return ``path`` relative to the project data directory when not absolute."""

        if not path.is_absolute():
            return (base_dir / path).resolve()
        return path


__all__ = ["EndpointConfig", "GlobalConfig", "RateLimitConfig", "SizingConfig"]

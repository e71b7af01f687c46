"""Request schema of ``POST /api/compare``."""

from __future__ import annotations

from typing import Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

FocusArea = Literal["sentiment", "features", "performance", "ui_ux", "pricing", "competitiveness"]
TimeRange = Literal["last_30_days", "last_90_days", "last_6_months", "all_time"]
ExportFormat = Literal["json", "pdf", "csv"]


class CompareAppOptions(BaseModel):
    """Per-app options of a comparison."""

    model_config = ConfigDict(populate_by_name=True)

    max_reviews: int = Field(default=500, ge=50, le=5000, alias="maxReviews")
    deep_analysis: bool = Field(default=True, alias="deepAnalysis")
    include_historical: bool = Field(default=False, alias="includeHistorical")


class CompareAppInput(BaseModel):
    """One app taking part in a comparison."""

    model_config = ConfigDict(populate_by_name=True)

    app_url: str = Field(..., alias="appUrl")
    platform: Literal["ios", "android"]
    options: CompareAppOptions = Field(default_factory=CompareAppOptions)

    @field_validator("app_url")
    @classmethod
    def check_url(cls, v: str) -> str:
        v = v.strip()
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError("Invalid app URL")
        return v


class ComparisonOptions(BaseModel):
    """Options applying to the whole comparison."""

    model_config = ConfigDict(populate_by_name=True)

    focus_areas: list[FocusArea] = Field(
        default_factory=lambda: ["sentiment", "features"], alias="focusAreas"
    )
    time_range: TimeRange = Field(default="last_90_days", alias="timeRange")
    export_format: ExportFormat = Field(default="json", alias="exportFormat")


class ComparisonRequest(BaseModel):
    """Body of ``POST /api/compare``: two to five apps plus shared options."""

    model_config = ConfigDict(populate_by_name=True)

    apps: list[CompareAppInput] = Field(..., min_length=2, max_length=5)
    comparison_options: ComparisonOptions = Field(
        default_factory=ComparisonOptions, alias="comparisonOptions"
    )

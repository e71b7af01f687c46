"""Request bodies of the single-app analysis endpoints.

Validation here is deliberately shallow: the platform and URL checks live
in the route so that failures are reported with the catalogued error
envelope (``INVALID_PLATFORM``, ``INVALID_URL``) rather than FastAPI's 422.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AnalyzeOptions(BaseModel):
    """Optional knobs of ``POST /api/analyze``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    multi_country: bool = Field(default=False, alias="multiCountry")
    countries: Optional[list[str]] = None
    rating_filter: Optional[list[int]] = Field(default=None, alias="ratingFilter")

    @field_validator("countries")
    @classmethod
    def lowercase_countries(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return None
        codes = [code.strip().lower() for code in v if code and code.strip()]
        return codes or None

    @field_validator("rating_filter")
    @classmethod
    def check_ratings(cls, v: Optional[list[int]]) -> Optional[list[int]]:
        if v is None:
            return None
        invalid = [rating for rating in v if rating < 1 or rating > 5]
        if invalid:
            raise ValueError(f"ratings must be between 1 and 5, got {invalid}")
        return v


class AnalyzeRequest(BaseModel):
    """Body of ``POST /api/analyze``."""

    model_config = ConfigDict(populate_by_name=True)

    app_url: str = Field(default="", alias="appUrl")
    platform: str = ""
    options: AnalyzeOptions = Field(default_factory=AnalyzeOptions)


class RefreshRequest(BaseModel):
    """Body of ``POST /api/analyze/refresh``."""

    model_config = ConfigDict(populate_by_name=True)

    app_name: str = Field(default="", alias="appName")
    force_reanalysis: bool = Field(default=False, alias="forceReanalysis")

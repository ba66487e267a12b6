"""
Domain models (Pydantic).

These types are the contract between the engine and its consumers:
- coverage inputs/outputs (`CoverageEntity`, `OverlapResult`)
- census lookups (`DemographicsRecord` or `DemographicsFailure`, never both)
- recommended placements (`RecommendedPoint`, `GapAnalysisResult`)
- the search lifecycle (`SearchCriteria`, `SearchResults`, `EnrichmentResults`)
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

from gapscout.core.geo import DEFAULT_COVERAGE_RADIUS_M
from gapscout.core.geo import GeoPoint as CoreGeoPoint


class GeoPoint(BaseModel):
    """A geographic point in decimal degrees."""

    model_config = {"frozen": True}

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_core(self) -> CoreGeoPoint:
        return CoreGeoPoint(lat=self.lat, lng=self.lng)


class CoverageEntity(BaseModel):
    """A business location with the radius it is assumed to serve."""

    id: str
    location: GeoPoint
    radius_m: float | None = Field(default=None, gt=0)

    @property
    def effective_radius_m(self) -> float:
        return self.radius_m if self.radius_m is not None else DEFAULT_COVERAGE_RADIUS_M


class OverlapResult(BaseModel):
    """One overlapping unordered pair (`id_a` was discovered before `id_b`)."""

    id_a: str
    id_b: str
    distance_m: float = Field(..., ge=0)
    overlap_area_sq_m: float = Field(..., ge=0)
    overlap_percentage: float = Field(..., ge=0)


class DemographicsRecord(BaseModel):
    """Census tract aggregates for one coordinate.

    Income and home value use 0 as the "not available" sentinel.
    """

    population: int = Field(0, ge=0)
    median_income_usd: int = Field(0, ge=0)
    median_home_value_usd: int = Field(0, ge=0)
    college_percent: float = Field(0.0, ge=0)
    tract_name: str = "Unknown Census Tract"
    state_fips: str
    county_fips: str

    @property
    def has_median_income(self) -> bool:
        return self.median_income_usd > 0

    @property
    def has_median_home_value(self) -> bool:
        return self.median_home_value_usd > 0


FailureKind = Literal[
    "cancelled",
    "network",
    "empty_body",
    "malformed",
    "no_geography",
    "no_statistics",
    "missing_field",
    "unexpected",
]


class DemographicsFailure(BaseModel):
    """A census lookup that did not produce a record."""

    message: str
    detail: str | None = None
    kind: FailureKind = "unexpected"

    @property
    def is_cancelled(self) -> bool:
        return self.kind == "cancelled"


DemographicsOutcome = Union[DemographicsRecord, DemographicsFailure]


def is_demographics_failure(value: DemographicsOutcome) -> bool:
    return isinstance(value, DemographicsFailure)


class DemographicFit(BaseModel):
    """Model-estimated fit scores (each 0..100)."""

    target_match: int = Field(50, ge=0, le=100)
    competition_level: int = Field(50, ge=0, le=100)
    market_potential: int = Field(50, ge=0, le=100)


class NearestCompetitor(BaseModel):
    distance_m: float = Field(1000.0, ge=0)
    name: str = "Unknown"


class RecommendedPoint(BaseModel):
    """A suggested placement returned by the gap-analysis service.

    `risk_score` is the "Tortoise Level": 0 = high risk/high reward, 100 = low risk/steady.
    `attached_demographics` is written only by the recommendation enricher.
    """

    id: str
    location: GeoPoint
    risk_score: int = Field(50, ge=0, le=100)
    reasoning: str = "No specific reasoning provided"
    demographic_fit: DemographicFit = Field(default_factory=DemographicFit)
    nearest_competitor: NearestCompetitor = Field(default_factory=NearestCompetitor)
    supporting_business_names: list[str] = Field(default_factory=list)
    attached_demographics: DemographicsRecord | DemographicsFailure | None = None


class Business(BaseModel):
    """A Places-like lookup record."""

    place_id: str
    name: str
    location: GeoPoint
    vicinity: str | None = None
    rating: float | None = Field(default=None, ge=0, le=5)
    price_level: int | None = None
    categories: list[str] = Field(default_factory=list)


class SearchCriteria(BaseModel):
    """One user-triggered business search."""

    center: GeoPoint
    business_type: str
    search_radius_m: float = Field(..., gt=0)
    coverage_radius_m: float = Field(DEFAULT_COVERAGE_RADIUS_M, gt=0)
    max_results: int = Field(20, ge=1, le=20)
    min_rating: float = Field(1.0, ge=0, le=5)
    use_rating_filter: bool = False
    city_name: str | None = None

    @field_validator("business_type")
    @classmethod
    def _require_business_type(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("business_type must not be empty")
        return value


class SearchResults(BaseModel):
    """Businesses found by one search plus their pairwise coverage overlaps."""

    search_id: int
    criteria: SearchCriteria
    businesses: list[Business]
    overlaps: list[OverlapResult]


class HeatmapPoint(BaseModel):
    location: GeoPoint
    weight: float = Field(..., ge=0, le=1)


class EnrichmentResults(BaseModel):
    """Per-business census data for one search, keyed by `place_id`."""

    search_id: int
    demographics: dict[str, DemographicsRecord | DemographicsFailure]
    heatmap: list[HeatmapPoint]


class AnalysisInput(BaseModel):
    """Context sent to the gap-analysis service."""

    businesses: list[Business]
    center: GeoPoint
    search_radius_m: float = Field(..., gt=0)
    business_type: str
    city_name: str = "the selected area"
    min_rating: float | None = Field(default=None, ge=0, le=5)
    use_rating_filter: bool = False
    map_screenshot_b64: str | None = None


class GapAnalysisResult(BaseModel):
    """Market gap analysis plus ranked placement recommendations."""

    summary: str = "Analysis completed"
    key_findings: list[str] = Field(default_factory=list)
    market_opportunities: list[str] = Field(default_factory=list)
    recommendations: list[RecommendedPoint]
    analysis_date: str
    business_type: str
    total_recommendations: int = Field(..., ge=0)
    confidence: int = Field(75, ge=0, le=100)
    meta: dict[str, Any] = Field(default_factory=dict)

"""
API routes.

Endpoints:
- POST `/api/overlaps`: pairwise coverage overlaps for a list of entities.
- GET  `/api/demographics`: census tract data for one map point.
- POST `/api/recommendations/enrich`: attach census data to recommended points.
- POST `/api/gap-analysis`: run the analysis service and enrich its recommendations.
- POST `/api/search`: one-shot business search with overlaps and enrichment.
- GET  `/api/settings`: public settings for the web UI (secrets redacted).
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from gapscout.config.settings import get_settings, public_settings
from gapscout.coverage.overlap import detect_overlaps, overlaps_by_entity
from gapscout.domain.models import (
    AnalysisInput,
    CoverageEntity,
    GapAnalysisResult,
    GeoPoint,
    OverlapResult,
    RecommendedPoint,
    SearchCriteria,
    is_demographics_failure,
)
from gapscout.ingestion.analysis_client import GapAnalysisClient
from gapscout.ingestion.census_client import CensusClient
from gapscout.ingestion.places_client import GooglePlacesClient, PlacesProvider
from gapscout.recommender.enrich import analyze_gaps, enrich_recommendations
from gapscout.search.orchestrator import SearchOrchestrator

router = APIRouter()


class OverlapRequest(BaseModel):
    entities: list[CoverageEntity]
    default_radius_m: float | None = Field(default=None, gt=0)


class OverlapResponse(BaseModel):
    overlaps: list[OverlapResult]
    overlap_counts: dict[str, int]


class EnrichRequest(BaseModel):
    recommendations: list[RecommendedPoint]


class EnrichResponse(BaseModel):
    recommendations: list[RecommendedPoint]


@lru_cache
def _clients() -> tuple[CensusClient, GapAnalysisClient]:
    settings = get_settings()
    return CensusClient(settings), GapAnalysisClient(settings)


def _places_provider() -> PlacesProvider:
    # One session per search request; the orchestrator closes it.
    return GooglePlacesClient(get_settings())


@router.post("/api/overlaps", response_model=OverlapResponse)
def post_overlaps(request: OverlapRequest) -> OverlapResponse:
    """Detect overlapping coverage circles (pure geometry, no upstream calls)."""
    default_radius_m = request.default_radius_m or get_settings().coverage.default_radius_m
    overlaps = detect_overlaps(request.entities, default_radius_m=default_radius_m)
    counts = {entity_id: len(items) for entity_id, items in overlaps_by_entity(overlaps).items()}
    return OverlapResponse(overlaps=overlaps, overlap_counts=counts)


@router.get("/api/demographics")
async def get_demographics(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
) -> dict:
    """Return tract demographics for a point, or the failure that prevented it."""
    census, _ = _clients()
    outcome = await census.fetch_demographics(GeoPoint(lat=lat, lng=lng))
    if is_demographics_failure(outcome):
        return {"ok": False, "error": outcome.model_dump(mode="json")}
    return {"ok": True, "demographics": outcome.model_dump(mode="json")}


@router.post("/api/recommendations/enrich", response_model=EnrichResponse)
async def post_enrich_recommendations(request: EnrichRequest) -> EnrichResponse:
    census, _ = _clients()
    enriched = await enrich_recommendations(request.recommendations, census)
    return EnrichResponse(recommendations=enriched)


@router.post("/api/gap-analysis", response_model=GapAnalysisResult)
async def post_gap_analysis(data: AnalysisInput) -> GapAnalysisResult:
    """Run gap analysis and attach census data to every recommended point."""
    census, analyzer = _clients()
    try:
        return await analyze_gaps(analyzer, census, data)
    except ValueError as e:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": str(e)},
        ) from e
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail={"code": "INTERNAL_ERROR", "message": str(e)},
        ) from e


@router.post("/api/search")
async def post_search(criteria: SearchCriteria) -> dict:
    """Run one search to completion (places -> overlaps -> demographics -> heatmap)."""
    settings = get_settings()
    census, _ = _clients()
    orchestrator = SearchOrchestrator(_places_provider(), census, settings=settings.search)
    try:
        outcome = await orchestrator.run_search(criteria)
    finally:
        await orchestrator.aclose()

    if outcome.status == "quota":
        raise HTTPException(
            status_code=429,
            detail={"code": "QUOTA_EXCEEDED", "message": outcome.error.message if outcome.error else ""},
        )
    if outcome.status != "enriched":
        message = outcome.error.message if outcome.error else f"Search ended with status={outcome.status}"
        raise HTTPException(
            status_code=502,
            detail={"code": "SEARCH_FAILED", "message": message},
        )

    assert outcome.results is not None and outcome.enrichment is not None
    return {
        "search_id": outcome.search_id,
        "results": outcome.results.model_dump(mode="json"),
        "enrichment": outcome.enrichment.model_dump(mode="json"),
    }


@router.get("/api/settings")
def get_public_settings() -> dict:
    """Return safe-to-expose settings for UI defaults (credentials redacted)."""
    data = public_settings(get_settings())
    return {
        "app": {"name": data.get("app", {}).get("name", "GapScout")},
        "coverage": data.get("coverage", {}),
        "search": data.get("search", {}),
        "ingestion": data.get("ingestion", {}),
    }

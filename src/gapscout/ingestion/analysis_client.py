"""
Gap-analysis ingestion client (OpenAI-compatible chat completions).

The analysis service is a black box that proposes placement points for a new business.
This module:
- builds the system/user prompts from the search context,
- validates and clamps whatever JSON comes back into `GapAnalysisResult`,
- falls back to a deterministic mock when no key is configured or the call fails.

Demographic enrichment of the returned points happens in `gapscout.recommender.enrich`.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any

import httpx

from gapscout.config.settings import Settings
from gapscout.core.geo import meters_to_miles
from gapscout.core.http import post_json
from gapscout.domain.models import (
    AnalysisInput,
    DemographicFit,
    GapAnalysisResult,
    GeoPoint,
    NearestCompetitor,
    RecommendedPoint,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a business location analyst expert specializing in market gap analysis and optimal business placement. You analyze geographic, demographic, and competitive data to identify the best locations for new businesses.

Your analysis should consider:
1. Market gaps (areas with high demand, low supply)
2. Demographic alignment with target customers
3. Competition density and positioning
4. Economic indicators and market potential
5. Geographic accessibility and visibility

For each recommendation, assign a "Tortoise Level" (0-100):
- 0-30: High risk, high reward (Hare strategy - fast growth potential but uncertain)
- 31-70: Balanced risk/reward (Mixed strategy)
- 71-100: Low risk, steady growth (Tortoise strategy - stable, predictable)

Always provide specific reasoning for each recommendation and return results in valid JSON format.

The JSON response must follow this exact structure:
{
  "analysis": {"summary": "...", "keyFindings": ["..."], "marketOpportunities": ["..."]},
  "recommendations": [
    {
      "id": "rec_1",
      "lat": 30.2672,
      "lng": -97.7431,
      "tortoiseLevel": 75,
      "reasoning": "Detailed explanation for this location",
      "demographics": {"targetMatch": 85, "competitionLevel": 30, "marketPotential": 90},
      "proximityAnalysis": {
        "nearestCompetitor": {"distance": 1200, "name": "Competitor Name"},
        "supportingBusinesses": ["Business 1", "Business 2"]
      }
    }
  ],
  "metadata": {"analysisDate": "YYYY-MM-DD", "businessType": "restaurants", "totalRecommendations": 5, "confidence": 85}
}"""


def build_user_prompt(data: AnalysisInput) -> str:
    businesses = [
        {
            "name": b.name,
            "location": {"lat": b.location.lat, "lng": b.location.lng},
            "rating": b.rating,
            "types": b.categories,
            "vicinity": b.vicinity,
        }
        for b in data.businesses
    ]
    rating_filter = (
        f"Min {data.min_rating}/5" if data.use_rating_filter and data.min_rating is not None else "None"
    )
    return f"""Analyze the following business landscape for {data.business_type} in {data.city_name}:

EXISTING BUSINESSES ({len(data.businesses)} found):
{json.dumps(businesses, indent=2)}

SEARCH PARAMETERS:
- Business type: {data.business_type}
- Search radius: {meters_to_miles(data.search_radius_m):.1f} miles
- Search center: {data.center.lat}, {data.center.lng}
- Current business count: {len(data.businesses)}
- Rating filter: {rating_filter}

Please provide:
1. Market gap analysis for {data.business_type}
2. 3-8 specific location recommendations with precise coordinates
3. Detailed reasoning for each recommendation
4. Tortoise Level scoring (0-100) for each location
5. Competition and demographic analysis

Focus on areas that are underserved by current businesses, have good demographic
characteristics, are accessible and visible, and keep an appropriate distance from
existing competition.

Return results in the specified JSON format only."""


def _clamp_score(value: Any, default: int) -> int:
    try:
        number = float(default) if value is None or value == "" else float(value)
    except (TypeError, ValueError):
        number = float(default)
    return int(round(max(0.0, min(100.0, number))))


def _as_float(value: Any, default: float) -> float:
    try:
        return default if value is None or value == "" else float(value)
    except (TypeError, ValueError):
        return default


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_recommendation(raw: Any, index: int) -> RecommendedPoint:
    """Validate one raw recommendation, filling defaults and clamping scores."""
    rec = _as_dict(raw)
    fit = _as_dict(rec.get("demographics"))
    proximity = _as_dict(rec.get("proximityAnalysis"))
    competitor = _as_dict(proximity.get("nearestCompetitor"))
    supporting = proximity.get("supportingBusinesses")

    return RecommendedPoint(
        id=str(rec.get("id") or f"rec_{index + 1}"),
        location=GeoPoint(lat=float(rec["lat"]), lng=float(rec["lng"])),
        risk_score=_clamp_score(rec.get("tortoiseLevel"), 50),
        reasoning=str(rec.get("reasoning") or "No specific reasoning provided"),
        demographic_fit=DemographicFit(
            target_match=_clamp_score(fit.get("targetMatch"), 50),
            competition_level=_clamp_score(fit.get("competitionLevel"), 50),
            market_potential=_clamp_score(fit.get("marketPotential"), 50),
        ),
        nearest_competitor=NearestCompetitor(
            distance_m=max(0.0, _as_float(competitor.get("distance"), 1000.0)),
            name=str(competitor.get("name") or "Unknown"),
        ),
        supporting_business_names=[str(s) for s in supporting] if isinstance(supporting, list) else [],
    )


def parse_gap_analysis(payload: Any, *, business_type: str) -> GapAnalysisResult:
    """Turn the service's JSON into a `GapAnalysisResult`.

    Raises:
        ValueError: If `analysis`, `recommendations` or `metadata` is missing, or a
            recommendation has no usable coordinates.
    """
    data = _as_dict(payload)
    analysis = data.get("analysis")
    recommendations = data.get("recommendations")
    metadata = data.get("metadata")
    if not analysis or recommendations is None or not metadata or not isinstance(recommendations, list):
        raise ValueError("Invalid response format from gap-analysis service")

    analysis = _as_dict(analysis)
    try:
        points = [parse_recommendation(r, i) for i, r in enumerate(recommendations)]
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Recommendation is missing coordinates: {exc}") from exc

    findings = analysis.get("keyFindings")
    opportunities = analysis.get("marketOpportunities")
    return GapAnalysisResult(
        summary=str(analysis.get("summary") or "Analysis completed"),
        key_findings=[str(f) for f in findings] if isinstance(findings, list) else [],
        market_opportunities=[str(o) for o in opportunities] if isinstance(opportunities, list) else [],
        recommendations=points,
        analysis_date=date.today().isoformat(),
        business_type=business_type,
        total_recommendations=len(points),
        confidence=_clamp_score(_as_dict(metadata).get("confidence"), 75),
    )


def mock_gap_analysis(data: AnalysisInput) -> GapAnalysisResult:
    """Deterministic three-point analysis around the search center (for demos/tests)."""
    c = data.center
    kind = data.business_type
    points = [
        RecommendedPoint(
            id="rec_1",
            location=GeoPoint(lat=c.lat + 0.01, lng=c.lng + 0.015),
            risk_score=85,
            reasoning=(
                f"This location offers excellent demographic alignment for {kind} with high "
                "foot traffic and minimal direct competition."
            ),
            demographic_fit=DemographicFit(target_match=92, competition_level=25, market_potential=88),
            nearest_competitor=NearestCompetitor(distance_m=1200, name="Competitor A"),
            supporting_business_names=["Coffee Shop", "Retail Store", "Gym"],
        ),
        RecommendedPoint(
            id="rec_2",
            location=GeoPoint(lat=c.lat - 0.008, lng=c.lng + 0.02),
            risk_score=45,
            reasoning=(
                "High-growth area with emerging demographics. Some competition exists but "
                "market demand is growing rapidly."
            ),
            demographic_fit=DemographicFit(target_match=75, competition_level=60, market_potential=95),
            nearest_competitor=NearestCompetitor(distance_m=800, name="Competitor B"),
            supporting_business_names=["Shopping Center", "Restaurants"],
        ),
        RecommendedPoint(
            id="rec_3",
            location=GeoPoint(lat=c.lat + 0.012, lng=c.lng - 0.01),
            risk_score=25,
            reasoning=(
                "Underserved market with high potential but requires significant market "
                "education. High risk with a real first-mover advantage."
            ),
            demographic_fit=DemographicFit(target_match=85, competition_level=15, market_potential=90),
            nearest_competitor=NearestCompetitor(distance_m=2100, name="Distant Competitor"),
            supporting_business_names=["New Development", "Transit Hub"],
        ),
    ]
    return GapAnalysisResult(
        summary=(
            f"Analysis of {kind} opportunities in {data.city_name} reveals {len(points)} "
            "promising locations with varying risk profiles."
        ),
        key_findings=[
            f"{len(data.businesses)} existing {kind} businesses create competitive baseline",
            "Transit corridors offer high foot traffic potential",
        ],
        market_opportunities=[
            "Capture underserved premium market segment",
            "Leverage proximity to complementary businesses",
        ],
        recommendations=points,
        analysis_date=date.today().isoformat(),
        business_type=kind,
        total_recommendations=len(points),
        confidence=82,
        meta={"source": "mock"},
    )


class GapAnalysisClient:
    """Calls the analysis service and returns validated (not yet enriched) results."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def _use_mock(self) -> bool:
        cfg = self._settings.ingestion.analysis
        return cfg.use_mock or not cfg.api_key or cfg.api_key == "demo"

    def _request_payload(self, data: AnalysisInput) -> dict[str, Any]:
        cfg = self._settings.ingestion.analysis
        user_content: list[dict[str, Any]] = [{"type": "text", "text": build_user_prompt(data)}]
        if data.map_screenshot_b64:
            user_content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{data.map_screenshot_b64}"},
                }
            )
        return {
            "model": cfg.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_content},
            ],
            "max_tokens": cfg.max_tokens,
            "temperature": cfg.temperature,
            "response_format": {"type": "json_object"},
        }

    async def analyze(self, data: AnalysisInput) -> GapAnalysisResult:
        if self._use_mock():
            logger.info("Using mock gap analysis (no analysis API key configured)")
            return mock_gap_analysis(data)

        cfg = self._settings.ingestion.analysis
        try:
            response = await post_json(
                cfg.base_url,
                payload=self._request_payload(data),
                headers={"Authorization": f"Bearer {cfg.api_key}"},
                timeout_seconds=cfg.timeout_seconds,
            )
            content = response["choices"][0]["message"]["content"]
            result = parse_gap_analysis(json.loads(content), business_type=data.business_type)
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning("Gap analysis failed (%s); falling back to mock data", exc)
            return mock_gap_analysis(data)

        return result.model_copy(update={"meta": {"source": "live", "model": cfg.model}})

from __future__ import annotations

# This module attaches real census data to candidate locations.
# It is shared by two pipelines:
# - gap analysis: recommended points from the analysis service get `attached_demographics`
# - business search: each found business location gets a demographics entry
#
# Contract:
# - one lookup per point, all scheduled concurrently;
# - a failing lookup turns into a DemographicsFailure for that point only;
# - output order always matches input order (results are paired with their index,
#   never collected in completion order).

import asyncio
import logging
from typing import Protocol, Sequence

from gapscout.core.cancellation import CancellationToken
from gapscout.domain.models import (
    AnalysisInput,
    DemographicsFailure,
    DemographicsOutcome,
    GapAnalysisResult,
    GeoPoint,
    RecommendedPoint,
)

logger = logging.getLogger(__name__)


class DemographicsSource(Protocol):
    async def fetch_demographics(
        self, point: GeoPoint, cancel_token: CancellationToken | None = None
    ) -> DemographicsOutcome: ...


class GapAnalyzer(Protocol):
    async def analyze(self, data: AnalysisInput) -> GapAnalysisResult: ...


async def _fetch_one(
    client: DemographicsSource,
    index: int,
    point: GeoPoint,
    cancel_token: CancellationToken | None,
) -> tuple[int, DemographicsOutcome]:
    try:
        return index, await client.fetch_demographics(point, cancel_token)
    except Exception as exc:
        logger.warning("Demographics lookup for point #%s failed: %s", index, exc)
        return index, DemographicsFailure(
            message="Failed to fetch demographic data", detail=str(exc), kind="unexpected"
        )


async def fetch_demographics_many(
    client: DemographicsSource,
    points: Sequence[GeoPoint],
    cancel_token: CancellationToken | None = None,
) -> list[DemographicsOutcome]:
    """Look up every point concurrently; returns one outcome per point, in input order."""
    if not points:
        return []
    pairs = await asyncio.gather(
        *(_fetch_one(client, i, p, cancel_token) for i, p in enumerate(points))
    )
    outcomes: list[DemographicsOutcome | None] = [None] * len(points)
    for index, outcome in pairs:
        outcomes[index] = outcome
    return outcomes  # type: ignore[return-value]


async def enrich_recommendations(
    points: Sequence[RecommendedPoint],
    client: DemographicsSource,
    cancel_token: CancellationToken | None = None,
) -> list[RecommendedPoint]:
    """Return copies of `points` with `attached_demographics` always set."""
    outcomes = await fetch_demographics_many(client, [p.location for p in points], cancel_token)
    failed = sum(1 for o in outcomes if isinstance(o, DemographicsFailure))
    if failed:
        logger.info("Enriched %s recommendations (%s without census data)", len(points), failed)
    return [
        point.model_copy(update={"attached_demographics": outcome})
        for point, outcome in zip(points, outcomes)
    ]


async def analyze_gaps(
    analyzer: GapAnalyzer,
    client: DemographicsSource,
    data: AnalysisInput,
    cancel_token: CancellationToken | None = None,
) -> GapAnalysisResult:
    """Run the gap-analysis service, then enrich its recommendations with census data."""
    result = await analyzer.analyze(data)
    enriched = await enrich_recommendations(result.recommendations, client, cancel_token)
    return result.model_copy(
        update={"recommendations": enriched, "total_recommendations": len(enriched)}
    )

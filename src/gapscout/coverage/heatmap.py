"""
Heatmap data for a finished search.

Each business contributes one point weighted by the population of its census tract,
normalized to the largest population in the batch. Businesses whose lookup failed
contribute weight 0 so the map still shows where they are.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from gapscout.domain.models import (
    Business,
    DemographicsOutcome,
    DemographicsRecord,
    HeatmapPoint,
)


def build_heatmap(
    businesses: Sequence[Business],
    demographics: Mapping[str, DemographicsOutcome],
) -> list[HeatmapPoint]:
    populations: list[int] = []
    for b in businesses:
        outcome = demographics.get(b.place_id)
        populations.append(outcome.population if isinstance(outcome, DemographicsRecord) else 0)

    peak = max(populations, default=0)
    return [
        HeatmapPoint(location=b.location, weight=(pop / peak) if peak > 0 else 0.0)
        for b, pop in zip(businesses, populations)
    ]

"""
Pairwise coverage-overlap detection.

Every business is treated as a circle (location + coverage radius). The detector scans
all unordered pairs in input order, so results come back in discovery order. Upstream
searches cap results at 20, which keeps the O(n^2) scan trivial; a grid bucket or
R-tree would be needed once n grows past a few hundred.
"""

from __future__ import annotations

from math import pi
from typing import Iterable, Sequence

from gapscout.core.geo import (
    DEFAULT_COVERAGE_RADIUS_M,
    circle_intersection_area,
    circles_overlap,
    haversine_m,
)
from gapscout.domain.models import CoverageEntity, OverlapResult


def detect_overlaps(
    entities: Sequence[CoverageEntity],
    *,
    default_radius_m: float = DEFAULT_COVERAGE_RADIUS_M,
) -> list[OverlapResult]:
    """Return one `OverlapResult` per overlapping pair, in (i, j) discovery order.

    `overlap_percentage` is relative to the smaller circle's full area, so a circle
    sitting entirely inside a larger one reports 100.
    """
    overlaps: list[OverlapResult] = []
    points = [e.location.to_core() for e in entities]
    radii = [e.radius_m if e.radius_m is not None else default_radius_m for e in entities]

    for i in range(len(entities)):
        for j in range(i + 1, len(entities)):
            r1, r2 = radii[i], radii[j]
            if not circles_overlap(points[i], r1, points[j], r2):
                continue

            distance = haversine_m(points[i], points[j])
            area = circle_intersection_area(points[i], r1, points[j], r2)
            smaller_area = pi * min(r1, r2) ** 2

            overlaps.append(
                OverlapResult(
                    id_a=entities[i].id,
                    id_b=entities[j].id,
                    distance_m=distance,
                    overlap_area_sq_m=area,
                    overlap_percentage=area / smaller_area * 100,
                )
            )

    return overlaps


def overlaps_by_entity(results: Iterable[OverlapResult]) -> dict[str, list[OverlapResult]]:
    """Index overlap results by every entity id that participates in them."""
    out: dict[str, list[OverlapResult]] = {}
    for r in results:
        out.setdefault(r.id_a, []).append(r)
        out.setdefault(r.id_b, []).append(r)
    return out

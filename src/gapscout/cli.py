"""
GapScout CLI entrypoint.

This CLI is intended for quick local demos and debugging without a map frontend.
It delegates to the same components the API uses:
- `gapscout.coverage.overlap.detect_overlaps`
- `gapscout.ingestion.census_client.CensusClient`
- `gapscout.search.orchestrator.SearchOrchestrator`
- `gapscout.recommender.enrich.analyze_gaps`
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any

from gapscout.config.settings import get_settings
from gapscout.core.format import (
    format_area,
    format_currency,
    format_distance,
    format_number,
    format_percent,
)
from gapscout.core.geo import miles_to_meters
from gapscout.core.logging import configure_logging
from gapscout.coverage.overlap import detect_overlaps
from gapscout.domain.models import (
    AnalysisInput,
    CoverageEntity,
    DemographicsFailure,
    DemographicsOutcome,
    GeoPoint,
    SearchCriteria,
    is_demographics_failure,
)
from gapscout.ingestion.analysis_client import GapAnalysisClient
from gapscout.ingestion.census_client import CensusClient
from gapscout.ingestion.places_client import GooglePlacesClient
from gapscout.recommender.enrich import analyze_gaps
from gapscout.search.orchestrator import SearchOrchestrator


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def load_entities(path: str | Path) -> list[CoverageEntity]:
    """Read coverage entities from a JSON file.

    Accepts a list (or `{"entities": [...]}`) of either `CoverageEntity` objects or flat
    `{"id", "lat", "lng", "radius_m"}` objects.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("entities", [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of entities in {path}")

    entities: list[CoverageEntity] = []
    for i, raw in enumerate(data):
        if not isinstance(raw, dict):
            raise ValueError(f"Entity #{i} is not an object")
        if "location" not in raw and "lat" in raw:
            raw = {**raw, "location": {"lat": raw["lat"], "lng": raw["lng"]}}
        raw.setdefault("id", str(i))
        entities.append(CoverageEntity.model_validate(raw))
    return entities


def _describe_demographics(outcome: DemographicsOutcome) -> list[str]:
    if isinstance(outcome, DemographicsFailure):
        detail = f" ({outcome.detail})" if outcome.detail else ""
        return [f"demographics unavailable [{outcome.kind}]: {outcome.message}{detail}"]
    return [
        outcome.tract_name,
        f"population={format_number(outcome.population)}"
        f" median_income={format_currency(outcome.median_income_usd)}"
        f" median_home_value={format_currency(outcome.median_home_value_usd)}"
        f" college={format_percent(outcome.college_percent)}",
    ]


def _cmd_overlaps(args: argparse.Namespace) -> int:
    """Handle the `overlaps` subcommand."""
    settings = get_settings()
    entities = load_entities(args.input)
    default_radius_m = (
        miles_to_meters(float(args.radius_miles))
        if args.radius_miles is not None
        else settings.coverage.default_radius_m
    )
    overlaps = detect_overlaps(entities, default_radius_m=default_radius_m)

    if args.json:
        _print_json([o.model_dump(mode="json") for o in overlaps])
        return 0

    print(f"{len(entities)} entities, {len(overlaps)} overlapping pairs")
    for o in overlaps:
        print(
            f"{o.id_a} <-> {o.id_b}  distance={format_distance(o.distance_m)}"
            f"  overlap={format_area(o.overlap_area_sq_m)} ({o.overlap_percentage:.1f}%)"
        )
    return 0


def _cmd_demographics(args: argparse.Namespace) -> int:
    """Handle the `demographics` subcommand."""
    client = CensusClient(get_settings())
    outcome = asyncio.run(client.fetch_demographics(GeoPoint(lat=args.lat, lng=args.lng)))

    if args.json:
        _print_json(outcome.model_dump(mode="json"))
    else:
        for line in _describe_demographics(outcome):
            print(line)
    return 1 if is_demographics_failure(outcome) else 0


async def _run_search(criteria: SearchCriteria) -> Any:
    settings = get_settings()
    orchestrator = SearchOrchestrator(
        GooglePlacesClient(settings), CensusClient(settings), settings=settings.search
    )
    try:
        return await orchestrator.run_search(criteria)
    finally:
        await orchestrator.aclose()


def _cmd_search(args: argparse.Namespace) -> int:
    """Handle the `search` subcommand."""
    settings = get_settings()
    criteria = SearchCriteria(
        center=GeoPoint(lat=args.lat, lng=args.lng),
        business_type=args.type,
        search_radius_m=miles_to_meters(float(args.radius_miles)),
        coverage_radius_m=(
            miles_to_meters(float(args.coverage_miles))
            if args.coverage_miles is not None
            else settings.coverage.default_radius_m
        ),
        max_results=int(args.max_results) if args.max_results is not None else settings.search.max_results,
        min_rating=float(args.min_rating) if args.min_rating is not None else 1.0,
        use_rating_filter=args.min_rating is not None,
    )
    outcome = asyncio.run(_run_search(criteria))

    if outcome.status != "enriched":
        message = outcome.error.message if outcome.error else outcome.status
        print(f"Search failed ({outcome.status}): {message}")
        return 1

    results, enrichment = outcome.results, outcome.enrichment
    if args.json:
        _print_json(
            {
                "results": results.model_dump(mode="json"),
                "enrichment": enrichment.model_dump(mode="json"),
            }
        )
        return 0

    print(f"Found {len(results.businesses)} {criteria.business_type} businesses")
    for i, b in enumerate(results.businesses, start=1):
        rating = f"{b.rating:.1f}" if b.rating is not None else "-"
        print(f"{i:>2}. {b.name}  rating={rating}  {b.vicinity or ''}".rstrip())
        for line in _describe_demographics(enrichment.demographics[b.place_id]):
            print(f"    {line}")
    print(f"Overlapping pairs: {len(results.overlaps)}")
    for o in results.overlaps:
        print(f"  {o.id_a} <-> {o.id_b}  {o.overlap_percentage:.1f}%")
    return 0


def _cmd_analyze(args: argparse.Namespace) -> int:
    """Handle the `analyze` subcommand."""
    settings = get_settings()
    data = AnalysisInput(
        businesses=[],
        center=GeoPoint(lat=args.lat, lng=args.lng),
        search_radius_m=miles_to_meters(float(args.radius_miles)),
        business_type=args.type,
        city_name=args.city or "the selected area",
    )
    result = asyncio.run(analyze_gaps(GapAnalysisClient(settings), CensusClient(settings), data))

    if args.json:
        _print_json(result.model_dump(mode="json"))
        return 0

    print(result.summary)
    print(f"Confidence: {result.confidence}%  ({result.meta.get('source', 'unknown')})")
    for i, rec in enumerate(result.recommendations, start=1):
        print(
            f"{i:>2}. {rec.id} @ {rec.location.lat:.4f},{rec.location.lng:.4f}"
            f"  tortoise_level={rec.risk_score}"
        )
        print(f"    {rec.reasoning}")
        if rec.attached_demographics is not None:
            for line in _describe_demographics(rec.attached_demographics):
                print(f"    {line}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the GapScout CLI."""
    parser = argparse.ArgumentParser(prog="gapscout")
    sub = parser.add_subparsers(dest="command", required=True)

    ov = sub.add_parser("overlaps", help="Detect coverage overlaps for entities in a JSON file.")
    ov.add_argument("--input", required=True, help="JSON file with a list of entities")
    ov.add_argument(
        "--radius-miles", type=float, default=None, help="Coverage radius for entities without radius_m"
    )
    ov.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    ov.set_defaults(func=_cmd_overlaps)

    dem = sub.add_parser("demographics", help="Census tract demographics for one point.")
    dem.add_argument("--lat", required=True, type=float)
    dem.add_argument("--lng", required=True, type=float)
    dem.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    dem.set_defaults(func=_cmd_demographics)

    se = sub.add_parser("search", help="Search businesses, detect overlaps, and enrich with census data.")
    se.add_argument("--lat", required=True, type=float)
    se.add_argument("--lng", required=True, type=float)
    se.add_argument("--type", required=True, help="Business type (e.g. restaurant, coffee shop)")
    se.add_argument("--radius-miles", type=float, default=5.0)
    se.add_argument("--coverage-miles", type=float, default=None)
    se.add_argument("--max-results", type=int, default=None)
    se.add_argument("--min-rating", type=float, default=None, help="Enable the rating filter (0..5)")
    se.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    se.set_defaults(func=_cmd_search)

    an = sub.add_parser("analyze", help="Gap analysis with census-enriched recommendations.")
    an.add_argument("--lat", required=True, type=float)
    an.add_argument("--lng", required=True, type=float)
    an.add_argument("--type", required=True, help="Business type (e.g. restaurant)")
    an.add_argument("--city", type=str, default=None)
    an.add_argument("--radius-miles", type=float, default=5.0)
    an.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    an.set_defaults(func=_cmd_analyze)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m gapscout.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())

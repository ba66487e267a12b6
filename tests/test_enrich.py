import asyncio

from gapscout.coverage.heatmap import build_heatmap
from gapscout.domain.models import (
    AnalysisInput,
    Business,
    DemographicsFailure,
    DemographicsRecord,
    GeoPoint,
    RecommendedPoint,
)
from gapscout.ingestion.analysis_client import mock_gap_analysis
from gapscout.recommender.enrich import (
    analyze_gaps,
    enrich_recommendations,
    fetch_demographics_many,
)


def _record(population: int) -> DemographicsRecord:
    return DemographicsRecord(population=population, state_fips="48", county_fips="453")


class _StubCensus:
    """Returns population = round(lat * 1000); later points answer first."""

    def __init__(self, *, fail_all: bool = False):
        self.fail_all = fail_all
        self.calls: list[GeoPoint] = []

    async def fetch_demographics(self, point, cancel_token=None):
        self.calls.append(point)
        # Reverse completion order relative to the call order.
        await asyncio.sleep(0.001 * (10 - len(self.calls)))
        if self.fail_all:
            raise RuntimeError("census unreachable")
        return _record(round(point.lat * 1000))


def _points(n: int) -> list[RecommendedPoint]:
    return [
        RecommendedPoint(id=f"rec_{i + 1}", location=GeoPoint(lat=1 + i, lng=0))
        for i in range(n)
    ]


def test_fetch_many_preserves_input_order_despite_completion_order():
    client = _StubCensus()
    points = [GeoPoint(lat=1 + i, lng=0) for i in range(5)]

    outcomes = asyncio.run(fetch_demographics_many(client, points))

    assert [o.population for o in outcomes] == [1000, 2000, 3000, 4000, 5000]


def test_fetch_many_of_nothing_makes_no_calls():
    client = _StubCensus()
    assert asyncio.run(fetch_demographics_many(client, [])) == []
    assert client.calls == []


def test_enrich_keeps_length_order_and_attaches_records():
    points = _points(3)

    enriched = asyncio.run(enrich_recommendations(points, _StubCensus()))

    assert [p.id for p in enriched] == ["rec_1", "rec_2", "rec_3"]
    assert [p.attached_demographics.population for p in enriched] == [1000, 2000, 3000]
    # Inputs are not mutated.
    assert all(p.attached_demographics is None for p in points)


def test_enrich_attaches_failures_when_every_lookup_fails():
    enriched = asyncio.run(enrich_recommendations(_points(4), _StubCensus(fail_all=True)))

    assert len(enriched) == 4
    for point in enriched:
        assert isinstance(point.attached_demographics, DemographicsFailure)
        assert point.attached_demographics.message == "Failed to fetch demographic data"
        assert point.attached_demographics.detail == "census unreachable"


def test_enrich_passes_through_failure_values_from_client():
    class _FailingValueCensus:
        async def fetch_demographics(self, point, cancel_token=None):
            return DemographicsFailure(message="Failed to fetch demographics", kind="no_geography")

    (point,) = asyncio.run(enrich_recommendations(_points(1), _FailingValueCensus()))
    assert point.attached_demographics.kind == "no_geography"


def test_analyze_gaps_enriches_every_recommendation():
    class _StubAnalyzer:
        async def analyze(self, data):
            return mock_gap_analysis(data)

    data = AnalysisInput(
        businesses=[],
        center=GeoPoint(lat=30.0, lng=-97.0),
        search_radius_m=8046.7,
        business_type="coffee shop",
    )

    result = asyncio.run(analyze_gaps(_StubAnalyzer(), _StubCensus(), data))

    assert result.total_recommendations == 3
    assert [r.id for r in result.recommendations] == ["rec_1", "rec_2", "rec_3"]
    assert all(isinstance(r.attached_demographics, DemographicsRecord) for r in result.recommendations)
    assert result.recommendations[0].attached_demographics.population == round(30.01 * 1000)


def test_heatmap_weights_are_normalized_population():
    businesses = [
        Business(place_id=pid, name=pid, location=GeoPoint(lat=i, lng=0))
        for i, pid in enumerate(["a", "b", "c", "d"])
    ]
    demographics = {
        "a": _record(2000),
        "b": _record(500),
        "c": DemographicsFailure(message="Failed to fetch demographics", kind="network"),
    }

    heatmap = build_heatmap(businesses, demographics)

    assert [h.weight for h in heatmap] == [1.0, 0.25, 0.0, 0.0]
    assert [h.location for h in heatmap] == [b.location for b in businesses]


def test_heatmap_all_zero_population_gives_zero_weights():
    businesses = [Business(place_id="a", name="a", location=GeoPoint(lat=0, lng=0))]
    heatmap = build_heatmap(businesses, {"a": _record(0)})
    assert [h.weight for h in heatmap] == [0.0]

import asyncio
import json

import httpx
import pytest

from gapscout.config.settings import get_settings
from gapscout.core.cancellation import CancellationToken
from gapscout.core.format import format_currency
from gapscout.domain.models import DemographicsFailure, DemographicsRecord, GeoPoint
from gapscout.ingestion.census_client import (
    CensusClient,
    demographics_request_key,
    extract_tract_codes,
    parse_count,
)


POINT = GeoPoint(lat=30.2672, lng=-97.7431)

FCC_PAYLOAD = {
    "results": [
        {
            "block_fips": "484530011001000",
            "county_fips": "48453",
            "state_fips": "48",
        }
    ]
}

HEADER = [
    "NAME",
    "B19013_001E",
    "B01003_001E",
    "B15003_022E",
    "B15003_023E",
    "B15003_024E",
    "B15003_025E",
    "B25077_001E",
    "B08303_001E",
    "state",
    "county",
    "tract",
]


def _acs(population="4000", income="65000", home_value="350000", name="Census Tract 11, Travis County, Texas"):
    return [HEADER, [name, income, population, "800", "300", "50", "50", home_value, "2000", "48", "453", "001100"]]


def _install_fake_http(monkeypatch, *, geo, stats=None):
    """Route `get_text` by URL; values may be strings, JSON-able objects or exceptions."""
    calls: list[tuple[str, dict]] = []

    async def fake_get_text(url, *, params=None, headers=None, timeout_seconds=15):
        calls.append((url, dict(params or {})))
        body = geo if "fcc.gov" in url else stats
        if isinstance(body, Exception):
            raise body
        return body if isinstance(body, str) else json.dumps(body)

    monkeypatch.setattr("gapscout.ingestion.census_client.get_text", fake_get_text)
    return calls


def _fetch(point=POINT, token=None):
    client = CensusClient(get_settings())
    return asyncio.run(client.fetch_demographics(point, token))


def test_fetch_demographics_chains_fcc_and_acs(monkeypatch):
    calls = _install_fake_http(monkeypatch, geo=FCC_PAYLOAD, stats=_acs())

    outcome = _fetch()

    assert isinstance(outcome, DemographicsRecord)
    assert outcome.population == 4000
    assert outcome.median_income_usd == 65000
    assert outcome.median_home_value_usd == 350000
    assert outcome.has_median_home_value is True
    assert outcome.college_percent == pytest.approx(30.0)
    assert outcome.tract_name == "Census Tract 11, Travis County, Texas"
    assert (outcome.state_fips, outcome.county_fips) == ("48", "453")

    (geo_url, geo_params), (acs_url, acs_params) = calls
    assert geo_params == {"lat": POINT.lat, "lon": POINT.lng, "format": "json"}
    assert acs_url.endswith("/2022/acs/acs5")
    assert acs_params["for"] == "tract:001100"
    assert acs_params["in"] == "state:48 county:453"
    assert acs_params["get"].split(",")[0] == "NAME"


def test_zero_population_yields_zero_college_percent_and_na_income(monkeypatch):
    _install_fake_http(monkeypatch, geo=FCC_PAYLOAD, stats=_acs(population="0", income="-666666666"))

    outcome = _fetch()

    assert isinstance(outcome, DemographicsRecord)
    assert outcome.population == 0
    assert outcome.college_percent == 0
    assert outcome.has_median_income is False
    assert format_currency(outcome.median_income_usd) == "N/A"


def test_missing_tract_name_uses_placeholder(monkeypatch):
    _install_fake_http(monkeypatch, geo=FCC_PAYLOAD, stats=_acs(name=None))
    assert _fetch().tract_name == "Unknown Census Tract"


@pytest.mark.parametrize(
    ("geo", "stats", "kind"),
    [
        ("", None, "empty_body"),
        ("<html>oops</html>", None, "malformed"),
        ({"results": []}, None, "no_geography"),
        ({"results": [{"state_fips": "48"}]}, None, "missing_field"),
        (FCC_PAYLOAD, "   ", "empty_body"),
        (FCC_PAYLOAD, [HEADER], "no_statistics"),
        (FCC_PAYLOAD, {"error": "unknown variable"}, "no_statistics"),
        ({"results": {"state_fips": "48"}}, None, "unexpected"),
    ],
)
def test_upstream_problems_become_failures(monkeypatch, geo, stats, kind):
    _install_fake_http(monkeypatch, geo=geo, stats=stats)

    outcome = _fetch()

    assert isinstance(outcome, DemographicsFailure)
    assert outcome.kind == kind
    assert outcome.message == "Failed to fetch demographics"
    assert outcome.detail


def test_transport_and_status_errors_become_network_failures(monkeypatch):
    _install_fake_http(monkeypatch, geo=httpx.ConnectError("connection refused"))
    outcome = _fetch()
    assert isinstance(outcome, DemographicsFailure)
    assert outcome.kind == "network"

    request = httpx.Request("GET", "https://api.census.gov/data/2022/acs/acs5")
    response = httpx.Response(503, request=request)
    _install_fake_http(
        monkeypatch,
        geo=FCC_PAYLOAD,
        stats=httpx.HTTPStatusError("unavailable", request=request, response=response),
    )
    outcome = _fetch()
    assert isinstance(outcome, DemographicsFailure)
    assert outcome.kind == "network"
    assert "503" in (outcome.detail or "")


def test_cancelled_token_short_circuits_without_requests(monkeypatch):
    calls = _install_fake_http(monkeypatch, geo=FCC_PAYLOAD, stats=_acs())

    async def run():
        token = CancellationToken()
        token.cancel()
        client = CensusClient(get_settings())
        return await client.fetch_demographics(POINT, token)

    outcome = asyncio.run(run())

    assert isinstance(outcome, DemographicsFailure)
    assert outcome.is_cancelled
    assert outcome.message == "Request cancelled"
    assert calls == []


def test_cancelling_mid_flight_returns_cancelled_failure(monkeypatch):
    started = []

    async def hanging_get_text(url, **_kwargs):
        started.append(url)
        await asyncio.Event().wait()

    monkeypatch.setattr("gapscout.ingestion.census_client.get_text", hanging_get_text)

    async def run():
        token = CancellationToken()
        client = CensusClient(get_settings())
        task = asyncio.ensure_future(client.fetch_demographics(POINT, token))
        while not started:
            await asyncio.sleep(0)
        token.cancel()
        return await task

    outcome = asyncio.run(run())

    assert isinstance(outcome, DemographicsFailure)
    assert outcome.kind == "cancelled"


def test_extract_tract_codes_pads_and_slices_fips():
    payload = {"results": [{"state_fips": "6", "county_fips": "06037", "block_fips": "060372073011000"}]}
    assert extract_tract_codes(payload) == ("06", "037", "207301")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1234", 1234), ("12.9", 12), (None, 0), ("", 0), ("n/a", 0), ("-666666666", 0), (42, 42)],
)
def test_parse_count_reads_integer_prefix(raw, expected):
    assert parse_count(raw) == expected


def test_request_key_rounds_to_four_decimals():
    assert demographics_request_key(GeoPoint(lat=30.26721, lng=-97.74309)) == "30.2672,-97.7431"
    assert demographics_request_key(GeoPoint(lat=30.26721, lng=-97.74309), decimals=2) == "30.27,-97.74"

"""
Census demographics client (FCC Area API + Census ACS 5-year).

One coordinate resolves to tract-level aggregates through two chained lookups:
1. FCC area API: lat/lng -> state, county and block FIPS codes (the tract is the first
   11 digits of the block FIPS).
2. Census ACS: tract codes -> a header row plus one value row for a fixed variable list.

Nothing here raises for upstream problems. Every failure becomes a `DemographicsFailure`
with a `kind` naming what went wrong, and cancellation becomes a "cancelled" failure so
callers can drop it without showing an error.

Results are never cached; callers that want to avoid duplicate in-flight requests key
them with `demographics_request_key`.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from gapscout.config.settings import Settings
from gapscout.core.cancellation import CancellationToken, OperationCancelled
from gapscout.core.http import get_text
from gapscout.domain.models import (
    DemographicsFailure,
    DemographicsOutcome,
    DemographicsRecord,
    FailureKind,
    GeoPoint,
)

logger = logging.getLogger(__name__)

VAR_NAME = "NAME"
VAR_MEDIAN_INCOME = "B19013_001E"
VAR_POPULATION = "B01003_001E"
VAR_MEDIAN_HOME_VALUE = "B25077_001E"
DEGREE_VARS = ("B15003_022E", "B15003_023E", "B15003_024E", "B15003_025E")

UNKNOWN_TRACT_NAME = "Unknown Census Tract"

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")


class CensusLookupError(Exception):
    """Internal signal carrying the failure kind; never escapes this module."""

    def __init__(self, kind: FailureKind, message: str):
        super().__init__(message)
        self.kind = kind


def demographics_request_key(point: GeoPoint, decimals: int = 4) -> str:
    """Rounded "lat,lng" key used to dedupe in-flight lookups for the same spot."""
    return f"{point.lat:.{decimals}f},{point.lng:.{decimals}f}"


def parse_count(value: Any) -> int:
    """Parse an ACS cell the way the census tables are meant to be read.

    Missing, empty or unparsable cells become 0. ACS marks suppressed values with large
    negative sentinels (e.g. -666666666), which also become 0.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        number = int(value)
    else:
        match = _INT_PREFIX.match(str(value))
        if not match:
            return 0
        number = int(match.group(1))
    return number if number > 0 else 0


def zip_table(rows: Any) -> dict[str, Any]:
    """Map the header row onto the first data row by position."""
    if not isinstance(rows, list) or len(rows) < 2:
        raise CensusLookupError("no_statistics", "No demographic data available for this location")
    headers, values = rows[0], rows[1]
    if not isinstance(headers, list) or not isinstance(values, list):
        raise CensusLookupError("malformed", "Unexpected table shape from Census API")
    return {str(h): (values[i] if i < len(values) else None) for i, h in enumerate(headers)}


def build_record(cells: dict[str, Any], *, state_fips: str, county_fips: str) -> DemographicsRecord:
    """Derive a `DemographicsRecord` from zipped ACS cells."""
    population = parse_count(cells.get(VAR_POPULATION))
    college_grads = sum(parse_count(cells.get(v)) for v in DEGREE_VARS)
    college_percent = (college_grads / population) * 100 if population > 0 else 0.0

    return DemographicsRecord(
        population=population,
        median_income_usd=parse_count(cells.get(VAR_MEDIAN_INCOME)),
        median_home_value_usd=parse_count(cells.get(VAR_MEDIAN_HOME_VALUE)),
        college_percent=college_percent,
        tract_name=str(cells.get(VAR_NAME) or UNKNOWN_TRACT_NAME),
        state_fips=state_fips,
        county_fips=county_fips,
    )


def _decode(text: str, source: str) -> Any:
    if not text.strip():
        raise CensusLookupError("empty_body", f"Empty response from {source}")
    try:
        return json.loads(text)
    except ValueError as exc:
        raise CensusLookupError("malformed", f"Invalid JSON response from {source}") from exc


def extract_tract_codes(payload: Any) -> tuple[str, str, str]:
    """Return (state, county, tract6) codes from an FCC area API payload."""
    results = payload.get("results") if isinstance(payload, dict) else None
    if not results:
        raise CensusLookupError("no_geography", "Location not found in census data")

    first = results[0] if isinstance(results[0], dict) else {}
    state_fips = first.get("state_fips") or first.get("state_code")
    county_full = first.get("county_fips") or first.get("county_code")
    block_fips = first.get("block_fips") or first.get("block_code")

    # County FIPS arrives as SSCCC; only the county part is used for the ACS query.
    county_fips = str(county_full)[-3:] if county_full else None
    if not state_fips or not county_fips or not block_fips:
        raise CensusLookupError(
            "missing_field",
            f"Missing FIPS data: state={state_fips}, county={county_fips}, block={block_fips}",
        )

    tract = str(block_fips)[:11]  # SS CCC TTTTTT
    return str(state_fips).zfill(2), county_fips.zfill(3), tract[5:]


class CensusClient:
    """Resolves a coordinate to tract-level demographics."""

    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def _census(self):
        return self._settings.ingestion.census

    def _acs_url(self) -> str:
        return f"{self._census.base_url.rstrip('/')}/{self._census.year}/{self._census.dataset}"

    async def _fetch_geography(self, point: GeoPoint) -> str:
        return await get_text(
            self._census.geo_url,
            params={"lat": point.lat, "lon": point.lng, "format": "json"},
            timeout_seconds=self._settings.app.http_timeout_seconds,
        )

    async def _fetch_statistics(self, state: str, county: str, tract6: str) -> str:
        params: dict[str, Any] = {
            "get": ",".join(self._census.variables),
            "for": f"tract:{tract6}",
            "in": f"state:{state} county:{county}",
        }
        if self._census.api_key:
            params["key"] = self._census.api_key
        return await get_text(
            self._acs_url(),
            params=params,
            timeout_seconds=self._settings.app.http_timeout_seconds,
        )

    async def fetch_demographics(
        self, point: GeoPoint, cancel_token: CancellationToken | None = None
    ) -> DemographicsOutcome:
        """Return tract demographics for `point`, or a failure describing why not."""
        token = cancel_token or CancellationToken()
        logger.debug("Fetching demographics for lat=%.4f lng=%.4f", point.lat, point.lng)
        try:
            geo_text = await token.run(self._fetch_geography(point))
            state, county, tract6 = extract_tract_codes(_decode(geo_text, "FCC API"))

            stats_text = await token.run(self._fetch_statistics(state, county, tract6))
            cells = zip_table(_decode(stats_text, "Census API"))
            return build_record(cells, state_fips=state, county_fips=county)
        except OperationCancelled:
            return DemographicsFailure(message="Request cancelled", kind="cancelled")
        except CensusLookupError as exc:
            logger.warning("Demographics lookup failed (%s): %s", exc.kind, exc)
            return DemographicsFailure(
                message="Failed to fetch demographics", detail=str(exc), kind=exc.kind
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("Demographics upstream returned status=%s", status)
            return DemographicsFailure(
                message="Failed to fetch demographics",
                detail=f"HTTP {status} from {exc.request.url.host}",
                kind="network",
            )
        except httpx.HTTPError as exc:
            logger.warning("Demographics transport error: %s", exc)
            return DemographicsFailure(
                message="Failed to fetch demographics", detail=str(exc), kind="network"
            )
        except Exception as exc:
            logger.warning("Unexpected demographics failure: %s", exc)
            return DemographicsFailure(
                message="Failed to fetch demographics", detail=str(exc), kind="unexpected"
            )

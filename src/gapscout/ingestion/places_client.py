"""
Places ingestion client (Google Places Nearby Search).

This module is responsible only for:
- fetching up to 20 businesses of one type around a center point,
- parsing them into `Business` records,
- reporting quota exhaustion as its own error type so the orchestrator can cool down.

Overlap detection and enrichment happen in `gapscout.search.orchestrator`.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from gapscout.config.settings import Settings
from gapscout.core.cancellation import CancellationToken
from gapscout.domain.models import Business, GeoPoint

logger = logging.getLogger(__name__)

MAX_PLACES_RESULTS = 20


class PlacesError(RuntimeError):
    """The places service rejected or failed a search."""


class QuotaExceededError(PlacesError):
    """The places service reported that the request quota is exhausted."""


class PlacesProvider(Protocol):
    async def open(self) -> None: ...

    def is_ready(self) -> bool: ...

    async def search_nearby(
        self,
        center: GeoPoint,
        radius_m: float,
        place_type: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[Business]: ...

    async def aclose(self) -> None: ...


def normalize_place_type(business_type: str) -> str:
    """Map a user-typed type onto a Places type id, e.g. `Coffee shop` -> `coffee_shop`.

    Only the first space is replaced, matching the category ids the UI sends.
    """
    return business_type.lower().replace(" ", "_", 1)


def parse_place(raw: dict[str, Any]) -> Business | None:
    """Parse one Nearby Search result; returns None without a place id or usable location."""
    try:
        loc = raw["geometry"]["location"]
        location = GeoPoint(lat=float(loc["lat"]), lng=float(loc["lng"]))
    except (KeyError, TypeError, ValueError):
        return None

    place_id = raw.get("place_id")
    if not place_id:
        return None

    rating = raw.get("rating")
    return Business(
        place_id=str(place_id),
        name=str(raw.get("name") or "Unknown"),
        location=location,
        vicinity=raw.get("vicinity"),
        rating=float(rating) if rating is not None else None,
        price_level=raw.get("price_level"),
        categories=[str(t) for t in raw.get("types") or []],
    )


class GooglePlacesClient:
    """Google Places Nearby Search over a shared `httpx.AsyncClient`."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._client: httpx.AsyncClient | None = None

    def _require_api_key(self) -> str:
        api_key = self._settings.ingestion.places.api_key
        if not api_key:
            raise PlacesError("Places API key is not configured. Set GOOGLE_MAPS_API_KEY.")
        return api_key

    async def open(self) -> None:
        self._require_api_key()
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.app.http_timeout_seconds)

    def is_ready(self) -> bool:
        return self._client is not None and not self._client.is_closed

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, params: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            raise PlacesError("Places client is not open")
        resp = await self._client.get(self._settings.ingestion.places.base_url, params=params)
        if resp.status_code == 429:
            raise QuotaExceededError("Places API rate limit reached (HTTP 429)")
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict):
            raise PlacesError("Unexpected Places API response shape")
        return payload

    async def search_nearby(
        self,
        center: GeoPoint,
        radius_m: float,
        place_type: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[Business]:
        """Return up to 20 businesses of `place_type` within `radius_m` of `center`.

        Raises:
            QuotaExceededError: On OVER_QUERY_LIMIT / HTTP 429.
            PlacesError: On any other non-OK status.
            httpx.HTTPError: On transport errors.
        """
        params = {
            "location": f"{center.lat},{center.lng}",
            "radius": round(radius_m),
            "type": normalize_place_type(place_type),
            "key": self._require_api_key(),
        }
        request = self._get(params)
        payload = await (cancel_token.run(request) if cancel_token else request)

        status = payload.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status == "OVER_QUERY_LIMIT":
            raise QuotaExceededError("Too many requests. Please try again in a moment.")
        if status == "REQUEST_DENIED":
            raise PlacesError("API access denied. Please check your API key permissions.")
        if status != "OK":
            raise PlacesError(f"Places search failed with status={status}")

        businesses: list[Business] = []
        for raw in payload.get("results") or []:
            business = parse_place(raw) if isinstance(raw, dict) else None
            if business is not None:
                businesses.append(business)
        logger.info(
            "Places search type=%s returned %s businesses", params["type"], len(businesses)
        )
        return businesses[:MAX_PLACES_RESULTS]

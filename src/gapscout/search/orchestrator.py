from __future__ import annotations

# This module is the "orchestrator" for user-triggered business searches.
# It wires together:
# - the places provider (find up to 20 businesses of one type)
# - overlap detection (pure geometry, synchronous)
# - demographic enrichment (one concurrent census lookup per business)
# - heatmap data for the map layer
#
# Lifecycle rules:
# - Searches are spaced by a minimum interval; early requests wait, they are not dropped.
# - A new search cancels the previous one (rate-limit wait, places fetch, enrichment).
#   Every completion checks its generation before touching state or calling callbacks,
#   so consumers only ever see the newest search.
# - Quota exhaustion puts the orchestrator in a cooldown during which searches are
#   suppressed (not queued); a timer brings it back to IDLE.

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Literal, Sequence

from gapscout.config.settings import SearchSettings
from gapscout.core.cancellation import CancellationToken, OperationCancelled
from gapscout.core.loader import AsyncSingleLoader, poll_until_ready
from gapscout.core.rate_limit import MinIntervalLimiter
from gapscout.coverage.heatmap import build_heatmap
from gapscout.coverage.overlap import detect_overlaps
from gapscout.domain.models import (
    Business,
    CoverageEntity,
    DemographicsFailure,
    DemographicsOutcome,
    EnrichmentResults,
    GeoPoint,
    SearchCriteria,
    SearchResults,
)
from gapscout.ingestion.census_client import demographics_request_key
from gapscout.ingestion.places_client import PlacesProvider, QuotaExceededError
from gapscout.recommender.enrich import DemographicsSource, fetch_demographics_many

logger = logging.getLogger(__name__)


class SearchState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    SUCCEEDED = "succeeded"
    ENRICHMENT_COMPLETE = "enrichment_complete"
    FAILED = "failed"
    CANCELLED = "cancelled"
    QUOTA_COOLDOWN = "quota_cooldown"


class SearchError(Exception):
    """The single error a search reports to its consumer."""

    def __init__(self, kind: Literal["failed", "quota"], message: str, *, search_id: int):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.search_id = search_id


OutcomeStatus = Literal["enriched", "failed", "quota", "cancelled", "suppressed"]


@dataclass(frozen=True)
class SearchOutcome:
    """How one submitted search ended (returned to whoever awaited it)."""

    search_id: int
    status: OutcomeStatus
    results: SearchResults | None = None
    enrichment: EnrichmentResults | None = None
    error: SearchError | None = None


def filter_by_rating(businesses: Sequence[Business], criteria: SearchCriteria) -> list[Business]:
    """Keep unrated businesses and those at or above `min_rating` (when filtering is on)."""
    if not criteria.use_rating_filter:
        return list(businesses)
    return [b for b in businesses if b.rating is None or b.rating >= criteria.min_rating]


class SearchOrchestrator:
    """Runs searches one at a time on behalf of a single UI consumer."""

    def __init__(
        self,
        places: PlacesProvider,
        demographics: DemographicsSource,
        *,
        settings: SearchSettings | None = None,
        on_state_change: Callable[[SearchState], None] | None = None,
        on_results_ready: Callable[[SearchResults], None] | None = None,
        on_enrichment_ready: Callable[[EnrichmentResults], None] | None = None,
        on_error: Callable[[SearchError], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._places = places
        self._demographics = demographics
        self._settings = settings or SearchSettings()
        self._on_state_change = on_state_change
        self._on_results_ready = on_results_ready
        self._on_enrichment_ready = on_enrichment_ready
        self._on_error = on_error
        self._sleep = sleep

        self._limiter = MinIntervalLimiter(
            self._settings.min_interval_seconds, clock=clock, sleep=sleep
        )
        self._places_loader: AsyncSingleLoader[PlacesProvider] = AsyncSingleLoader(
            self._open_places, name="places provider"
        )

        self._state = SearchState.IDLE
        self._generation = 0
        self._token: CancellationToken | None = None
        self._task: asyncio.Task[SearchOutcome] | None = None
        self._cooldown_task: asyncio.Task[None] | None = None

        self._inspect_key: str | None = None
        self._inspect_token: CancellationToken | None = None
        self._inspect_task: asyncio.Task[DemographicsOutcome | None] | None = None

    @property
    def state(self) -> SearchState:
        return self._state

    @property
    def current_search_id(self) -> int:
        return self._generation

    def _set_state(self, state: SearchState) -> None:
        if state is self._state:
            return
        logger.debug("Search state %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)

    def _is_current(self, search_id: int, token: CancellationToken) -> bool:
        return search_id == self._generation and token is self._token and not token.cancelled

    async def _open_places(self) -> PlacesProvider:
        await self._places.open()
        await poll_until_ready(
            self._places.is_ready,
            interval_seconds=self._settings.ready_poll_interval_seconds,
            max_attempts=self._settings.ready_max_attempts,
            sleep=self._sleep,
            what="places provider",
        )
        return self._places

    def submit(self, criteria: SearchCriteria) -> asyncio.Task[SearchOutcome] | None:
        """Start a search, superseding any in-flight one.

        Returns None (and does nothing) while a quota cooldown is active.
        """
        if self._state is SearchState.QUOTA_COOLDOWN:
            logger.info("Search suppressed: quota cooldown is active")
            return None

        if self._token is not None:
            self._token.cancel()

        self._generation += 1
        search_id = self._generation
        token = CancellationToken()
        self._token = token
        self._set_state(SearchState.SEARCHING)
        self._task = asyncio.get_running_loop().create_task(self._run(search_id, criteria, token))
        return self._task

    async def run_search(self, criteria: SearchCriteria) -> SearchOutcome:
        """Submit a search and wait for it to finish (or be superseded)."""
        task = self.submit(criteria)
        if task is None:
            return SearchOutcome(search_id=self._generation, status="suppressed")
        return await task

    def cancel(self) -> None:
        """Cancel the in-flight search without starting another. Safe to call repeatedly."""
        if self._token is None or self._token.cancelled:
            return
        self._token.cancel()
        if self._state in (SearchState.SEARCHING, SearchState.SUCCEEDED):
            self._set_state(SearchState.CANCELLED)

    async def _run(self, search_id: int, criteria: SearchCriteria, token: CancellationToken) -> SearchOutcome:
        results: SearchResults | None = None
        try:
            waited = await self._limiter.acquire(token)
            if waited > 0:
                logger.debug("Search #%s deferred %.2fs by rate limit", search_id, waited)

            places = await token.run(self._places_loader.get())
            logger.info(
                "Search #%s: type=%s radius_m=%.0f", search_id, criteria.business_type, criteria.search_radius_m
            )
            found = await token.run(
                places.search_nearby(criteria.center, criteria.search_radius_m, criteria.business_type, token)
            )

            businesses = filter_by_rating(found[: criteria.max_results], criteria)
            entities = [
                CoverageEntity(id=b.place_id, location=b.location, radius_m=criteria.coverage_radius_m)
                for b in businesses
            ]
            results = SearchResults(
                search_id=search_id,
                criteria=criteria,
                businesses=businesses,
                overlaps=detect_overlaps(entities),
            )
            if not self._is_current(search_id, token):
                return SearchOutcome(search_id=search_id, status="cancelled", results=results)
            self._set_state(SearchState.SUCCEEDED)
            if self._on_results_ready:
                self._on_results_ready(results)

            outcomes = await fetch_demographics_many(
                self._demographics, [b.location for b in businesses], token
            )
            if not self._is_current(search_id, token):
                return SearchOutcome(search_id=search_id, status="cancelled", results=results)

            demographics = {b.place_id: o for b, o in zip(businesses, outcomes)}
            enrichment = EnrichmentResults(
                search_id=search_id,
                demographics=demographics,
                heatmap=build_heatmap(businesses, demographics),
            )
            self._set_state(SearchState.ENRICHMENT_COMPLETE)
            if self._on_enrichment_ready:
                self._on_enrichment_ready(enrichment)
            return SearchOutcome(
                search_id=search_id, status="enriched", results=results, enrichment=enrichment
            )

        except OperationCancelled:
            logger.debug("Search #%s cancelled", search_id)
            return SearchOutcome(search_id=search_id, status="cancelled", results=results)

        except QuotaExceededError as exc:
            if not self._is_current(search_id, token):
                return SearchOutcome(search_id=search_id, status="cancelled")
            logger.warning(
                "Search #%s hit the places quota; cooling down for %.0fs",
                search_id,
                self._settings.quota_cooldown_seconds,
            )
            error = SearchError("quota", str(exc), search_id=search_id)
            self._enter_cooldown()
            if self._on_error:
                self._on_error(error)
            return SearchOutcome(search_id=search_id, status="quota", error=error)

        except Exception as exc:
            if not self._is_current(search_id, token):
                return SearchOutcome(search_id=search_id, status="cancelled", results=results)
            logger.warning("Search #%s failed: %s", search_id, exc)
            error = SearchError("failed", str(exc) or exc.__class__.__name__, search_id=search_id)
            self._set_state(SearchState.FAILED)
            if self._on_error:
                self._on_error(error)
            return SearchOutcome(search_id=search_id, status="failed", results=results, error=error)

    def _enter_cooldown(self) -> None:
        self._set_state(SearchState.QUOTA_COOLDOWN)
        if self._cooldown_task is not None and not self._cooldown_task.done():
            self._cooldown_task.cancel()
        self._cooldown_task = asyncio.get_running_loop().create_task(self._end_cooldown())

    async def _end_cooldown(self) -> None:
        await self._sleep(self._settings.quota_cooldown_seconds)
        if self._state is SearchState.QUOTA_COOLDOWN:
            logger.info("Quota cooldown elapsed; searches resumed")
            self._set_state(SearchState.IDLE)

    def inspect_point(
        self,
        point: GeoPoint,
        on_result: Callable[[DemographicsOutcome], None] | None = None,
    ) -> asyncio.Task[DemographicsOutcome | None] | None:
        """Look up demographics for a clicked map point.

        A click on the same rounded coordinate while its lookup is still running is
        ignored (returns None). A click elsewhere cancels and replaces the running lookup.
        """
        key = demographics_request_key(point, self._settings.request_key_decimals)
        if key == self._inspect_key and self._inspect_task is not None and not self._inspect_task.done():
            logger.debug("Demographics lookup for %s already in flight", key)
            return None

        if self._inspect_token is not None:
            self._inspect_token.cancel()

        token = CancellationToken()
        self._inspect_key = key
        self._inspect_token = token
        self._inspect_task = asyncio.get_running_loop().create_task(
            self._inspect(point, token, on_result)
        )
        return self._inspect_task

    async def _inspect(
        self,
        point: GeoPoint,
        token: CancellationToken,
        on_result: Callable[[DemographicsOutcome], None] | None,
    ) -> DemographicsOutcome | None:
        (outcome,) = await fetch_demographics_many(self._demographics, [point], token)
        if token.cancelled or token is not self._inspect_token:
            return None
        self._inspect_key = None
        self._inspect_token = None
        if isinstance(outcome, DemographicsFailure) and outcome.is_cancelled:
            return None
        if on_result:
            on_result(outcome)
        return outcome

    async def aclose(self) -> None:
        """Cancel everything in flight and release the places provider."""
        self.cancel()
        if self._inspect_token is not None:
            self._inspect_token.cancel()
        if self._cooldown_task is not None and not self._cooldown_task.done():
            self._cooldown_task.cancel()
        pending = [
            t for t in (self._task, self._inspect_task, self._cooldown_task) if t is not None
        ]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._places.aclose()
        self._places_loader.reset()

"""
Refresh coordination — keeps the location panel consistent under rapid input.

Every location or filter change funnels into RefreshCoordinator.trigger():

  1. Apply the parameter change and advance the request epoch; any
     routed lookup still in flight for the old area is dropped.
  2. Publish a LOADING snapshot for the new epoch.
  3. Concurrently fetch listings, amenities and context (weather etc.).
  4. If the epoch is still current, compute insights, the nearest
     institution and commute summaries, then publish one READY (or
     FAILED) snapshot. If a newer trigger has happened meanwhile, drop
     everything and return None.

Snapshots are immutable and replaced wholesale, so a subscriber never
sees amenities from one request mixed with insights from another.

Pipeline stages (for tracing):
  listings, amenities, context:<name>  run concurrently
  scoring                              pure, runs only for the current epoch
"""

import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import weather
from amenities import AllEndpointsFailed, AmenityAggregator, Aborted, Place
from categories import CategoryFilters
from commute import CommuteEstimator, ListingCommute, RouteEstimate, RouteSession, commute_summaries
from config import DEFAULT_CENTER, DEFAULT_MAX_PRICE, DEFAULT_RADIUS_METERS
from epoch import RequestEpoch
from geo import LatLon, annotate_distances
from geocoding import CURRENT_LOCATION_LABEL, SearchSuggestionProvider, Suggestion
from insights import LocationInsights, compute_insights
from institutions import NearestInstitution, rank_institutions
from listings import Listing, ListingsClient
from ss_trace import TraceContext, clear_trace, set_trace

logger = logging.getLogger(__name__)

ContextFetcher = Callable[[LatLon], Awaitable[Any]]

_GENERIC_FAILURE_MESSAGE = "Something went wrong loading this area. Please try again."


class RefreshState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class TriggerReason(enum.Enum):
    GEOLOCATION_FIX = "geolocation_fix"
    SEARCH_COMMIT = "search_commit"
    SUGGESTION_SELECTED = "suggestion_selected"
    CURRENT_LOCATION = "current_location"
    CATEGORY_TOGGLE = "category_toggle"
    RADIUS_CHANGE = "radius_change"
    BUDGET_CHANGE = "budget_change"


@dataclass(frozen=True)
class RefreshParams:
    center: LatLon = DEFAULT_CENTER
    radius_meters: int = DEFAULT_RADIUS_METERS
    max_price: int = DEFAULT_MAX_PRICE
    location_name: str = ""


@dataclass(frozen=True)
class LocationSnapshot:
    """Everything the location panel shows, for exactly one epoch."""
    epoch: int
    state: RefreshState
    params: RefreshParams
    reason: Optional[TriggerReason] = None
    places: Tuple[Place, ...] = ()
    listings: Tuple[Listing, ...] = ()
    insights: Optional[LocationInsights] = None
    nearest_institution: Optional[NearestInstitution] = None
    institutions: Tuple[NearestInstitution, ...] = ()
    commute: Tuple[ListingCommute, ...] = ()
    context: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    error_message: Optional[str] = None


def distance_annotated(fetcher: ContextFetcher) -> ContextFetcher:
    """Wrap a fetcher returning areas ([lng, lat] coordinates) so each
    area gets a ``distance`` in km from the search centre."""
    async def _fetch(point: LatLon):
        areas = await fetcher(point)
        if areas is None:
            return None
        return annotate_distances(areas, point)
    return _fetch


class RefreshCoordinator:
    """Owns the current LocationSnapshot and the request epoch."""

    def __init__(
        self,
        aggregator: Optional[AmenityAggregator] = None,
        listings_client: Optional[ListingsClient] = None,
        categories: Optional[CategoryFilters] = None,
        context_fetchers: Optional[Dict[str, ContextFetcher]] = None,
        params: Optional[RefreshParams] = None,
        geocoder: Optional[SearchSuggestionProvider] = None,
        commute_estimator: Optional[CommuteEstimator] = None,
    ):
        self.aggregator = aggregator or AmenityAggregator()
        self.listings_client = listings_client or ListingsClient()
        self.categories = categories if categories is not None else CategoryFilters()
        if context_fetchers is None:
            context_fetchers = {
                "weather": weather.fetch_weather,
                "trending": distance_annotated(self.listings_client.trending_areas),
            }
        self.context_fetchers = dict(context_fetchers)
        self.geocoder = geocoder or SearchSuggestionProvider()
        self.routes = RouteSession(commute_estimator or CommuteEstimator())

        self._epoch = RequestEpoch()
        self._params = params or RefreshParams()
        self._snapshot = LocationSnapshot(
            epoch=self._epoch.current, state=RefreshState.IDLE, params=self._params,
        )
        self._subscribers: List[Callable[[LocationSnapshot], None]] = []

    # ------------------------------------------------------------------
    # Read-only surface
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> LocationSnapshot:
        return self._snapshot

    @property
    def state(self) -> RefreshState:
        return self._snapshot.state

    @property
    def params(self) -> RefreshParams:
        return self._params

    def subscribe(self, callback: Callable[[LocationSnapshot], None]) -> Callable[[], None]:
        """Call *callback* with every published snapshot. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return _unsubscribe

    def _publish(self, snapshot: LocationSnapshot) -> None:
        self._snapshot = snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber failed")

    # ------------------------------------------------------------------
    # The single entry point
    # ------------------------------------------------------------------

    async def trigger(self, reason: TriggerReason, **param_changes) -> Optional[LocationSnapshot]:
        """Refresh for *reason*, applying *param_changes* to the search params.

        Returns the published READY/FAILED snapshot, or None when a newer
        trigger superseded this one.
        """
        if param_changes:
            self._params = replace(self._params, **param_changes)
        params = self._params
        categories = self.categories.enabled()
        token = self._epoch.advance()
        # A route for the previous area must not outlive it.
        self.routes.clear()

        self._publish(LocationSnapshot(
            epoch=token.value, state=RefreshState.LOADING, params=params, reason=reason,
        ))

        trace = TraceContext(trace_id=uuid.uuid4().hex[:12])
        set_trace(trace)
        logger.info(
            "Refresh %d (%s) at %.4f,%.4f radius=%dm categories=%d",
            token.value, reason.value, params.center[0], params.center[1],
            params.radius_meters, len(categories),
        )
        try:
            context_names = list(self.context_fetchers)
            results = await asyncio.gather(
                self._run_stage(trace, "listings", self.listings_client.fetch(
                    params.center, params.radius_meters, params.max_price,
                )),
                self._run_stage(trace, "amenities", self.aggregator.fetch_amenities(
                    params.center, params.radius_meters, categories, epoch_token=token,
                )),
                *(
                    self._fetch_context(trace, name, self.context_fetchers[name], params.center)
                    for name in context_names
                ),
                return_exceptions=True,
            )
            listings_result, amenities_result = results[0], results[1]
            context = dict(zip(context_names, results[2:]))

            if token.is_stale or isinstance(amenities_result, Aborted):
                logger.debug("Discarding superseded refresh %d", token.value)
                return None

            if isinstance(listings_result, BaseException):
                logger.warning("Listings stage failed: %s", listings_result)
                listings_result = ()

            base = LocationSnapshot(
                epoch=token.value,
                state=RefreshState.FAILED,
                params=params,
                reason=reason,
                listings=tuple(listings_result),
                context=MappingProxyType(context),
            )

            if isinstance(amenities_result, AllEndpointsFailed):
                snapshot = replace(base, error_message=amenities_result.user_message())
            elif isinstance(amenities_result, BaseException):
                logger.error(
                    "Unexpected amenities failure in refresh %d",
                    token.value, exc_info=amenities_result,
                )
                snapshot = replace(base, error_message=_GENERIC_FAILURE_MESSAGE)
            else:
                snapshot = self._score(trace, base, amenities_result)

            self._publish(snapshot)
            return snapshot
        finally:
            trace.log_summary()
            clear_trace()

    def _score(
        self,
        trace: TraceContext,
        base: LocationSnapshot,
        places: Tuple[Place, ...],
    ) -> LocationSnapshot:
        start = time.time()
        trace.start_stage("scoring")
        try:
            insights = compute_insights(places)
            ranked = rank_institutions(places, base.params.center)
            nearest = ranked[0] if ranked else None
            commute = commute_summaries(base.listings, nearest)
        finally:
            trace.end_stage()
        trace.record_stage("scoring", start, time.time())
        return replace(
            base,
            state=RefreshState.READY,
            places=places,
            insights=insights,
            nearest_institution=nearest,
            institutions=tuple(ranked),
            commute=commute,
        )

    @staticmethod
    async def _run_stage(trace: TraceContext, name: str, awaitable: Awaitable[Any]) -> Any:
        # Runs inside its own gather() task, so the stage ContextVar is private.
        trace.start_stage(name)
        start = time.time()
        try:
            result = await awaitable
        except Aborted as e:
            trace.record_stage(name, start, time.time(), skipped=True, error_message=str(e))
            raise
        except Exception as e:
            trace.record_stage(
                name, start, time.time(),
                error_class=type(e).__name__, error_message=str(e),
            )
            raise
        finally:
            trace.end_stage()
        trace.record_stage(name, start, time.time())
        return result

    async def _fetch_context(
        self,
        trace: TraceContext,
        name: str,
        fetcher: ContextFetcher,
        point: LatLon,
    ) -> Any:
        """Context collaborators are optional: any failure becomes None."""
        try:
            return await self._run_stage(trace, f"context:{name}", fetcher(point))
        except Exception as e:
            logger.warning("Context fetcher %s failed: %s", name, e)
            return None

    # ------------------------------------------------------------------
    # Thin wrappers, one per user action
    # ------------------------------------------------------------------

    async def toggle_category(self, category_id: str) -> Optional[LocationSnapshot]:
        """Flip a category; no refresh if nothing changed (e.g. the locked one)."""
        if not self.categories.toggle(category_id):
            return None
        return await self.trigger(TriggerReason.CATEGORY_TOGGLE)

    async def set_radius(self, radius_meters: int) -> Optional[LocationSnapshot]:
        if radius_meters <= 0:
            raise ValueError(f"radius must be positive, got {radius_meters}")
        return await self.trigger(TriggerReason.RADIUS_CHANGE, radius_meters=int(radius_meters))

    async def set_budget(self, max_price: int) -> Optional[LocationSnapshot]:
        if max_price < 0:
            raise ValueError(f"budget must not be negative, got {max_price}")
        return await self.trigger(TriggerReason.BUDGET_CHANGE, max_price=int(max_price))

    async def select_suggestion(self, suggestion: Suggestion) -> Optional[LocationSnapshot]:
        return await self.trigger(
            TriggerReason.SUGGESTION_SELECTED,
            center=suggestion.point,
            location_name=suggestion.short_name,
        )

    async def search(self, text: str) -> Optional[LocationSnapshot]:
        """Manual search commit. Leaves everything unchanged when nothing matches."""
        match = await self.geocoder.resolve_query(text)
        if match is None:
            logger.info("No location found for %r", text)
            return None
        return await self.trigger(
            TriggerReason.SEARCH_COMMIT,
            center=match.point,
            location_name=match.short_name,
        )

    async def use_current_location(self, point: LatLon) -> Optional[LocationSnapshot]:
        label = await self.geocoder.reverse_resolve(point)
        return await self.trigger(
            TriggerReason.CURRENT_LOCATION, center=point, location_name=label,
        )

    async def geolocation_fix(self, point: LatLon) -> Optional[LocationSnapshot]:
        """Initial device fix. The label is resolved best-effort."""
        label = await self.geocoder.reverse_resolve(point) or CURRENT_LOCATION_LABEL
        return await self.trigger(
            TriggerReason.GEOLOCATION_FIX, center=point, location_name=label,
        )

    # ------------------------------------------------------------------
    # Selection (does not touch aggregation state)
    # ------------------------------------------------------------------

    async def select_listing(self, listing_id: str, mode: str = "walking") -> Optional[RouteEstimate]:
        """Routed commute from a listing in the current snapshot to the
        nearest institution. None if either is missing or superseded."""
        snapshot = self._snapshot
        institution = snapshot.nearest_institution
        listing = next((l for l in snapshot.listings if l.id == listing_id), None)
        if institution is None or listing is None:
            return None
        return await self.routes.request(
            listing_id, mode, listing.point, institution.place.point,
        )

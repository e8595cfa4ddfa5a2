"""
Route planner facade.

Wires the key-value store, geocoding cache, place store, route membership,
route options, position tracker and optimization engine together, exposes
the operations collaborators call, and persists session state after every
successful mutation.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from domain.errors import InvalidRouteOptionsError, NotFoundError
from domain.models import (
    CURRENT_LOCATION,
    SAME_AS_START,
    IngestMode,
    LatLon,
    Place,
    RouteOptions,
    Scenario,
)
from repositories.kv import KeyValueStore
from services import visits
from services.geocoding import AsyncThrottle, Geocoder, GeocodingCache, build_geocoder
from services.optimization import OptimizationEngine, OptimizationRun
from services.place_store import PlaceStore
from services.position import PositionTracker
from services.route_membership import RouteMembership
from services.routing import RouteQuantifier, TrafficModel, build_routing_provider, normalize_traffic_model

logger = logging.getLogger(__name__)

PLACES_KEY = "session:places"
ROUTE_KEY = "session:route"
OPTIONS_KEY = "session:options"


class RoutePlanner:
    def __init__(
        self,
        store: KeyValueStore,
        geocoder: Geocoder,
        quantifier: Optional[RouteQuantifier] = None,
        geocode_rate_per_sec: float = 2.0,
        traffic_model: Optional[TrafficModel] = None,
        avg_speed_kmh: float = 40.0,
        fallback_on_provider_error: bool = True,
    ):
        self.kv = store
        self.geocoding = GeocodingCache(store, geocoder, AsyncThrottle(geocode_rate_per_sec))
        self.places = PlaceStore(self.geocoding, self._load_places())
        self.route = RouteMembership(self.places, store.get(ROUTE_KEY) or [])
        self.options = self._load_options()
        self.position = PositionTracker()
        self.engine = OptimizationEngine(
            self.places,
            self.route,
            quantifier=quantifier,
            position=self.position,
            traffic_model=traffic_model,
            avg_speed_kmh=avg_speed_kmh,
            fallback_on_provider_error=fallback_on_provider_error,
        )
        self.places.add_removal_listener(self._on_places_removed)

    @classmethod
    def from_settings(cls, settings, store: KeyValueStore) -> "RoutePlanner":
        provider = build_routing_provider(settings)
        quantifier = None
        if provider is not None:
            quantifier = RouteQuantifier(
                provider,
                timeout=settings.PROVIDER_TIMEOUT_SEC,
                max_waypoints=settings.ROUTING_MAX_WAYPOINTS,
            )
        return cls(
            store,
            build_geocoder(settings),
            quantifier=quantifier,
            geocode_rate_per_sec=settings.GEOCODE_MAX_PER_SEC,
            traffic_model=normalize_traffic_model(settings.TRAFFIC_MODEL),
            avg_speed_kmh=settings.LOCAL_AVG_SPEED_KMH,
            fallback_on_provider_error=settings.ROUTE_FALLBACK_ON_PROVIDER_ERROR,
        )

    # -- persistence --------------------------------------------------------

    def _load_places(self) -> List[Place]:
        places = []
        for data in self.kv.get(PLACES_KEY) or []:
            try:
                places.append(Place.from_dict(data))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping unreadable stored place: %r", data)
        return places

    def _load_options(self) -> RouteOptions:
        data = self.kv.get(OPTIONS_KEY)
        if not data:
            return RouteOptions()
        try:
            return RouteOptions.from_dict(data).without_places(
                pid for pid in _referenced_ids(data) if pid not in self.places
            )
        except InvalidRouteOptionsError as exc:
            logger.warning("Stored route options ignored: %s", exc)
            return RouteOptions()

    def _save(self) -> None:
        self.kv.set(PLACES_KEY, [p.to_dict() for p in self.places.list()])
        self.kv.set(ROUTE_KEY, self.route.ids)
        self.kv.set(OPTIONS_KEY, self.options.to_dict())

    def _on_places_removed(self, place_ids: List[str]) -> None:
        self.options = self.options.without_places(place_ids)

    # -- places -------------------------------------------------------------

    def list_places(self) -> List[Place]:
        return self.places.list()

    def get_place(self, place_id: str) -> Place:
        return self.places.get(place_id)

    async def ingest_places(self, raw_text: str, mode: IngestMode | str = IngestMode.MERGE) -> List[Place]:
        added = await self.places.ingest(raw_text, IngestMode(mode))
        self._save()
        return added

    def remove_place(self, place_id: str) -> None:
        self.places.remove(place_id)
        self._save()

    def update_place(self, place: Place) -> Place:
        updated = self.places.update(place)
        self._save()
        return updated

    def reorder_places(self, place_ids: List[str]) -> None:
        self.places.reorder_places(place_ids)
        self._save()

    async def re_resolve_place(self, place_id: str, text: Optional[str] = None) -> Place:
        place = await self.places.re_resolve(place_id, text)
        self._save()
        return place

    def toggle_visited(self, place_id: str) -> Place:
        place = visits.toggle_visited(self.places, place_id)
        self._save()
        return place

    def log_visit(self, place_id: str, note: str = "", when=None) -> Place:
        place = visits.log_visit(self.places, place_id, note, when)
        self._save()
        return place

    def attach_photo(self, place_id: str, photo_ref: str) -> Place:
        place = visits.attach_photo(self.places, place_id, photo_ref)
        self._save()
        return place

    def clear_visited(self) -> int:
        changed = visits.clear_visited(self.places)
        self._save()
        return changed

    # -- route --------------------------------------------------------------

    def route_ids(self) -> List[str]:
        return self.route.ids

    def add_to_route(self, place_id: str) -> None:
        self.route.add(place_id)
        self._save()

    def select_all(self) -> List[str]:
        """Add every place with usable coordinates that is not on the route yet."""
        for place in self.places.list():
            if not place.geocode_failed and place.id not in self.route:
                self.route.add(place.id)
        self._save()
        return self.route.ids

    def remove_from_route(self, place_id: str) -> None:
        self.route.remove(place_id)
        self._save()

    def reorder_route(self, place_ids: List[str]) -> None:
        self.route.reorder(place_ids)
        self._save()

    def clear_route(self) -> None:
        self.route.clear()
        self._save()

    def set_route_options(self, partial: Dict[str, Any]) -> RouteOptions:
        options = self.options.merged(partial)
        for place_id in _referenced_ids(options.to_dict()):
            if place_id not in self.places:
                raise NotFoundError(place_id)
        self.options = options
        self._save()
        return options

    def update_position(self, lat: float, lon: float) -> LatLon:
        self.position.update(lat, lon)
        return (lat, lon)

    async def run_optimization(
        self,
        scenario: Optional[Scenario | str] = None,
        current_position: Optional[LatLon] = None,
        include_failed: bool = False,
        use_stored_scenario: bool = False,
    ) -> OptimizationRun:
        """`use_stored_scenario` runs the scenario saved in the route options when none is given."""
        if scenario is None and use_stored_scenario:
            scenario = self.options.scenario
        if scenario is not None:
            scenario = Scenario.parse(scenario)
        run = await self.engine.run(
            self.options,
            scenario=scenario,
            current_position=current_position,
            include_failed=include_failed,
        )
        if run.result is not None:
            self._save()
        return run


def _referenced_ids(options: Dict[str, Any]) -> List[str]:
    ids = list(options.get("skip_ids") or [])
    for key in ("start_point", "end_point", "must_visit_first"):
        value = options.get(key)
        if value and value not in (CURRENT_LOCATION, SAME_AS_START, "current", "start"):
            ids.append(value)
    return ids


_default_planner: Optional[RoutePlanner] = None


def get_default_planner() -> RoutePlanner:
    global _default_planner
    if _default_planner is None:
        from repositories.kv import SqlKeyValueStore
        from settings import settings

        _default_planner = RoutePlanner.from_settings(settings, SqlKeyValueStore())
    return _default_planner

"""
Route optimization: visiting-order heuristics and the engine that applies them.

All heuristics work on great-circle distance. Cheapest insertion is
O(n^2) per insertion step and O(n^3) overall, which is fine for tens of
stops and is the known scaling limit here; it is not meant for thousands.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from domain.errors import InvalidRouteOptionsError, NoPositionError, RoutingProviderError
from domain.models import (
    CURRENT_LOCATION,
    SAME_AS_START,
    LatLon,
    Place,
    RouteOptions,
    RouteResult,
    RunState,
    Scenario,
)
from services.cancellation import CancellationToken, GenerationCounter, OperationCancelled
from services.place_store import PlaceStore
from services.position import PositionTracker
from services.route_membership import RouteMembership
from services.routing import QuantifyOptions, RouteQuantifier, TrafficModel

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: LatLon, b: LatLon) -> float:
    """Compute distance in kilometers between two lat/lon points."""
    lat1, lon1 = a
    lat2, lon2 = b
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def path_distance_km(points: Sequence[LatLon]) -> float:
    return sum(haversine_km(points[i], points[i + 1]) for i in range(len(points) - 1))


def _greedy_walk(stops: Sequence[Place], start: LatLon, farthest: bool) -> List[Place]:
    remaining = list(stops)
    result: List[Place] = []
    current = start
    while remaining:
        best_idx = 0
        best_dist = haversine_km(current, remaining[0].coords)
        for idx in range(1, len(remaining)):
            dist = haversine_km(current, remaining[idx].coords)
            # strict comparison: the first stop in iteration order wins ties
            if (dist > best_dist) if farthest else (dist < best_dist):
                best_idx, best_dist = idx, dist
        chosen = remaining.pop(best_idx)
        result.append(chosen)
        current = chosen.coords
    return result


def nearest_neighbor(stops: Sequence[Place], start: LatLon) -> List[Place]:
    return _greedy_walk(stops, start, farthest=False)


def farthest_first(stops: Sequence[Place], start: LatLon) -> List[Place]:
    return _greedy_walk(stops, start, farthest=True)


def cheapest_insertion(stops: Sequence[Place], start: LatLon, end: Optional[LatLon] = None) -> List[Place]:
    """
    Grow a tour from `start` to `end` (a closed loop at `start` when `end` is
    None) by repeatedly inserting the stop/edge pair with the lowest
    dist(A,p) + dist(p,B) - dist(A,B). The anchors are stripped from the result.

    A closed loop has no inherent direction, so it is oriented to begin with
    whichever end stop is nearer the anchor.
    """
    if len(stops) < 2:
        return list(stops)
    closed = end is None
    tour: List[LatLon] = [start, start if closed else end]
    order: List[Place] = []
    remaining = list(stops)

    while remaining:
        best_cost = math.inf
        best_stop = 0
        best_edge = 0
        for s_idx, stop in enumerate(remaining):
            p = stop.coords
            for e_idx in range(len(tour) - 1):
                a, b = tour[e_idx], tour[e_idx + 1]
                cost = haversine_km(a, p) + haversine_km(p, b) - haversine_km(a, b)
                if cost < best_cost:
                    best_cost, best_stop, best_edge = cost, s_idx, e_idx
        chosen = remaining.pop(best_stop)
        tour.insert(best_edge + 1, chosen.coords)
        order.insert(best_edge, chosen)

    if closed and haversine_km(start, order[-1].coords) < haversine_km(start, order[0].coords):
        order.reverse()
    return order


@dataclass
class OptimizationRun:
    """One optimization request and its outcome."""
    run_id: int
    scenario: Optional[Scenario]
    state: RunState = RunState.IDLE
    result: Optional[RouteResult] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class _Plan:
    order: List[Place]
    excluded_ids: List[str]
    start: Optional[LatLon]
    end: Optional[LatLon]
    pinned: bool
    return_to: Optional[Place] = None

    @property
    def ordered_ids(self) -> List[str]:
        ids = [p.id for p in self.order]
        if self.return_to is not None:
            ids.append(self.return_to.id)
        return ids

    def metric_points(self) -> List[LatLon]:
        points: List[LatLon] = [p.coords for p in self.order]
        if self.return_to is not None:
            points.append(self.return_to.coords)
        if self.start is not None:
            points.insert(0, self.start)
        if self.end is not None:
            points.append(self.end)
        return points


class OptimizationEngine:
    """
    Computes and applies a visiting order for the current route.

    Each run moves Idle -> Computing -> Applied | Cancelled | Failed. Starting
    a run cancels the one still computing; a cancelled run never touches the
    route, even if its provider answer arrives later.
    """

    def __init__(
        self,
        places: PlaceStore,
        membership: RouteMembership,
        quantifier: Optional[RouteQuantifier] = None,
        position: Optional[PositionTracker] = None,
        traffic_model: Optional[TrafficModel] = None,
        avg_speed_kmh: float = 40.0,
        fallback_on_provider_error: bool = True,
    ):
        self.places = places
        self.membership = membership
        self.quantifier = quantifier
        self.position = position
        self.traffic_model = traffic_model
        self.avg_speed_kmh = avg_speed_kmh
        self.fallback_on_provider_error = fallback_on_provider_error
        self._generations = GenerationCounter()
        self.last_run: Optional[OptimizationRun] = None

    @property
    def state(self) -> RunState:
        return self.last_run.state if self.last_run else RunState.IDLE

    async def run(
        self,
        options: RouteOptions,
        scenario: Optional[Scenario] = None,
        current_position: Optional[LatLon] = None,
        include_failed: bool = False,
    ) -> OptimizationRun:
        """
        Order the route. `scenario=None` is the default "Optimize" action
        (cheapest insertion); otherwise the scenario's heuristic is used.
        Places with failed geocodes are left out unless `include_failed`.
        """
        token = self._generations.issue()
        run = OptimizationRun(run_id=token.generation, scenario=scenario, state=RunState.COMPUTING)
        self.last_run = run
        if current_position is None and self.position is not None:
            current_position = self.position.current()

        try:
            plan = self._plan(options, scenario, current_position, include_failed)
            result = self._local_result(plan)
            if self.quantifier is not None and len(plan.order) >= 2:
                result = await self._refine(plan, scenario, result, run, token)
            token.raise_if_cancelled()
            if len(plan.order) >= 2:
                self._commit(plan)
        except OperationCancelled:
            run.state = RunState.CANCELLED
            logger.info("Optimization run %d superseded; result discarded", run.run_id)
            return run
        except Exception as exc:
            if token.cancelled:
                run.state = RunState.CANCELLED
                logger.info("Optimization run %d superseded while failing: %s", run.run_id, exc)
                return run
            run.state = RunState.FAILED
            run.error = str(exc)
            raise

        run.result = result
        run.state = RunState.APPLIED
        logger.info(
            "Optimization run %d applied: %d stops, %.1f km, %.0f min%s",
            run.run_id,
            len(result.ordered_place_ids),
            result.total_distance_km,
            result.total_duration_min,
            " (approximate)" if result.approximate else "",
        )
        return run

    def _resolve_anchor(self, point: str, position: Optional[LatLon], include_failed: bool) -> tuple:
        if point == CURRENT_LOCATION:
            if position is None:
                raise NoPositionError()
            return position, None
        place = self.places.get(point)
        if place.geocode_failed and not include_failed:
            raise InvalidRouteOptionsError(f"Route endpoint {point!r} has no usable coordinates")
        return place.coords, place

    def _plan(
        self,
        options: RouteOptions,
        scenario: Optional[Scenario],
        position: Optional[LatLon],
        include_failed: bool,
    ) -> _Plan:
        members = self.membership.ids
        by_id: Dict[str, Place] = {pid: self.places.get(pid) for pid in members}
        eligible = [
            pid for pid in members
            if pid not in options.skip_ids and (include_failed or not by_id[pid].geocode_failed)
        ]
        excluded = [pid for pid in members if pid not in eligible]
        if len(eligible) < 2:
            return _Plan(
                order=[by_id[pid] for pid in eligible],
                excluded_ids=excluded,
                start=None,
                end=None,
                pinned=True,
            )

        start, start_place = self._resolve_anchor(options.start_point, position, include_failed)
        if scenario == Scenario.ROUND_TRIP or options.end_point == SAME_AS_START:
            end, end_place = start, None
        else:
            end, end_place = self._resolve_anchor(options.end_point, position, include_failed)

        stops = [by_id[pid] for pid in eligible]
        head: List[Place] = []
        tail: List[Place] = []

        def take(place_id: Optional[str]) -> Optional[Place]:
            for idx, stop in enumerate(stops):
                if stop.id == place_id:
                    return stops.pop(idx)
            return None

        if start_place is not None:
            first = take(start_place.id)
            if first:
                head.append(first)
        if options.must_visit_first:
            first = take(options.must_visit_first)
            if first:
                head.append(first)
        if end_place is not None:
            last = take(end_place.id)
            if last:
                tail.append(last)

        origin = head[-1].coords if head else start
        target = tail[0].coords if tail else end
        if scenario is None:
            middle = cheapest_insertion(stops, origin, None if target == origin else target)
        elif scenario in (Scenario.NEAREST, Scenario.ROUND_TRIP):
            middle = nearest_neighbor(stops, origin)
        elif scenario == Scenario.FARTHEST:
            middle = farthest_first(stops, origin)
        else:
            middle = stops

        return_to = None
        if scenario == Scenario.ROUND_TRIP and start_place is not None and head and head[0].id == start_place.id:
            return_to = head[0]
        return _Plan(
            order=head + middle + tail,
            excluded_ids=excluded,
            start=start,
            end=end,
            pinned=bool(head or tail or return_to) or scenario == Scenario.CUSTOM,
            return_to=return_to,
        )

    def _local_result(self, plan: _Plan) -> RouteResult:
        points = plan.metric_points()
        distance_km = path_distance_km(points)
        return RouteResult(
            ordered_place_ids=plan.ordered_ids,
            total_distance_km=round(distance_km, 3),
            total_duration_min=round(distance_km / self.avg_speed_kmh * 60.0, 1) if self.avg_speed_kmh else 0.0,
            approximate=True,
            path=points,
            excluded_place_ids=list(plan.excluded_ids),
        )

    async def _refine(
        self,
        plan: _Plan,
        scenario: Optional[Scenario],
        local: RouteResult,
        run: OptimizationRun,
        token: CancellationToken,
    ) -> RouteResult:
        """Ask the road router for real metrics and, when nothing is pinned, its own order."""
        options = QuantifyOptions(
            traffic_model=self.traffic_model,
            request_waypoint_optimization=not plan.pinned,
        )
        try:
            routed = await self.quantifier.quantify(
                plan.start,
                plan.end,
                [p.coords for p in plan.order],
                options,
                token=token,
            )
        except RoutingProviderError as exc:
            token.raise_if_cancelled()
            if not self.fallback_on_provider_error:
                raise
            logger.warning("Routing provider failed (%s); keeping great-circle order", exc.status)
            run.warnings.append(f"{exc.code}: {exc.status}")
            return local

        if options.request_waypoint_optimization:
            plan.order = [plan.order[i] for i in routed.ordered_waypoint_indices]
        return RouteResult(
            ordered_place_ids=plan.ordered_ids,
            total_distance_km=round(routed.total_distance_m / 1000.0, 3),
            total_duration_min=round(routed.total_duration_s / 60.0, 1),
            provider_summary=routed.summary,
            approximate=False,
            path=routed.decoded_path or plan.metric_points(),
            excluded_place_ids=list(plan.excluded_ids),
        )

    def _commit(self, plan: _Plan) -> None:
        current = self.membership.ids
        present = set(current)
        final: List[str] = []
        for pid in plan.ordered_ids:
            if pid in present and pid not in final:
                final.append(pid)
        # skipped/failed stops and stops added mid-run keep their relative order at the end
        final.extend(pid for pid in current if pid not in final)
        self.membership.replace_all(final)

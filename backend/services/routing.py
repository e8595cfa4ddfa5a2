"""
Road routing: turns an ordered list of stops into a real-world path.

Providers are synchronous `requests` clients that only talk HTTP and
normalize the response; `RouteQuantifier` adds the timeout, waypoint limits
and response validation that callers rely on.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import requests

from domain.errors import ProviderTimeoutError, RoutingProviderError
from domain.models import LatLon
from services.cancellation import CancellationToken
from services.polyline import decode_polyline

logger = logging.getLogger(__name__)
_session = requests.Session()

GOOGLE_DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"


class TrafficModel(str, Enum):
    BEST_GUESS = "best-guess"
    PESSIMISTIC = "pessimistic"
    OPTIMISTIC = "optimistic"

    @property
    def google_value(self) -> str:
        return self.value.replace("-", "_")


def normalize_traffic_model(value: Any) -> Optional[TrafficModel]:
    """Accept 'best-guess', 'best_guess', 'bestGuess', 'BEST_GUESS', 'none' or None."""
    if value is None or isinstance(value, TrafficModel):
        return value
    text = str(value).strip()
    if not text or text.lower() == "none":
        return None
    if "_" not in text and "-" not in text and text not in (text.lower(), text.upper()):
        # camelCase -> kebab-case
        text = "".join("-" + ch.lower() if ch.isupper() else ch for ch in text).lstrip("-")
    key = text.lower().replace("_", "-")
    try:
        return TrafficModel(key)
    except ValueError:
        raise ValueError(f"Unknown traffic model {value!r}") from None


@dataclass(frozen=True)
class QuantifyOptions:
    traffic_model: Optional[TrafficModel] = None
    request_waypoint_optimization: bool = False


@dataclass
class QuantifiedRoute:
    """
    Provider answer, normalized.

    ordered_waypoint_indices is a permutation of the interior waypoint
    indices (identity when no optimization was requested).
    """
    ordered_waypoint_indices: List[int]
    total_distance_m: float
    total_duration_s: float
    decoded_path: List[LatLon] = field(default_factory=list)
    summary: Optional[str] = None


class RoutingProvider(ABC):
    name = "provider"
    max_waypoints = 25
    supports_waypoint_optimization = True

    @abstractmethod
    def compute_route(
        self,
        origin: LatLon,
        destination: LatLon,
        waypoints: Sequence[LatLon],
        options: QuantifyOptions,
    ) -> QuantifiedRoute:
        """Blocking call. Raises RoutingProviderError on any provider failure."""


def _fmt_latlon(point: LatLon) -> str:
    return f"{point[0]:.6f},{point[1]:.6f}"


class GoogleDirectionsProvider(RoutingProvider):
    name = "google"
    max_waypoints = 25

    def __init__(self, api_key: str, timeout: float = 10.0):
        if not api_key:
            raise ValueError("Google routing requires GOOGLE_MAPS_API_KEY")
        self.api_key = api_key
        self.timeout = timeout

    def compute_route(self, origin, destination, waypoints, options):
        params: Dict[str, str] = {
            "origin": _fmt_latlon(origin),
            "destination": _fmt_latlon(destination),
            "mode": "driving",
            "key": self.api_key,
        }
        if waypoints:
            points = [_fmt_latlon(w) for w in waypoints]
            if options.request_waypoint_optimization:
                points.insert(0, "optimize:true")
            params["waypoints"] = "|".join(points)
        if options.traffic_model is not None:
            params["departure_time"] = "now"
            params["traffic_model"] = options.traffic_model.google_value

        try:
            resp = _session.get(GOOGLE_DIRECTIONS_URL, params=params, timeout=self.timeout)
            data = resp.json()
        except requests.RequestException as exc:
            raise RoutingProviderError("NETWORK_ERROR", str(exc)) from exc
        except ValueError as exc:
            raise RoutingProviderError("INVALID_RESPONSE", "Directions response was not JSON") from exc

        status = data.get("status", "UNKNOWN_ERROR")
        if status != "OK" or not data.get("routes"):
            raise RoutingProviderError(status, data.get("error_message"))

        route = data["routes"][0]
        distance_m = 0.0
        duration_s = 0.0
        for leg in route.get("legs", []):
            distance_m += float(leg.get("distance", {}).get("value", 0))
            duration = leg.get("duration_in_traffic") or leg.get("duration") or {}
            duration_s += float(duration.get("value", 0))

        encoded = (route.get("overview_polyline") or {}).get("points", "")
        return QuantifiedRoute(
            ordered_waypoint_indices=list(route.get("waypoint_order") or range(len(waypoints))),
            total_distance_m=distance_m,
            total_duration_s=duration_s,
            decoded_path=decode_polyline(encoded),
            summary=route.get("summary") or None,
        )


class OsrmProvider(RoutingProvider):
    """
    OSRM adapter.

    Uses /route for a fixed order and /trip (fixed first and last stop) when
    waypoint optimization is requested. OSRM has no traffic models.
    """

    name = "osrm"
    max_waypoints = 100

    def __init__(self, base_url: str, profile: str = "driving", timeout: float = 10.0):
        if not base_url:
            raise ValueError("OSRM base URL not set")
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.timeout = timeout

    def format_coordinates(self, coords: Sequence[LatLon]) -> str:
        """Convert list of (lat, lon) to OSRM format 'lon,lat;lon,lat;...'"""
        return ";".join(f"{lon},{lat}" for lat, lon in coords)

    def _get(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            resp = _session.get(url, params=params, timeout=self.timeout)
            data = resp.json()
        except requests.RequestException as exc:
            raise RoutingProviderError("NETWORK_ERROR", str(exc)) from exc
        except ValueError as exc:
            raise RoutingProviderError("INVALID_RESPONSE", "OSRM response was not JSON") from exc
        if data.get("code") != "Ok":
            raise RoutingProviderError(data.get("code", "UNKNOWN_ERROR"), data.get("message"))
        return data

    def compute_route(self, origin, destination, waypoints, options):
        if options.traffic_model is not None:
            logger.debug("OSRM ignores traffic model %s", options.traffic_model.value)
        coords = [origin, *waypoints, destination]
        path = self.format_coordinates(coords)
        params = {"overview": "full", "geometries": "polyline"}

        if options.request_waypoint_optimization and len(waypoints) > 1:
            params.update({"source": "first", "destination": "last", "roundtrip": "false"})
            data = self._get(f"{self.base_url}/trip/v1/{self.profile}/{path}", params)
            route = data["trips"][0]
            # waypoint_index is each input coordinate's position in the trip
            by_position = sorted(range(len(coords)), key=lambda i: data["waypoints"][i]["waypoint_index"])
            order = [i - 1 for i in by_position if 0 < i < len(coords) - 1]
        else:
            data = self._get(f"{self.base_url}/route/v1/{self.profile}/{path}", params)
            route = data["routes"][0]
            order = list(range(len(waypoints)))

        leg_names = [leg.get("summary") for leg in route.get("legs", []) if leg.get("summary")]
        return QuantifiedRoute(
            ordered_waypoint_indices=order,
            total_distance_m=float(route["distance"]),
            total_duration_s=float(route["duration"]),
            decoded_path=decode_polyline(route.get("geometry") or ""),
            summary=", ".join(leg_names) or None,
        )


def build_routing_provider(settings) -> Optional[RoutingProvider]:
    """Pick the configured provider; None disables road routing."""
    name = settings.ROUTING_PROVIDER
    if name in ("", "none"):
        return None
    if name == "google":
        return GoogleDirectionsProvider(settings.GOOGLE_MAPS_API_KEY or "", timeout=settings.PROVIDER_TIMEOUT_SEC)
    if name == "osrm":
        return OsrmProvider(settings.OSRM_BASE_URL, settings.ROUTING_PROFILE, timeout=settings.PROVIDER_TIMEOUT_SEC)
    raise ValueError(f"Unknown ROUTING_PROVIDER {name!r}")


class RouteQuantifier:
    """Async, time-bounded front for a RoutingProvider.

    Calls are stateless, so issuing the same request repeatedly is safe.
    """

    def __init__(
        self,
        provider: RoutingProvider,
        timeout: float = 10.0,
        max_waypoints: Optional[int] = None,
    ):
        self.provider = provider
        self.timeout = timeout
        self.max_waypoints = min(max_waypoints or provider.max_waypoints, provider.max_waypoints)

    async def quantify(
        self,
        origin: LatLon,
        destination: LatLon,
        waypoints: Sequence[LatLon],
        options: Optional[QuantifyOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> QuantifiedRoute:
        options = options or QuantifyOptions()
        if len(waypoints) > self.max_waypoints:
            raise RoutingProviderError(
                "MAX_WAYPOINTS_EXCEEDED",
                f"{len(waypoints)} waypoints exceed the limit of {self.max_waypoints}",
            )
        if options.request_waypoint_optimization and not self.provider.supports_waypoint_optimization:
            options = replace(options, request_waypoint_optimization=False)

        logger.debug(
            "[route] %s quantify waypoints=%d optimize=%s traffic=%s",
            self.provider.name,
            len(waypoints),
            options.request_waypoint_optimization,
            options.traffic_model,
        )
        try:
            route = await asyncio.wait_for(
                asyncio.to_thread(self.provider.compute_route, origin, destination, list(waypoints), options),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(self.timeout) from None
        if token is not None:
            token.raise_if_cancelled()

        n = len(waypoints)
        if not options.request_waypoint_optimization:
            route.ordered_waypoint_indices = list(range(n))
        elif sorted(route.ordered_waypoint_indices) != list(range(n)):
            raise RoutingProviderError(
                "INVALID_RESPONSE",
                f"Provider waypoint order {route.ordered_waypoint_indices} is not a permutation of {n} stops",
            )
        return route

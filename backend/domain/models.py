"""
Core domain models for the route planner.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
import uuid

from domain.errors import InvalidRouteOptionsError

LatLon = Tuple[float, float]

CURRENT_LOCATION = "current-location"
SAME_AS_START = "same-as-start"


class IngestMode(str, Enum):
    """How ingested places combine with the existing store."""
    REPLACE = "replace"
    MERGE = "merge"


class Scenario(str, Enum):
    """
    Ordering scenarios a user can pick.

    - NEAREST: nearest-neighbor from the start point
    - FARTHEST: farthest-first from the start point
    - ROUND_TRIP: nearest-neighbor, returning to the start place
    - CUSTOM: keep the user's own order, only constraints are applied
    """
    NEAREST = "nearest"
    FARTHEST = "farthest"
    ROUND_TRIP = "round-trip"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Any) -> "Scenario":
        if isinstance(value, Scenario):
            return value
        key = str(value).strip().lower().replace("_", "-")
        if key == "roundtrip":
            key = "round-trip"
        try:
            return cls(key)
        except ValueError:
            raise InvalidRouteOptionsError(f"Unknown scenario {value!r}") from None


class RunState(str, Enum):
    """Lifecycle of a single optimization run."""
    IDLE = "idle"
    COMPUTING = "computing"
    APPLIED = "applied"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class VisitLog:
    """A single logged visit. Append-only."""
    date: datetime
    note: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date.isoformat(), "note": self.note}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VisitLog":
        date = data.get("date")
        if isinstance(date, str):
            date = datetime.fromisoformat(date)
        return cls(date=date, note=data.get("note") or "")


@dataclass
class Place:
    """
    A single stop with identity, address, coordinates and visit metadata.

    When `geocode_failed` is set, `lat`/`lon` are zero and must not be used
    for distance math.
    """
    id: str
    display_address: str
    raw_input: str
    lat: float = 0.0
    lon: float = 0.0
    visited: bool = False
    last_visit_at: Optional[datetime] = None
    visit_log: List[VisitLog] = field(default_factory=list)
    photo_refs: List[str] = field(default_factory=list)
    geocode_failed: bool = False

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())

    @property
    def coords(self) -> LatLon:
        return (self.lat, self.lon)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_address": self.display_address,
            "raw_input": self.raw_input,
            "lat": self.lat,
            "lon": self.lon,
            "visited": self.visited,
            "last_visit_at": self.last_visit_at.isoformat() if self.last_visit_at else None,
            "visit_log": [entry.to_dict() for entry in self.visit_log],
            "photo_refs": list(self.photo_refs),
            "geocode_failed": self.geocode_failed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Place":
        last_visit_at = data.get("last_visit_at")
        if isinstance(last_visit_at, str):
            last_visit_at = datetime.fromisoformat(last_visit_at)
        return cls(
            id=data["id"],
            display_address=data.get("display_address", ""),
            raw_input=data.get("raw_input", ""),
            lat=float(data.get("lat", 0.0)),
            lon=float(data.get("lon", 0.0)),
            visited=bool(data.get("visited", False)),
            last_visit_at=last_visit_at,
            visit_log=[VisitLog.from_dict(v) for v in data.get("visit_log") or []],
            photo_refs=list(data.get("photo_refs") or []),
            geocode_failed=bool(data.get("geocode_failed", False)),
        )


@dataclass(frozen=True)
class GeocodeResult:
    """Outcome of resolving one address; cached as-is, failures included."""
    lat: float
    lon: float
    failed: bool = False
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "GeocodeResult":
        return cls(lat=0.0, lon=0.0, failed=True, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.lat,
            "lon": self.lon,
            "failed": self.failed,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeocodeResult":
        return cls(
            lat=float(data.get("lat", 0.0)),
            lon=float(data.get("lon", 0.0)),
            failed=bool(data.get("failed", False)),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class RouteOptions:
    """
    Session-scoped options for building a route.

    start_point is CURRENT_LOCATION or a place id; end_point is
    CURRENT_LOCATION, SAME_AS_START or a place id.
    """
    start_point: str = CURRENT_LOCATION
    end_point: str = SAME_AS_START
    must_visit_first: Optional[str] = None
    skip_ids: frozenset = frozenset()
    scenario: Scenario = Scenario.NEAREST

    def __post_init__(self) -> None:
        if self.must_visit_first and self.must_visit_first in self.skip_ids:
            raise InvalidRouteOptionsError(
                f"Place {self.must_visit_first!r} cannot be both visited first and skipped"
            )

    def merged(self, partial: Dict[str, Any]) -> "RouteOptions":
        """Return a copy with the given fields overridden. Unknown keys are rejected."""
        unknown = set(partial) - {"start_point", "end_point", "must_visit_first", "skip_ids", "scenario"}
        if unknown:
            raise InvalidRouteOptionsError(f"Unknown route options: {sorted(unknown)}")
        changes: Dict[str, Any] = {}
        if "start_point" in partial:
            changes["start_point"] = _normalize_endpoint(partial["start_point"], allow_same_as_start=False)
        if "end_point" in partial:
            changes["end_point"] = _normalize_endpoint(partial["end_point"], allow_same_as_start=True)
        if "must_visit_first" in partial:
            changes["must_visit_first"] = partial["must_visit_first"] or None
        if "skip_ids" in partial:
            changes["skip_ids"] = frozenset(partial["skip_ids"] or ())
        if "scenario" in partial:
            changes["scenario"] = Scenario.parse(partial["scenario"])
        return replace(self, **changes)

    def without_places(self, place_ids: Iterable[str]) -> "RouteOptions":
        """Drop references to removed places."""
        gone: Set[str] = set(place_ids)
        return RouteOptions(
            start_point=CURRENT_LOCATION if self.start_point in gone else self.start_point,
            end_point=SAME_AS_START if self.end_point in gone else self.end_point,
            must_visit_first=None if self.must_visit_first in gone else self.must_visit_first,
            skip_ids=frozenset(pid for pid in self.skip_ids if pid not in gone),
            scenario=self.scenario,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_point": self.start_point,
            "end_point": self.end_point,
            "must_visit_first": self.must_visit_first,
            "skip_ids": sorted(self.skip_ids),
            "scenario": self.scenario.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RouteOptions":
        return cls().merged(data)


def _normalize_endpoint(value: Any, allow_same_as_start: bool) -> str:
    if not value:
        raise InvalidRouteOptionsError("Route endpoint must not be empty")
    text = str(value).strip()
    lowered = text.lower()
    if lowered in ("current", "current-location", "current_location"):
        return CURRENT_LOCATION
    if lowered in ("start", "same-as-start", "same_as_start"):
        if not allow_same_as_start:
            raise InvalidRouteOptionsError("Start point cannot be 'same-as-start'")
        return SAME_AS_START
    return text


@dataclass
class RouteResult:
    """
    Derived summary of an ordered route. Not authoritative state.

    `approximate` is set when metrics come from great-circle math instead of
    the routing provider.
    """
    ordered_place_ids: List[str]
    total_distance_km: float
    total_duration_min: float
    provider_summary: Optional[str] = None
    approximate: bool = True
    path: List[LatLon] = field(default_factory=list)
    excluded_place_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ordered_place_ids": list(self.ordered_place_ids),
            "total_distance_km": self.total_distance_km,
            "total_duration_min": self.total_duration_min,
            "provider_summary": self.provider_summary,
            "approximate": self.approximate,
            "path": [list(p) for p in self.path],
            "excluded_place_ids": list(self.excluded_place_ids),
        }

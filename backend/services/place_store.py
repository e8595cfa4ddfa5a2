"""
Place store: the authoritative table of known places.

Raw text is ingested one location per line. A line is either
`lat,lon[,label...]` or a free-text address resolved through the
GeocodingCache. All geocoding happens before anything is committed, so an
ingest either lands completely or not at all.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import math
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from domain.errors import InvalidOrderError, NotFoundError
from domain.models import IngestMode, Place
from services.geocoding import GeocodingCache

logger = logging.getLogger(__name__)

RemovalListener = Callable[[List[str]], None]


def split_location_lines(raw_text: str) -> List[str]:
    """Split on newlines, trim, strip one pair of surrounding quotes, drop empty lines."""
    lines: List[str] = []
    for line in raw_text.splitlines():
        line = line.strip()
        if line.startswith('"'):
            line = line[1:]
        if line.endswith('"'):
            line = line[:-1]
        line = line.strip()
        if line:
            lines.append(line)
    return lines


def parse_coordinate_line(line: str) -> Optional[Tuple[float, float, str]]:
    """Return (lat, lon, label) when the first two tokens are numeric, else None."""
    parts = line.split(",")
    if len(parts) < 2:
        return None
    try:
        lat = float(parts[0])
        lon = float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    label = ",".join(parts[2:]).strip().strip('"').strip()
    return lat, lon, label


def _valid_coordinates(lat: float, lon: float) -> bool:
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def region_key(place: Place) -> str:
    """Second comma-delimited segment of the address, case-folded."""
    parts = place.display_address.split(",")
    if len(parts) < 2:
        return ""
    return parts[1].strip().casefold()


def dedup_key(place: Place) -> Tuple[str, float, float]:
    return (place.display_address.strip().casefold(), place.lat, place.lon)


class PlaceStore:
    def __init__(self, geocoding: GeocodingCache, places: Iterable[Place] = ()):
        self._geocoding = geocoding
        self._places: Dict[str, Place] = {}
        self._removal_listeners: List[RemovalListener] = []
        for place in places:
            if place.id in self._places:
                logger.warning("Dropping duplicate place id %s on load", place.id)
                continue
            self._places[place.id] = copy.deepcopy(place)

    def add_removal_listener(self, listener: RemovalListener) -> None:
        self._removal_listeners.append(listener)

    def _notify_removed(self, place_ids: List[str]) -> None:
        if not place_ids:
            return
        for listener in self._removal_listeners:
            listener(place_ids)

    def __contains__(self, place_id: object) -> bool:
        return place_id in self._places

    def __len__(self) -> int:
        return len(self._places)

    def ids(self) -> List[str]:
        return list(self._places)

    def list(self) -> List[Place]:
        return [copy.deepcopy(p) for p in self._places.values()]

    def get(self, place_id: str) -> Place:
        place = self._places.get(place_id)
        if place is None:
            raise NotFoundError(place_id)
        return copy.deepcopy(place)

    async def _place_from_line(self, line: str, place_id: Optional[str] = None) -> Place:
        place_id = place_id or Place.generate_id()
        coords = parse_coordinate_line(line)
        if coords is not None:
            lat, lon, label = coords
            if _valid_coordinates(lat, lon):
                return Place(id=place_id, display_address=label or line, raw_input=line, lat=lat, lon=lon)
            logger.warning("Coordinates out of range in %r; marking as failed", line)
            return Place(id=place_id, display_address=label or line, raw_input=line, geocode_failed=True)

        result = await self._geocoding.resolve(line)
        return Place(
            id=place_id,
            display_address=line,
            raw_input=line,
            lat=result.lat,
            lon=result.lon,
            geocode_failed=result.failed,
        )

    def _sorted(self, places: Iterable[Place]) -> List[Place]:
        return sorted(places, key=region_key)

    async def ingest(self, raw_text: str, mode: IngestMode = IngestMode.MERGE) -> List[Place]:
        """
        Parse and geocode `raw_text`, then commit.

        Returns the places that were added. In merge mode a candidate whose
        (address, lat, lon) matches an existing place, or an earlier line of
        the same batch, is dropped.
        """
        mode = IngestMode(mode)
        lines = split_location_lines(raw_text)
        candidates = await asyncio.gather(*(self._place_from_line(line) for line in lines))

        if mode == IngestMode.REPLACE:
            removed = list(self._places)
            added = self._sorted(candidates)
            self._places = {p.id: p for p in added}
            self._notify_removed(removed)
        else:
            seen = {dedup_key(p) for p in self._places.values()}
            added = []
            for place in candidates:
                key = dedup_key(place)
                if key in seen:
                    continue
                seen.add(key)
                added.append(place)
            merged = self._sorted([*self._places.values(), *added])
            self._places = {p.id: p for p in merged}
            added = self._sorted(added)

        failed = sum(1 for p in added if p.geocode_failed)
        logger.info(
            "Ingested %d lines (%s): %d added, %d geocode failures, %d total",
            len(lines), mode.value, len(added), failed, len(self._places),
        )
        return [copy.deepcopy(p) for p in added]

    def remove(self, place_id: str) -> None:
        if place_id not in self._places:
            raise NotFoundError(place_id)
        del self._places[place_id]
        self._notify_removed([place_id])

    def update(self, place: Place) -> Place:
        """Full replace by id; display position is kept."""
        if place.id not in self._places:
            raise NotFoundError(place.id)
        self._places[place.id] = copy.deepcopy(place)
        return copy.deepcopy(place)

    def reorder_places(self, place_ids: List[str]) -> None:
        """Manual display order; must be a permutation of all place ids."""
        if len(place_ids) != len(self._places) or set(place_ids) != set(self._places):
            raise InvalidOrderError("New place order must be a permutation of all places")
        self._places = {pid: self._places[pid] for pid in place_ids}

    async def re_resolve(self, place_id: str, text: Optional[str] = None) -> Place:
        """
        Explicitly geocode a place again, optionally with corrected text.

        Identity and visit metadata are kept. Re-resolving unchanged text
        drops its cached outcome first so the resolver is asked again.
        """
        current = self.get(place_id)
        line = (text or "").strip() or current.raw_input
        if line == current.raw_input:
            self._geocoding.forget(line)

        fresh = await self._place_from_line(line, place_id=place_id)
        if place_id not in self._places:
            # removed while we were waiting on the resolver
            raise NotFoundError(place_id)
        latest = self._places[place_id]
        latest.display_address = fresh.display_address
        latest.raw_input = fresh.raw_input
        latest.lat = fresh.lat
        latest.lon = fresh.lon
        latest.geocode_failed = fresh.geocode_failed
        return copy.deepcopy(latest)

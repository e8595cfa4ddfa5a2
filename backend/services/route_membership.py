"""
Route membership: the ordered subset of place ids forming the active route.
"""
from __future__ import annotations

import logging
from typing import Iterable, Iterator, List

from domain.errors import InvalidOrderError, NotFoundError
from services.place_store import PlaceStore

logger = logging.getLogger(__name__)


class RouteMembership:
    """
    Ordered, duplicate-free list of ids that all exist in the PlaceStore.

    Places removed from the store drop out of the route automatically.
    """

    def __init__(self, places: PlaceStore, place_ids: Iterable[str] = ()):
        self._places = places
        self._ids: List[str] = []
        for place_id in place_ids:
            if place_id in places and place_id not in self._ids:
                self._ids.append(place_id)
            else:
                logger.warning("Dropping stale route entry %s on load", place_id)
        places.add_removal_listener(self._on_places_removed)

    @property
    def ids(self) -> List[str]:
        return list(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, place_id: object) -> bool:
        return place_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def add(self, place_id: str) -> None:
        if place_id not in self._places:
            raise NotFoundError(place_id)
        if place_id not in self._ids:
            self._ids.append(place_id)

    def remove(self, place_id: str) -> None:
        if place_id not in self._ids:
            raise NotFoundError(place_id)
        self._ids.remove(place_id)

    def reorder(self, new_order: Iterable[str]) -> None:
        """Reorder without changing membership. Ids of removed places are rejected."""
        new_ids = list(new_order)
        if len(new_ids) != len(self._ids) or len(set(new_ids)) != len(new_ids) or set(new_ids) != set(self._ids):
            raise InvalidOrderError("New route order must be a permutation of the current route")
        self._ids = new_ids

    def replace_all(self, new_ids: Iterable[str]) -> None:
        """Atomically set both membership and order."""
        ids = list(new_ids)
        if len(set(ids)) != len(ids):
            raise InvalidOrderError("Route must not contain duplicate places")
        for place_id in ids:
            if place_id not in self._places:
                raise NotFoundError(place_id)
        self._ids = ids

    def clear(self) -> None:
        self._ids = []

    def _on_places_removed(self, place_ids: List[str]) -> None:
        gone = set(place_ids)
        self._ids = [pid for pid in self._ids if pid not in gone]

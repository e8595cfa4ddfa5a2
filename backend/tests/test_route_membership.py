import pytest

from domain.errors import InvalidOrderError, NotFoundError
from domain.models import Place
from repositories.kv import InMemoryKeyValueStore
from services.geocoding import AsyncThrottle, Geocoder, GeocodingCache
from services.place_store import PlaceStore
from services.route_membership import RouteMembership


class UnusedGeocoder(Geocoder):
    def geocode(self, address):
        raise AssertionError("geocoder should not be called")


def _store(*ids):
    places = [Place(id=pid, display_address=pid, raw_input=pid, lat=float(i), lon=0.0) for i, pid in enumerate(ids)]
    cache = GeocodingCache(InMemoryKeyValueStore(), UnusedGeocoder(), AsyncThrottle(1000.0))
    return PlaceStore(cache, places)


def test_load_drops_stale_and_duplicate_ids():
    route = RouteMembership(_store("a", "b"), ["a", "ghost", "b", "a"])
    assert route.ids == ["a", "b"]


def test_add_is_idempotent_and_validates():
    route = RouteMembership(_store("a", "b"))
    route.add("a")
    route.add("a")
    route.add("b")
    assert route.ids == ["a", "b"]
    with pytest.raises(NotFoundError):
        route.add("ghost")


def test_remove_requires_membership():
    route = RouteMembership(_store("a", "b"), ["a"])
    route.remove("a")
    assert len(route) == 0
    with pytest.raises(NotFoundError):
        route.remove("b")


def test_reorder_preserves_membership():
    route = RouteMembership(_store("a", "b", "c"), ["a", "b", "c"])
    route.reorder(["c", "a", "b"])
    assert route.ids == ["c", "a", "b"]

    for bad in (["a", "b"], ["a", "b", "b"], ["a", "b", "c", "d"], ["a", "b", "d"]):
        with pytest.raises(InvalidOrderError):
            route.reorder(bad)
    assert route.ids == ["c", "a", "b"]


def test_replace_all_sets_membership_and_order():
    route = RouteMembership(_store("a", "b", "c"), ["a"])
    route.replace_all(["c", "b"])
    assert route.ids == ["c", "b"]
    with pytest.raises(InvalidOrderError):
        route.replace_all(["a", "a"])
    with pytest.raises(NotFoundError):
        route.replace_all(["a", "ghost"])
    assert route.ids == ["c", "b"]


def test_ids_is_a_copy():
    route = RouteMembership(_store("a"), ["a"])
    route.ids.append("zzz")
    assert route.ids == ["a"]
    route.clear()
    assert list(route) == []

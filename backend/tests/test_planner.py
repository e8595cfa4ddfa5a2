"""
Tests for the RoutePlanner facade and its session persistence.
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from domain.errors import GeocodeFailure, NotFoundError
from domain.models import CURRENT_LOCATION, GeocodeResult, IngestMode, RunState, Scenario
from repositories.kv import InMemoryKeyValueStore
from services.geocoding import Geocoder
from services.planner import OPTIONS_KEY, PLACES_KEY, ROUTE_KEY, RoutePlanner


class FakeGeocoder(Geocoder):
    name = "fake"

    def __init__(self, results=None):
        self.results = dict(results or {})
        self.calls = []

    def geocode(self, address):
        self.calls.append(address)
        found = self.results.get(address)
        if found is None:
            raise GeocodeFailure(address, "no results")
        return GeocodeResult(lat=found[0], lon=found[1])


def make_planner(kv=None, geocoder=None):
    return RoutePlanner(
        kv if kv is not None else InMemoryKeyValueStore(),
        geocoder if geocoder is not None else FakeGeocoder(),
        geocode_rate_per_sec=1000.0,
    )


def ingest_abc(planner):
    places = asyncio.run(planner.ingest_places("0.0,0.0,A\n0.0,1.0,B\n0.0,10.0,C", IngestMode.REPLACE))
    return {p.display_address: p.id for p in places}


def test_mutations_are_persisted_and_reloaded():
    kv = InMemoryKeyValueStore()
    planner = make_planner(kv)
    ids = ingest_abc(planner)
    planner.add_to_route(ids["C"])
    planner.add_to_route(ids["A"])
    planner.set_route_options({"must_visit_first": ids["A"]})

    assert [p["id"] for p in kv.get(PLACES_KEY)] == planner.places.ids()
    assert kv.get(ROUTE_KEY) == [ids["C"], ids["A"]]

    restored = make_planner(kv)
    assert [p.id for p in restored.list_places()] == planner.places.ids()
    assert restored.route_ids() == [ids["C"], ids["A"]]
    assert restored.options.must_visit_first == ids["A"]


def test_remove_place_cascades_to_route_and_options():
    kv = InMemoryKeyValueStore()
    planner = make_planner(kv)
    ids = ingest_abc(planner)
    planner.select_all()
    planner.set_route_options({"start_point": ids["B"], "skip_ids": [ids["C"]]})

    planner.remove_place(ids["B"])

    assert planner.route_ids() == [ids["A"], ids["C"]]
    assert planner.options.start_point == CURRENT_LOCATION
    assert kv.get(OPTIONS_KEY)["start_point"] == CURRENT_LOCATION
    assert kv.get(ROUTE_KEY) == [ids["A"], ids["C"]]


def test_replace_ingest_clears_route():
    planner = make_planner()
    ids = ingest_abc(planner)
    planner.add_to_route(ids["A"])
    asyncio.run(planner.ingest_places("5.0,5.0,D", IngestMode.REPLACE))
    assert planner.route_ids() == []


def test_select_all_skips_failed_places():
    planner = make_planner()
    asyncio.run(planner.ingest_places("1.0,1.0,A\nunknown street"))
    route = planner.select_all()
    assert len(route) == 1
    assert planner.get_place(route[0]).display_address == "A"


def test_set_route_options_validates_place_ids():
    planner = make_planner()
    ingest_abc(planner)
    with pytest.raises(NotFoundError):
        planner.set_route_options({"start_point": "ghost"})
    assert planner.options.start_point == CURRENT_LOCATION


def test_stale_references_are_dropped_on_load():
    kv = InMemoryKeyValueStore()
    kv.set(ROUTE_KEY, ["ghost"])
    kv.set(OPTIONS_KEY, {"start_point": "ghost", "skip_ids": ["ghost"]})
    planner = make_planner(kv)
    assert planner.route_ids() == []
    assert planner.options.start_point == CURRENT_LOCATION
    assert planner.options.skip_ids == frozenset()


def test_run_optimization_applies_and_saves():
    kv = InMemoryKeyValueStore()
    planner = make_planner(kv)
    ids = ingest_abc(planner)
    for label in ("C", "A", "B"):
        planner.add_to_route(ids[label])
    planner.update_position(0.0, 0.0)

    run = asyncio.run(planner.run_optimization())

    assert run.state == RunState.APPLIED
    assert planner.route_ids() == [ids["A"], ids["B"], ids["C"]]
    assert kv.get(ROUTE_KEY) == [ids["A"], ids["B"], ids["C"]]


def test_run_optimization_accepts_scenario_names():
    planner = make_planner()
    ids = ingest_abc(planner)
    planner.select_all()
    run = asyncio.run(planner.run_optimization("farthest", current_position=(0.0, 0.0)))
    assert run.scenario == Scenario.FARTHEST
    assert planner.route_ids() == [ids["C"], ids["A"], ids["B"]]


def test_run_optimization_can_use_stored_scenario():
    planner = make_planner()
    ids = ingest_abc(planner)
    planner.select_all()
    planner.set_route_options({"scenario": "farthest"})

    default_run = asyncio.run(planner.run_optimization(current_position=(0.0, 0.0)))
    assert default_run.scenario is None

    run = asyncio.run(planner.run_optimization(current_position=(0.0, 0.0), use_stored_scenario=True))
    assert run.scenario == Scenario.FARTHEST
    assert planner.route_ids() == [ids["C"], ids["A"], ids["B"]]


def test_visit_workflows_persist():
    kv = InMemoryKeyValueStore()
    planner = make_planner(kv)
    ids = ingest_abc(planner)
    planner.log_visit(ids["A"], "met the owner")
    planner.attach_photo(ids["A"], "photos/a.jpg")

    stored = next(p for p in kv.get(PLACES_KEY) if p["id"] == ids["A"])
    assert stored["visited"] is True
    assert stored["visit_log"][0]["note"] == "met the owner"
    assert stored["photo_refs"] == ["photos/a.jpg"]
    assert planner.clear_visited() == 1


def test_re_resolve_place_after_fixing_resolver():
    geocoder = FakeGeocoder()
    planner = make_planner(geocoder=geocoder)
    place = asyncio.run(planner.ingest_places("9 Elm St"))[0]
    assert place.geocode_failed

    geocoder.results["9 Elm St"] = (3.0, 4.0)
    fixed = asyncio.run(planner.re_resolve_place(place.id))
    assert not fixed.geocode_failed
    assert planner.get_place(place.id).lat == 3.0


def test_from_settings_without_routing_provider():
    settings = MagicMock(
        GEOCODER_PROVIDER="nominatim",
        NOMINATIM_SEARCH_URL="http://nominatim.local/search",
        NOMINATIM_USER_AGENT="tests/1.0",
        NOMINATIM_COUNTRY_CODES=None,
        GEOCODE_MAX_PER_SEC=2.0,
        ROUTING_PROVIDER="none",
        TRAFFIC_MODEL="bestGuess",
        LOCAL_AVG_SPEED_KMH=50.0,
        ROUTE_FALLBACK_ON_PROVIDER_ERROR=True,
    )
    planner = RoutePlanner.from_settings(settings, InMemoryKeyValueStore())
    assert planner.engine.quantifier is None
    assert planner.engine.avg_speed_kmh == 50.0
    assert planner.engine.traffic_model.value == "best-guess"

import asyncio
import time
from unittest.mock import patch

import pytest

from domain.errors import ProviderTimeoutError, RoutingProviderError
from services.cancellation import GenerationCounter, OperationCancelled
from services.polyline import decode_polyline
from services.routing import (
    GoogleDirectionsProvider,
    OsrmProvider,
    QuantifiedRoute,
    QuantifyOptions,
    RouteQuantifier,
    RoutingProvider,
    TrafficModel,
    normalize_traffic_model,
)


class DummyResponse:
    def __init__(self, json_data):
        self._json = json_data

    def json(self):
        return self._json


class StaticProvider(RoutingProvider):
    name = "static"
    max_waypoints = 3

    def __init__(self, order=None, delay=0.0):
        self.order = order
        self.delay = delay
        self.calls = []

    def compute_route(self, origin, destination, waypoints, options):
        self.calls.append((origin, destination, list(waypoints), options))
        if self.delay:
            time.sleep(self.delay)
        return QuantifiedRoute(
            ordered_waypoint_indices=list(self.order if self.order is not None else reversed(range(len(waypoints)))),
            total_distance_m=1234.0,
            total_duration_s=600.0,
        )


def test_decode_polyline_reference_example():
    path = decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@")
    assert path == [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]


def test_decode_polyline_empty_and_truncated():
    assert decode_polyline("") == []
    with pytest.raises(ValueError):
        decode_polyline("_p~iF~ps|")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("best-guess", TrafficModel.BEST_GUESS),
        ("best_guess", TrafficModel.BEST_GUESS),
        ("bestGuess", TrafficModel.BEST_GUESS),
        ("PESSIMISTIC", TrafficModel.PESSIMISTIC),
        ("OPTIMISTIC", TrafficModel.OPTIMISTIC),
        ("Pessimistic", TrafficModel.PESSIMISTIC),
        ("none", None),
        (None, None),
    ],
)
def test_normalize_traffic_model(raw, expected):
    assert normalize_traffic_model(raw) == expected


def test_normalize_traffic_model_rejects_unknown():
    with pytest.raises(ValueError):
        normalize_traffic_model("rush-hour")


@patch("services.routing._session.get")
def test_google_directions_request_and_parse(mock_get):
    mock_get.return_value = DummyResponse(
        {
            "status": "OK",
            "routes": [
                {
                    "summary": "Main St",
                    "waypoint_order": [1, 0],
                    "overview_polyline": {"points": "_p~iF~ps|U_ulLnnqC_mqNvxq`@"},
                    "legs": [
                        {"distance": {"value": 1000}, "duration": {"value": 60}, "duration_in_traffic": {"value": 90}},
                        {"distance": {"value": 2000}, "duration": {"value": 120}},
                        {"distance": {"value": 500}, "duration": {"value": 30}},
                    ],
                }
            ],
        }
    )
    provider = GoogleDirectionsProvider("key")
    options = QuantifyOptions(traffic_model=TrafficModel.BEST_GUESS, request_waypoint_optimization=True)

    route = provider.compute_route((0.0, 0.0), (1.0, 1.0), [(0.1, 0.1), (0.2, 0.2)], options)

    params = mock_get.call_args.kwargs["params"]
    assert params["waypoints"].startswith("optimize:true|")
    assert params["traffic_model"] == "best_guess"
    assert params["departure_time"] == "now"
    assert route.ordered_waypoint_indices == [1, 0]
    assert route.total_distance_m == 3500.0
    assert route.total_duration_s == 240.0
    assert route.decoded_path[0] == (38.5, -120.2)
    assert route.summary == "Main St"


@patch("services.routing._session.get")
def test_google_directions_error_status(mock_get):
    mock_get.return_value = DummyResponse({"status": "OVER_QUERY_LIMIT", "routes": []})
    provider = GoogleDirectionsProvider("key")
    with pytest.raises(RoutingProviderError) as excinfo:
        provider.compute_route((0.0, 0.0), (1.0, 1.0), [], QuantifyOptions())
    assert excinfo.value.status == "OVER_QUERY_LIMIT"


@patch("services.routing._session.get")
def test_osrm_trip_maps_waypoint_index_to_permutation(mock_get):
    # input coords: origin, w0, w1, w2, destination; trip visits w2, w0, w1
    mock_get.return_value = DummyResponse(
        {
            "code": "Ok",
            "waypoints": [
                {"waypoint_index": 0},
                {"waypoint_index": 2},
                {"waypoint_index": 3},
                {"waypoint_index": 1},
                {"waypoint_index": 4},
            ],
            "trips": [{"distance": 9000.0, "duration": 700.0, "geometry": "", "legs": []}],
        }
    )
    provider = OsrmProvider("http://osrm.local/")
    options = QuantifyOptions(request_waypoint_optimization=True)

    route = provider.compute_route((0.0, 0.0), (9.0, 9.0), [(1.0, 1.0), (2.0, 2.0), (3.0, 3.0)], options)

    url = mock_get.call_args.args[0]
    assert url.startswith("http://osrm.local/trip/v1/driving/0.0,0.0;1.0,1.0")
    assert mock_get.call_args.kwargs["params"]["roundtrip"] == "false"
    assert route.ordered_waypoint_indices == [2, 0, 1]
    assert route.total_distance_m == 9000.0


@patch("services.routing._session.get")
def test_osrm_route_error_code(mock_get):
    mock_get.return_value = DummyResponse({"code": "NoRoute", "message": "Impossible route"})
    provider = OsrmProvider("http://osrm.local")
    with pytest.raises(RoutingProviderError) as excinfo:
        provider.compute_route((0.0, 0.0), (1.0, 1.0), [(0.5, 0.5)], QuantifyOptions())
    assert excinfo.value.status == "NoRoute"


def test_quantifier_rejects_too_many_waypoints():
    provider = StaticProvider()
    quantifier = RouteQuantifier(provider)
    with pytest.raises(RoutingProviderError) as excinfo:
        asyncio.run(quantifier.quantify((0, 0), (0, 0), [(1, 1)] * 4))
    assert excinfo.value.status == "MAX_WAYPOINTS_EXCEEDED"
    assert provider.calls == []


def test_quantifier_forces_identity_without_optimization():
    quantifier = RouteQuantifier(StaticProvider())
    route = asyncio.run(quantifier.quantify((0, 0), (0, 0), [(1, 1), (2, 2), (3, 3)]))
    assert route.ordered_waypoint_indices == [0, 1, 2]


def test_quantifier_keeps_provider_permutation_when_requested():
    quantifier = RouteQuantifier(StaticProvider())
    options = QuantifyOptions(request_waypoint_optimization=True)
    route = asyncio.run(quantifier.quantify((0, 0), (0, 0), [(1, 1), (2, 2), (3, 3)], options))
    assert route.ordered_waypoint_indices == [2, 1, 0]


def test_quantifier_rejects_non_permutation():
    quantifier = RouteQuantifier(StaticProvider(order=[0, 0, 1]))
    options = QuantifyOptions(request_waypoint_optimization=True)
    with pytest.raises(RoutingProviderError) as excinfo:
        asyncio.run(quantifier.quantify((0, 0), (0, 0), [(1, 1), (2, 2), (3, 3)], options))
    assert excinfo.value.status == "INVALID_RESPONSE"


def test_quantifier_timeout():
    quantifier = RouteQuantifier(StaticProvider(delay=0.3), timeout=0.05)
    with pytest.raises(ProviderTimeoutError) as excinfo:
        asyncio.run(quantifier.quantify((0, 0), (1, 1), [(0.5, 0.5)]))
    assert excinfo.value.status == "TIMEOUT"


def test_quantifier_checks_token_after_provider_returns():
    counter = GenerationCounter()
    token = counter.issue()
    quantifier = RouteQuantifier(StaticProvider())

    async def go():
        task = asyncio.ensure_future(quantifier.quantify((0, 0), (1, 1), [(0.5, 0.5)], token=token))
        await asyncio.sleep(0)
        counter.issue()
        return await task

    with pytest.raises(OperationCancelled):
        asyncio.run(go())


def test_generation_counter_cancels_previous_token():
    counter = GenerationCounter()
    first = counter.issue()
    second = counter.issue()
    assert first.cancelled
    assert not second.cancelled
    assert counter.is_current(second)
    assert not counter.is_current(first)
    assert counter.generation == 2

"""
Error taxonomy for the route planner core.

Every failure the core reports is a distinct subclass so collaborators can
render a precise message per outcome instead of a generic error.
"""
from typing import Optional


class RoutePlannerError(Exception):
    """Base class for all errors raised by the route planner core."""

    code = "route_planner_error"


class GeocodeFailure(RoutePlannerError):
    """An address could not be resolved to coordinates."""

    code = "geocode_failed"

    def __init__(self, address: str, reason: str = "no results"):
        super().__init__(f"Could not geocode {address!r}: {reason}")
        self.address = address
        self.reason = reason


class NoPositionError(RoutePlannerError):
    """The current device position is unavailable."""

    code = "no_position"

    def __init__(self, message: str = "Current position is unavailable"):
        super().__init__(message)


class RoutingProviderError(RoutePlannerError):
    """The external routing provider failed; `status` is the provider's status."""

    code = "routing_provider_error"

    def __init__(self, status: str, message: Optional[str] = None):
        super().__init__(message or f"Routing provider failed with status {status}")
        self.status = status


class ProviderTimeoutError(RoutingProviderError):
    code = "provider_timeout"

    def __init__(self, timeout: float):
        super().__init__("TIMEOUT", f"Routing provider did not answer within {timeout:.1f}s")
        self.timeout = timeout


class InvalidOrderError(RoutePlannerError):
    """A reorder request was not a permutation of the current membership."""

    code = "invalid_order"


class NotFoundError(RoutePlannerError):
    code = "not_found"

    def __init__(self, place_id: str):
        super().__init__(f"Place {place_id!r} not found")
        self.place_id = place_id


class InvalidRouteOptionsError(RoutePlannerError):
    code = "invalid_route_options"

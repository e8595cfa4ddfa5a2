"""
Mapping from route planner errors to HTTP responses.
"""
import logging
from contextlib import contextmanager

from fastapi import HTTPException

from domain.errors import (
    GeocodeFailure,
    InvalidOrderError,
    InvalidRouteOptionsError,
    NoPositionError,
    NotFoundError,
    RoutePlannerError,
    RoutingProviderError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (NotFoundError, 404),
    (InvalidOrderError, 409),
    (NoPositionError, 422),
    (InvalidRouteOptionsError, 422),
    (GeocodeFailure, 422),
    (RoutingProviderError, 502),
]


def status_for(exc: RoutePlannerError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


@contextmanager
def translate_errors():
    """Re-raise route planner errors as HTTPException with a structured detail."""
    try:
        yield
    except RoutePlannerError as exc:
        status = status_for(exc)
        if status >= 500:
            logger.warning("Upstream failure: %s", exc)
        raise HTTPException(status_code=status, detail={"error": exc.code, "message": str(exc)}) from exc

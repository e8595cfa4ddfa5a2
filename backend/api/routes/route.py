"""
Route API routes: membership, options, position and optimization.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from api.errors import translate_errors
from domain.models import RouteOptions
from services.planner import get_default_planner

router = APIRouter()
logger = logging.getLogger(__name__)


class RouteResponse(BaseModel):
    place_ids: List[str]


class OrderRequest(BaseModel):
    place_ids: List[str]


class AddRequest(BaseModel):
    place_id: str


class OptionsResponse(BaseModel):
    start_point: str
    end_point: str
    must_visit_first: Optional[str] = None
    skip_ids: List[str] = []
    scenario: str


class OptionsUpdate(BaseModel):
    start_point: Optional[str] = None
    end_point: Optional[str] = None
    must_visit_first: Optional[str] = None
    skip_ids: Optional[List[str]] = None
    scenario: Optional[str] = None


class PositionRequest(BaseModel):
    lat: float
    lon: float


class OptimizeRequest(BaseModel):
    scenario: Optional[str] = None
    use_stored_scenario: bool = False
    lat: Optional[float] = None
    lon: Optional[float] = None
    include_failed: bool = False


class RouteResultResponse(BaseModel):
    ordered_place_ids: List[str]
    total_distance_km: float
    total_duration_min: float
    provider_summary: Optional[str] = None
    approximate: bool
    path: List[List[float]] = []
    excluded_place_ids: List[str] = []


class OptimizeResponse(BaseModel):
    run_id: int
    state: str
    scenario: Optional[str] = None
    result: Optional[RouteResultResponse] = None
    warnings: List[str] = []
    place_ids: List[str]


def options_to_response(options: RouteOptions) -> OptionsResponse:
    return OptionsResponse(**options.to_dict())


@router.get("", response_model=RouteResponse)
async def get_route():
    return RouteResponse(place_ids=get_default_planner().route_ids())


@router.post("", response_model=RouteResponse)
async def add_to_route(data: AddRequest):
    planner = get_default_planner()
    with translate_errors():
        planner.add_to_route(data.place_id)
    return RouteResponse(place_ids=planner.route_ids())


@router.delete("", response_model=RouteResponse)
async def clear_route():
    planner = get_default_planner()
    planner.clear_route()
    return RouteResponse(place_ids=planner.route_ids())


@router.put("/order", response_model=RouteResponse)
async def reorder_route(data: OrderRequest):
    planner = get_default_planner()
    with translate_errors():
        planner.reorder_route(data.place_ids)
    return RouteResponse(place_ids=planner.route_ids())


@router.post("/select-all", response_model=RouteResponse)
async def select_all():
    planner = get_default_planner()
    return RouteResponse(place_ids=planner.select_all())


@router.get("/options", response_model=OptionsResponse)
async def get_options():
    return options_to_response(get_default_planner().options)


@router.patch("/options", response_model=OptionsResponse)
async def update_options(data: OptionsUpdate):
    """Merge the supplied fields into the session's route options."""
    planner = get_default_planner()
    partial = data.model_dump(exclude_unset=True)
    with translate_errors():
        return options_to_response(planner.set_route_options(partial))


@router.put("/position")
async def update_position(data: PositionRequest):
    planner = get_default_planner()
    try:
        lat, lon = planner.update_position(data.lat, data.lon)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"lat": lat, "lon": lon}


@router.post("/optimize", response_model=OptimizeResponse)
async def optimize(data: OptimizeRequest):
    """
    Compute and apply a visiting order.

    Without a scenario this is the default Optimize action, unless
    use_stored_scenario asks for the one saved in the route options. A superseded run
    answers with state "cancelled" and leaves the route as the newer run set it.
    """
    planner = get_default_planner()
    if (data.lat is None) != (data.lon is None):
        raise HTTPException(status_code=400, detail="lat and lon must be supplied together")
    position = (data.lat, data.lon) if data.lat is not None else None
    with translate_errors():
        run = await planner.run_optimization(
            data.scenario, position, data.include_failed, use_stored_scenario=data.use_stored_scenario
        )
    result = None
    if run.result is not None:
        result = RouteResultResponse(**run.result.to_dict())
    return OptimizeResponse(
        run_id=run.run_id,
        state=run.state.value,
        scenario=run.scenario.value if run.scenario else None,
        result=result,
        warnings=run.warnings,
        place_ids=planner.route_ids(),
    )


@router.delete("/{place_id}", response_model=RouteResponse)
async def remove_from_route(place_id: str):
    planner = get_default_planner()
    with translate_errors():
        planner.remove_from_route(place_id)
    return RouteResponse(place_ids=planner.route_ids())

"""
Places API routes.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from api.errors import translate_errors
from domain.models import IngestMode, Place
from services.planner import get_default_planner
from services.visits import visit_recency

router = APIRouter()
logger = logging.getLogger(__name__)


class VisitLogResponse(BaseModel):
    date: str
    note: str = ""


class PlaceResponse(BaseModel):
    id: str
    display_address: str
    raw_input: str
    lat: float
    lon: float
    visited: bool
    last_visit_at: Optional[str] = None
    visit_log: List[VisitLogResponse] = []
    photo_refs: List[str] = []
    geocode_failed: bool
    recency: str


class IngestRequest(BaseModel):
    text: str
    mode: str = "merge"


class IngestResponse(BaseModel):
    added: List[PlaceResponse]
    total: int


class PlaceUpdate(BaseModel):
    display_address: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    visited: Optional[bool] = None


class OrderRequest(BaseModel):
    place_ids: List[str]


class ReResolveRequest(BaseModel):
    text: Optional[str] = None


class VisitRequest(BaseModel):
    note: str = ""
    when: Optional[datetime] = None


class PhotoRequest(BaseModel):
    photo_ref: str


def place_to_response(place: Place) -> PlaceResponse:
    """Convert domain Place to API response."""
    return PlaceResponse(
        id=place.id,
        display_address=place.display_address,
        raw_input=place.raw_input,
        lat=place.lat,
        lon=place.lon,
        visited=place.visited,
        last_visit_at=place.last_visit_at.isoformat() if place.last_visit_at else None,
        visit_log=[VisitLogResponse(date=v.date.isoformat(), note=v.note) for v in place.visit_log],
        photo_refs=list(place.photo_refs),
        geocode_failed=place.geocode_failed,
        recency=visit_recency(place),
    )


@router.get("", response_model=List[PlaceResponse])
async def list_places():
    planner = get_default_planner()
    return [place_to_response(p) for p in planner.list_places()]


@router.post("", response_model=IngestResponse)
async def ingest_places(data: IngestRequest):
    """Parse pasted text (one location per line) and add the places."""
    try:
        mode = IngestMode(data.mode.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid mode: {data.mode}")
    planner = get_default_planner()
    with translate_errors():
        added = await planner.ingest_places(data.text, mode)
    logger.info("Ingested %d place(s) in %s mode", len(added), mode.value)
    return IngestResponse(added=[place_to_response(p) for p in added], total=len(planner.list_places()))


@router.put("/order")
async def reorder_places(data: OrderRequest):
    planner = get_default_planner()
    with translate_errors():
        planner.reorder_places(data.place_ids)
    return {"place_ids": [p.id for p in planner.list_places()]}


@router.post("/clear-visited")
async def clear_visited():
    planner = get_default_planner()
    return {"cleared": planner.clear_visited()}


@router.get("/{place_id}", response_model=PlaceResponse)
async def get_place(place_id: str):
    planner = get_default_planner()
    with translate_errors():
        return place_to_response(planner.get_place(place_id))


@router.patch("/{place_id}", response_model=PlaceResponse)
async def update_place(place_id: str, data: PlaceUpdate):
    """Edit a place. Supplying both lat and lon marks the coordinates as usable."""
    planner = get_default_planner()
    with translate_errors():
        place = planner.get_place(place_id)
        if data.display_address is not None:
            place.display_address = data.display_address
        if (data.lat is None) != (data.lon is None):
            raise HTTPException(status_code=400, detail="lat and lon must be supplied together")
        if data.lat is not None:
            if not (-90.0 <= data.lat <= 90.0 and -180.0 <= data.lon <= 180.0):
                raise HTTPException(status_code=400, detail="Coordinates out of range")
            place.lat, place.lon, place.geocode_failed = data.lat, data.lon, False
        if data.visited is not None:
            place.visited = data.visited
        return place_to_response(planner.update_place(place))


@router.delete("/{place_id}")
async def delete_place(place_id: str):
    planner = get_default_planner()
    with translate_errors():
        planner.remove_place(place_id)
    return {"status": "deleted", "id": place_id}


@router.post("/{place_id}/resolve", response_model=PlaceResponse)
async def re_resolve_place(place_id: str, data: ReResolveRequest):
    """Geocode the place again, bypassing any cached result for the same text."""
    planner = get_default_planner()
    with translate_errors():
        place = await planner.re_resolve_place(place_id, data.text)
    return place_to_response(place)


@router.post("/{place_id}/toggle-visited", response_model=PlaceResponse)
async def toggle_visited(place_id: str):
    planner = get_default_planner()
    with translate_errors():
        return place_to_response(planner.toggle_visited(place_id))


@router.post("/{place_id}/visits", response_model=PlaceResponse)
async def log_visit(place_id: str, data: VisitRequest):
    planner = get_default_planner()
    with translate_errors():
        return place_to_response(planner.log_visit(place_id, data.note, data.when))


@router.post("/{place_id}/photos", response_model=PlaceResponse)
async def attach_photo(place_id: str, data: PhotoRequest):
    planner = get_default_planner()
    with translate_errors():
        return place_to_response(planner.attach_photo(place_id, data.photo_ref))

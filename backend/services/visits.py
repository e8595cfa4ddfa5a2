"""
Visit-logging and photo workflows.

These are thin collaborators over `PlaceStore.update`: they read a place,
build the modified copy and write it back as a full replace.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from domain.models import Place, VisitLog
from services.place_store import PlaceStore

FRESH_DAYS = 14
DUE_DAYS = 21
OVERDUE_DAYS = 28


def _as_naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def toggle_visited(store: PlaceStore, place_id: str) -> Place:
    place = store.get(place_id)
    return store.update(replace(place, visited=not place.visited))


def log_visit(store: PlaceStore, place_id: str, note: str = "", when: Optional[datetime] = None) -> Place:
    """Append a visit entry and mark the place visited."""
    place = store.get(place_id)
    when = _as_naive_utc(when) if when else datetime.utcnow()
    entry = VisitLog(date=when, note=note.strip())
    last = _as_naive_utc(place.last_visit_at) if place.last_visit_at else None
    return store.update(
        replace(
            place,
            visited=True,
            last_visit_at=when if last is None or when > last else last,
            visit_log=[*place.visit_log, entry],
        )
    )


def attach_photo(store: PlaceStore, place_id: str, photo_ref: str) -> Place:
    place = store.get(place_id)
    return store.update(replace(place, photo_refs=[*place.photo_refs, photo_ref]))


def clear_visited(store: PlaceStore) -> int:
    """Reset the visited flag on every place. Returns how many changed."""
    changed = 0
    for place in store.list():
        if place.visited:
            store.update(replace(place, visited=False))
            changed += 1
    return changed


def visit_recency(place: Place, now: Optional[datetime] = None) -> str:
    """Bucket a place by days since its last visit (drives pin colors)."""
    if place.last_visit_at is None:
        return "never"
    now = _as_naive_utc(now) if now else datetime.utcnow()
    days = (now - _as_naive_utc(place.last_visit_at)).days
    if days < 0:
        return "future"
    if days >= OVERDUE_DAYS:
        return "stale"
    if days >= DUE_DAYS:
        return "overdue"
    if days >= FRESH_DAYS:
        return "due"
    return "fresh"

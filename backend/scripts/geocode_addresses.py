"""Geocode a list of addresses and write them out as CSV.

Usage:
    python -m scripts.geocode_addresses addresses.txt -o places.csv

The input uses the same format as pasted route text: one location per
line, either an address or "lat,lng[,label]". Results go through the
shared geocoding cache, so re-running the script only looks up new lines.
Failed lookups are written with empty coordinates.
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import logging
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from domain.models import Place
from repositories.kv import InMemoryKeyValueStore, SqlKeyValueStore
from services.geocoding import AsyncThrottle, GeocodingCache, build_geocoder
from services.place_store import PlaceStore
from settings import settings

LOG = logging.getLogger("geocode_addresses")

CSV_FIELDS = ["name", "address", "lat", "lng"]


def write_csv(places: List[Place], out: TextIO) -> int:
    writer = csv.DictWriter(out, fieldnames=CSV_FIELDS)
    writer.writeheader()
    for place in places:
        writer.writerow(
            {
                "name": place.display_address,
                "address": place.raw_input,
                "lat": "" if place.geocode_failed else f"{place.lat:.6f}",
                "lng": "" if place.geocode_failed else f"{place.lon:.6f}",
            }
        )
    return len(places)


async def geocode_file(source: Path, store: PlaceStore) -> List[Place]:
    text = source.read_text(encoding="utf-8")
    return await store.ingest(text)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Geocode addresses into a CSV file")
    parser.add_argument("input", type=Path, help="text file with one location per line")
    parser.add_argument("-o", "--output", type=Path, help="CSV output path (default: stdout)")
    parser.add_argument("--no-cache", action="store_true", help="do not read or write the durable cache")
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")

    if not args.input.exists():
        LOG.error("Input file %s does not exist", args.input)
        return 1

    kv = InMemoryKeyValueStore() if args.no_cache else SqlKeyValueStore()
    geocoding = GeocodingCache(kv, build_geocoder(settings), AsyncThrottle(settings.GEOCODE_MAX_PER_SEC))
    places = asyncio.run(geocode_file(args.input, PlaceStore(geocoding)))

    failed = sum(1 for p in places if p.geocode_failed)
    if args.output:
        with args.output.open("w", newline="", encoding="utf-8") as fh:
            write_csv(places, fh)
        LOG.info("Wrote %d place(s) to %s", len(places), args.output)
    else:
        write_csv(places, sys.stdout)
    if failed:
        LOG.warning("%d of %d location(s) could not be geocoded", failed, len(places))
    return 0


if __name__ == "__main__":
    sys.exit(main())

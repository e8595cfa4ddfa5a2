"""Decoder for the encoded polyline format used by Google Directions and OSRM."""
from __future__ import annotations

from typing import List, Tuple


def decode_polyline(encoded: str, precision: int = 5) -> List[Tuple[float, float]]:
    """Decode an encoded polyline string into a list of (lat, lon) tuples."""
    coords: List[Tuple[float, float]] = []
    if not encoded:
        return coords
    factor = 10 ** precision
    index = 0
    lat = 0
    lon = 0
    length = len(encoded)
    while index < length:
        deltas = []
        for _ in range(2):
            result = 0
            shift = 0
            while True:
                if index >= length:
                    raise ValueError("Truncated polyline")
                byte = ord(encoded[index]) - 63
                index += 1
                result |= (byte & 0x1F) << shift
                shift += 5
                if byte < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lon += deltas[1]
        coords.append((lat / factor, lon / factor))
    return coords

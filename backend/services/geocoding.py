"""Forward geocoding with a durable cache and a FIFO request throttle.

Resolvers are plain synchronous `requests` clients (Nominatim or Google);
`GeocodingCache` runs them off the event loop, one throttle slot at a time,
and memoizes every outcome, failures included, under the raw input text.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import requests

from domain.errors import GeocodeFailure
from domain.models import GeocodeResult
from repositories.kv import KeyValueStore

logger = logging.getLogger(__name__)
_session = requests.Session()

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
FALLBACK_UA = "field-route-planner/0.1 (contact: example@example.com)"
DEFAULT_TIMEOUT_SEC = 5.0


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


def _normalize_query(address: str) -> str:
    """Collapse runs of whitespace before sending text upstream."""
    return " ".join(address.split())


class AsyncThrottle:
    """Allow at most `rate_per_sec` acquisitions per second.

    Waiters are served in FIFO order (asyncio.Lock is fair); nothing is
    ever rejected.
    """

    def __init__(
        self,
        rate_per_sec: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        if rate_per_sec <= 0:
            raise ValueError("rate_per_sec must be positive")
        self.min_interval = 1.0 / rate_per_sec
        self._clock = clock
        self._sleep = sleep
        self._lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._last_ts: Optional[float] = None

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._loop is not loop:
            # a lock is bound to the loop that first waits on it
            self._lock = asyncio.Lock()
            self._loop = loop
        async with self._lock:
            if self._last_ts is not None:
                delta = self._clock() - self._last_ts
                if delta < self.min_interval:
                    await self._sleep(self.min_interval - delta)
            self._last_ts = self._clock()


class Geocoder(ABC):
    """Synchronous address resolver. Raises GeocodeFailure on any failure."""

    name = "geocoder"

    @abstractmethod
    def geocode(self, address: str) -> GeocodeResult:
        ...


class NominatimGeocoder(Geocoder):
    name = "nominatim"

    def __init__(
        self,
        search_url: str = "https://nominatim.openstreetmap.org/search",
        user_agent: Optional[str] = None,
        country_codes: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SEC,
    ):
        if user_agent is None:
            logger.warning(
                "NOMINATIM_USER_AGENT not set in environment; using fallback UA. "
                "This may violate Nominatim usage policy."
            )
        ua = user_agent or FALLBACK_UA
        logger.debug("Nominatim User-Agent: %s", _redact_email(ua))
        self.search_url = search_url
        self.headers = {"User-Agent": ua, "Accept": "application/json"}
        self.country_codes = country_codes
        self.timeout = timeout

    def geocode(self, address: str) -> GeocodeResult:
        params = {
            "format": "jsonv2",
            "q": _normalize_query(address),
            "limit": "1",
            "addressdetails": "0",
        }
        if self.country_codes:
            params["countrycodes"] = self.country_codes

        try:
            resp = _session.get(self.search_url, params=params, headers=self.headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise GeocodeFailure(address, f"network error: {exc}") from exc
        if resp.status_code != 200:
            raise GeocodeFailure(address, f"HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise GeocodeFailure(address, "invalid JSON response") from exc

        if not isinstance(data, list) or not data:
            raise GeocodeFailure(address, "no results")
        item = data[0]
        try:
            return GeocodeResult(lat=float(item["lat"]), lon=float(item["lon"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodeFailure(address, "malformed result") from exc


class GoogleGeocoder(Geocoder):
    name = "google"

    def __init__(self, api_key: str, timeout: float = DEFAULT_TIMEOUT_SEC):
        if not api_key:
            raise ValueError("Google geocoding requires GOOGLE_MAPS_API_KEY")
        self.api_key = api_key
        self.timeout = timeout

    def geocode(self, address: str) -> GeocodeResult:
        params = {"address": _normalize_query(address), "key": self.api_key}
        try:
            resp = _session.get(GOOGLE_GEOCODE_URL, params=params, timeout=self.timeout)
            data = resp.json()
        except requests.RequestException as exc:
            raise GeocodeFailure(address, f"network error: {exc}") from exc
        except ValueError as exc:
            raise GeocodeFailure(address, "invalid JSON response") from exc

        if not isinstance(data, dict):
            raise GeocodeFailure(address, "malformed response")
        status = data.get("status")
        if status == "ZERO_RESULTS":
            raise GeocodeFailure(address, "no results")
        if status != "OK" or not data.get("results"):
            raise GeocodeFailure(address, f"status {status}")
        try:
            location = data["results"][0]["geometry"]["location"]
            return GeocodeResult(lat=float(location["lat"]), lon=float(location["lng"]))
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            raise GeocodeFailure(address, "malformed result") from exc


def build_geocoder(settings) -> Geocoder:
    """Pick the configured resolver."""
    if settings.GEOCODER_PROVIDER == "google":
        return GoogleGeocoder(settings.GOOGLE_MAPS_API_KEY or "")
    if settings.GEOCODER_PROVIDER != "nominatim":
        raise ValueError(f"Unknown GEOCODER_PROVIDER {settings.GEOCODER_PROVIDER!r}")
    return NominatimGeocoder(
        search_url=settings.NOMINATIM_SEARCH_URL,
        user_agent=settings.NOMINATIM_USER_AGENT,
        country_codes=settings.NOMINATIM_COUNTRY_CODES,
    )


class GeocodingCache:
    """Memoizing front for a Geocoder.

    Cache hits return without touching the throttle. A failed lookup is
    cached like a success and is not retried until `forget` is called or
    the text changes.
    """

    KEY_PREFIX = "geo:"

    def __init__(
        self,
        store: KeyValueStore,
        geocoder: Geocoder,
        throttle: Optional[AsyncThrottle] = None,
    ):
        self.store = store
        self.geocoder = geocoder
        self.throttle = throttle or AsyncThrottle(2.0)
        self._inflight: Dict[str, asyncio.Task] = {}

    def _key(self, text: str) -> str:
        return self.KEY_PREFIX + text

    def cached(self, text: str) -> Optional[GeocodeResult]:
        data = self.store.get(self._key(text))
        if data is None:
            return None
        return GeocodeResult.from_dict(data)

    def forget(self, text: str) -> None:
        self.store.delete(self._key(text))

    async def resolve(self, text: str) -> GeocodeResult:
        hit = self.cached(text)
        if hit is not None:
            logger.debug("[geocode] cache hit %r", text)
            return hit

        task = self._inflight.get(text)
        if task is None:
            logger.debug("[geocode] cache miss %r", text)
            task = asyncio.ensure_future(self._lookup(text))
            self._inflight[text] = task
            task.add_done_callback(lambda _t, key=text: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _lookup(self, text: str) -> GeocodeResult:
        await self.throttle.wait()
        try:
            result = await asyncio.to_thread(self.geocoder.geocode, text)
        except GeocodeFailure as exc:
            logger.warning("[geocode] %s failed for %r: %s", self.geocoder.name, text, exc.reason)
            result = GeocodeResult.failure(exc.reason)
        except Exception as exc:
            # one bad lookup must not sink the rest of a batch
            logger.exception("[geocode] %s raised for %r", self.geocoder.name, text)
            result = GeocodeResult.failure(f"unexpected error: {exc}")
        self.store.set(self._key(text), result.to_dict())
        return result

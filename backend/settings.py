import os
from pathlib import Path

# Basic settings helper to read environment configuration.

BACKEND_ROOT = Path(__file__).resolve().parent


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


class Settings:
    def __init__(self) -> None:
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

        # Geocoding
        self.GEOCODER_PROVIDER: str = os.getenv("GEOCODER_PROVIDER", "nominatim").lower()
        self.NOMINATIM_SEARCH_URL: str = os.getenv(
            "NOMINATIM_SEARCH_URL", "https://nominatim.openstreetmap.org/search"
        )
        self.NOMINATIM_USER_AGENT: str | None = os.getenv("NOMINATIM_USER_AGENT")
        self.NOMINATIM_COUNTRY_CODES: str | None = os.getenv("NOMINATIM_COUNTRY_CODES")
        self.GOOGLE_MAPS_API_KEY: str | None = os.getenv("GOOGLE_MAPS_API_KEY")
        self.GEOCODE_MAX_PER_SEC: float = _as_float(os.getenv("GEOCODE_MAX_PER_SEC"), 2.0)

        # Routing
        self.ROUTING_PROVIDER: str = os.getenv("ROUTING_PROVIDER", "none").lower()
        self.OSRM_BASE_URL: str = os.getenv("OSRM_BASE_URL", "https://router.project-osrm.org")
        self.ROUTING_PROFILE: str = os.getenv("ROUTING_PROFILE", "driving")
        self.PROVIDER_TIMEOUT_SEC: float = _as_float(os.getenv("PROVIDER_TIMEOUT_SEC"), 10.0)
        self.ROUTING_MAX_WAYPOINTS: int = _as_int(os.getenv("ROUTING_MAX_WAYPOINTS"), 25)
        self.TRAFFIC_MODEL: str | None = os.getenv("TRAFFIC_MODEL")
        self.LOCAL_AVG_SPEED_KMH: float = _as_float(os.getenv("LOCAL_AVG_SPEED_KMH"), 40.0)
        self.ROUTE_FALLBACK_ON_PROVIDER_ERROR: bool = _as_bool(
            os.getenv("ROUTE_FALLBACK_ON_PROVIDER_ERROR"), True
        )

        # Storage
        self.STORE_DB_PATH: str = os.getenv(
            "STORE_DB_PATH", str(BACKEND_ROOT / "data" / "route_planner.sqlite")
        )
        self.BOOTSTRAP_ADDRESSES_PATH: str | None = os.getenv("BOOTSTRAP_ADDRESSES_PATH")


settings = Settings()

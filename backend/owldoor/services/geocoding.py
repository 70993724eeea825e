"""
Multi-tier geocoding with automatic fallbacks

1. Local ZIP table (instant, free, offline)
2. Google Maps Geocoding API (primary, requires GOOGLE_MAPS_API_KEY)
3. Nominatim / OpenStreetMap (free backup, 1 request per second)
4. Mapbox (secondary backup, requires MAPBOX_TOKEN)

The first tier that returns a result wins. A failing tier is logged and the
chain moves on; if every tier fails the caller gets None.
"""

import math
import os
import threading
import time
from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

import googlemaps
import httpx

from ..logging_config import get_logger
from .zip_lookup import lookup_zip, ZipInfo

logger = get_logger(__name__)

GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
MAPBOX_TOKEN = os.getenv("MAPBOX_TOKEN")
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT", "OwlDoor/1.0")

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"
MAPBOX_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"
NOMINATIM_DELAY_SECONDS = 1.0

EARTH_RADIUS_MILES = 3959

US_STATE_CODES: Dict[str, str] = {
    "Alabama": "AL", "Alaska": "AK", "Arizona": "AZ", "Arkansas": "AR",
    "California": "CA", "Colorado": "CO", "Connecticut": "CT", "Delaware": "DE",
    "Florida": "FL", "Georgia": "GA", "Hawaii": "HI", "Idaho": "ID",
    "Illinois": "IL", "Indiana": "IN", "Iowa": "IA", "Kansas": "KS",
    "Kentucky": "KY", "Louisiana": "LA", "Maine": "ME", "Maryland": "MD",
    "Massachusetts": "MA", "Michigan": "MI", "Minnesota": "MN", "Mississippi": "MS",
    "Missouri": "MO", "Montana": "MT", "Nebraska": "NE", "Nevada": "NV",
    "New Hampshire": "NH", "New Jersey": "NJ", "New Mexico": "NM", "New York": "NY",
    "North Carolina": "NC", "North Dakota": "ND", "Ohio": "OH", "Oklahoma": "OK",
    "Oregon": "OR", "Pennsylvania": "PA", "Rhode Island": "RI", "South Carolina": "SC",
    "South Dakota": "SD", "Tennessee": "TN", "Texas": "TX", "Utah": "UT",
    "Vermont": "VT", "Virginia": "VA", "Washington": "WA", "West Virginia": "WV",
    "Wisconsin": "WI", "Wyoming": "WY", "District of Columbia": "DC",
}
_STATE_CODES_BY_LOWER_NAME = {name.lower(): code for name, code in US_STATE_CODES.items()}


class GeocodingError(Exception):
    """Raised by a provider tier; the chain catches it and falls through."""


@dataclass
class GeocodeResult:
    city: str
    state: str
    state_code: str
    latitude: float
    longitude: float
    formatted_address: str
    source: str  # local | google | nominatim | mapbox
    county: str = ""
    zip: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in miles."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def state_code_for(state_name: str) -> str:
    if not state_name:
        return ""
    if len(state_name) == 2:
        return state_name.upper()
    return _STATE_CODES_BY_LOWER_NAME.get(state_name.strip().lower(), "")


def build_query(request) -> str:
    parts = [request.address, request.city, request.state, request.zip]
    return ", ".join(p for p in parts if p)


def has_coordinates(request) -> bool:
    return request.lat is not None and request.lng is not None


def _default_gmaps_client():
    if not GOOGLE_MAPS_API_KEY:
        logger.warning("GOOGLE_MAPS_API_KEY not set - Google geocoding tier disabled")
        return None
    try:
        return googlemaps.Client(key=GOOGLE_MAPS_API_KEY)
    except ValueError as e:
        logger.error(f"Invalid Google Maps configuration: {e}")
        return None


class GeocodingService:
    """
    Geocoder that walks the provider tiers in order.

    Usage:
        service = GeocodingService()
        result = service.geocode(GeocodeRequest(zip="02108"))
    """

    _nominatim_lock = threading.Lock()
    _last_nominatim_call = 0.0

    def __init__(
        self,
        http_client: httpx.Client = None,
        gmaps_client=None,
        mapbox_token: str = None,
        zip_lookup: Callable[[str], Optional[ZipInfo]] = lookup_zip,
        nominatim_delay: float = NOMINATIM_DELAY_SECONDS,
    ):
        self.http = http_client or httpx.Client(timeout=10.0)
        self.gmaps = gmaps_client if gmaps_client is not None else _default_gmaps_client()
        self.mapbox_token = mapbox_token if mapbox_token is not None else MAPBOX_TOKEN
        self.zip_lookup = zip_lookup
        self.nominatim_delay = nominatim_delay

    def geocode(self, request) -> Optional[GeocodeResult]:
        logger.info(
            "Starting geocode request",
            extra={"action": "geocode_start", "extra_data": {"query": build_query(request),
                                                             "reverse": has_coordinates(request)}},
        )

        tiers = [
            ("local", self._from_local_zip),
            ("google", self._with_google),
            ("nominatim", self._with_nominatim),
            ("mapbox", self._with_mapbox),
        ]
        for name, tier in tiers:
            try:
                result = tier(request)
            except Exception as e:
                logger.warning(
                    f"{name} geocoding failed: {e}",
                    extra={"action": "geocode_tier_failed", "extra_data": {"tier": name}},
                )
                continue
            if result:
                logger.info(
                    f"{name} geocoding successful",
                    extra={"action": "geocode_success", "extra_data": {"tier": name}},
                )
                return result

        logger.error("All geocoding methods failed", extra={"action": "geocode_failed"})
        return None

    def batch_geocode(self, requests: List) -> List[Optional[GeocodeResult]]:
        """Geocode each request in order; failures come back as None."""
        return [self.geocode(r) for r in requests]

    # Tier 1
    def _from_local_zip(self, request) -> Optional[GeocodeResult]:
        if not request.zip:
            return None
        info = self.zip_lookup(request.zip)
        if not info:
            return None
        return GeocodeResult(
            city=info.city,
            county=info.county,
            state=info.state,
            state_code=info.state_code,
            zip=info.zip,
            latitude=info.latitude,
            longitude=info.longitude,
            formatted_address=f"{info.city}, {info.state_code} {info.zip}",
            source="local",
        )

    # Tier 2
    def _with_google(self, request) -> Optional[GeocodeResult]:
        if not self.gmaps:
            return None
        if has_coordinates(request):
            results = self.gmaps.reverse_geocode((request.lat, request.lng))
        else:
            query = build_query(request)
            if not query:
                return None
            results = self.gmaps.geocode(query)
        if not results:
            raise GeocodingError("Google returned no results")

        result = results[0]
        components = result.get("address_components", [])

        def component(kind: str, long_name: bool = True) -> str:
            for c in components:
                if kind in c.get("types", []):
                    return c.get("long_name" if long_name else "short_name", "")
            return ""

        location = result["geometry"]["location"]
        return GeocodeResult(
            city=(component("locality") or component("sublocality")
                  or component("administrative_area_level_3") or component("postal_town")),
            county=component("administrative_area_level_2"),
            state=component("administrative_area_level_1"),
            state_code=component("administrative_area_level_1", long_name=False),
            zip=component("postal_code"),
            latitude=location["lat"],
            longitude=location["lng"],
            formatted_address=result.get("formatted_address", ""),
            source="google",
        )

    def _throttle_nominatim(self) -> None:
        # Nominatim usage policy: at most one request per second per application
        cls = type(self)
        with cls._nominatim_lock:
            elapsed = time.monotonic() - cls._last_nominatim_call
            if elapsed < self.nominatim_delay:
                time.sleep(self.nominatim_delay - elapsed)
            cls._last_nominatim_call = time.monotonic()

    # Tier 3
    def _with_nominatim(self, request) -> Optional[GeocodeResult]:
        headers = {"User-Agent": NOMINATIM_USER_AGENT}
        if has_coordinates(request):
            self._throttle_nominatim()
            resp = self.http.get(
                NOMINATIM_REVERSE_URL,
                params={"lat": request.lat, "lon": request.lng, "format": "json", "addressdetails": 1},
                headers=headers,
            )
            resp.raise_for_status()
            result = resp.json()
            if not result or "error" in result:
                return None
        else:
            query = build_query(request)
            if not query:
                return None
            self._throttle_nominatim()
            resp = self.http.get(
                NOMINATIM_URL,
                params={
                    "q": query,
                    "format": "json",
                    "addressdetails": 1,
                    "limit": 1,
                    "countrycodes": request.country or "us",
                },
                headers=headers,
            )
            resp.raise_for_status()
            results = resp.json()
            if not results:
                return None
            result = results[0]

        address = result.get("address") or {}
        state = address.get("state", "")
        return GeocodeResult(
            city=address.get("city") or address.get("town") or address.get("village") or "",
            county=address.get("county", ""),
            state=state,
            state_code=state_code_for(state),
            zip=address.get("postcode", ""),
            latitude=float(result["lat"]),
            longitude=float(result["lon"]),
            formatted_address=result.get("display_name", ""),
            source="nominatim",
        )

    # Tier 4
    def _with_mapbox(self, request) -> Optional[GeocodeResult]:
        if not self.mapbox_token:
            logger.warning("MAPBOX_TOKEN not set - Mapbox geocoding tier skipped")
            return None
        if has_coordinates(request):
            query = f"{request.lng},{request.lat}"
        else:
            query = build_query(request)
        if not query:
            return None

        resp = self.http.get(
            f"{MAPBOX_URL}/{quote(query)}.json",
            params={"access_token": self.mapbox_token, "country": "us", "limit": 1},
        )
        resp.raise_for_status()
        features = resp.json().get("features") or []
        if not features:
            return None

        feature = features[0]
        lng, lat = feature["center"]
        city = state = state_code = county = postcode = ""
        for ctx in feature.get("context", []):
            ctx_id = ctx.get("id", "")
            if ctx_id.startswith("place."):
                city = ctx.get("text", "")
            elif ctx_id.startswith("region."):
                state = ctx.get("text", "")
                state_code = (ctx.get("short_code") or "").replace("US-", "").upper()
            elif ctx_id.startswith("district."):
                county = ctx.get("text", "")
            elif ctx_id.startswith("postcode."):
                postcode = ctx.get("text", "")

        return GeocodeResult(
            city=city,
            county=county,
            state=state,
            state_code=state_code,
            zip=postcode,
            latitude=lat,
            longitude=lng,
            formatted_address=feature.get("place_name", ""),
            source="mapbox",
        )


_service: Optional[GeocodingService] = None


def get_geocoding_service() -> GeocodingService:
    """Process-wide service (FastAPI dependency)."""
    global _service
    if _service is None:
        _service = GeocodingService()
    return _service

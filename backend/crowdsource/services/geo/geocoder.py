"""
Geocoding collaborator.

Geocoder is the interface the Location Resolver depends on;
NominatimGeocoder talks to a Nominatim-compatible HTTP API with a bounded
timeout so a slow upstream only degrades the single report being resolved.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from ...config import (
    GEOCODER_URL, GEOCODER_TIMEOUT_SECONDS, GEOCODER_COUNTRY_CODES, GEOCODER_USER_AGENT,
)
from ..errors import ExternalServiceError


logger = logging.getLogger(__name__)

# Address components specific enough to call a reverse lookup exact
SPECIFIC_ADDRESS_KEYS = (
    "amenity", "building", "house_number", "road", "neighbourhood",
    "suburb", "quarter", "hamlet", "village",
)


@dataclass(frozen=True)
class GeocodeCandidate:
    name: str
    display_name: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class PlaceMatch:
    """Reverse geocoding answer. exact=False means only a coarse area was found."""
    name: str
    exact: bool


class Geocoder:
    def geocode(self, text: str) -> List[GeocodeCandidate]:
        raise NotImplementedError

    def reverse_geocode(self, latitude: float, longitude: float) -> Optional[PlaceMatch]:
        raise NotImplementedError


class NominatimGeocoder(Geocoder):
    def __init__(
        self,
        base_url: str = GEOCODER_URL,
        timeout: float = GEOCODER_TIMEOUT_SECONDS,
        country_codes: str = GEOCODER_COUNTRY_CODES,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.country_codes = country_codes
        self.client = client or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": GEOCODER_USER_AGENT},
        )

    def _get(self, path: str, params: dict):
        try:
            response = self.client.get(f"{self.base_url}{path}", params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Geocoder request to {path} failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError(f"Geocoder returned invalid JSON: {e}") from e

    def geocode(self, text: str) -> List[GeocodeCandidate]:
        params = {"q": text, "format": "jsonv2", "limit": 5}
        if self.country_codes:
            params["countrycodes"] = self.country_codes
        results = self._get("/search", params)
        if results is None:
            return []
        if not isinstance(results, list):
            raise ExternalServiceError(f"Geocoder returned an unexpected search payload: {results!r:.200}")

        candidates = []
        for item in results:
            if not isinstance(item, dict):
                logger.debug(f"Skipping non-object geocoder candidate: {item!r}")
                continue
            try:
                candidates.append(GeocodeCandidate(
                    name=item.get("name") or item.get("display_name", "").split(",")[0],
                    display_name=item.get("display_name", ""),
                    latitude=float(item["lat"]),
                    longitude=float(item["lon"]),
                ))
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Skipping malformed geocoder candidate: {item}")
        return candidates

    def reverse_geocode(self, latitude: float, longitude: float) -> Optional[PlaceMatch]:
        data = self._get("/reverse", {"lat": latitude, "lon": longitude, "format": "jsonv2"})
        if not isinstance(data, dict) or "error" in data:
            return None

        address = data.get("address") or {}
        name = data.get("name") or data.get("display_name")
        if not name:
            return None
        exact = any(address.get(key) for key in SPECIFIC_ADDRESS_KEYS)
        return PlaceMatch(name=name, exact=exact)

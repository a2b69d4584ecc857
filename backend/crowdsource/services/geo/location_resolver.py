"""
Location Resolver

Turns a live coordinate share or a typed place name into a LocationResult
with a confidence tier. Owns only the confidence policy and priority order;
the lookups themselves go to the Geocoder collaborator.

Priority: live coordinates outrank free text.

Confidence:
- live coordinates: HIGH on an exact reverse match, otherwise MEDIUM
- free text: HIGH on a unique/exact forward match, otherwise LOW
- geocoder unavailable: live -> MEDIUM, text -> LOW (never blocks a report)
"""
import logging
from typing import List, Optional

from ...models.db_models import LocationSource
from ...models.domain import (
    FreeTextLocation, LiveCoordinates, LocationConfidence, LocationResult,
)
from ..errors import ExternalServiceError
from ..validation import require_coordinates
from .geocoder import GeocodeCandidate, Geocoder


logger = logging.getLogger(__name__)


class LocationResolver:
    def __init__(self, geocoder: Geocoder):
        self.geocoder = geocoder

    def resolve(
        self,
        live: Optional[LiveCoordinates] = None,
        text: Optional[FreeTextLocation] = None,
    ) -> LocationResult:
        """Resolve whichever inputs are present, live coordinates first."""
        if live is not None:
            return self.resolve_coordinates(live, typed_text=text.text if text else None)
        if text is not None and text.text and text.text.strip():
            return self.resolve_text(text)
        return LocationResult.empty()

    def resolve_coordinates(self, live: LiveCoordinates, typed_text: Optional[str] = None) -> LocationResult:
        latitude, longitude = require_coordinates(live.latitude, live.longitude)

        try:
            match = self.geocoder.reverse_geocode(latitude, longitude)
        except ExternalServiceError as e:
            logger.warning(f"Reverse geocoding unavailable for ({latitude}, {longitude}): {e}")
            match = None

        confidence = LocationConfidence.HIGH if match and match.exact else LocationConfidence.MEDIUM

        # Device-supplied description wins over typed text, which wins over the lookup
        normalized = live.description or typed_text or (match.name if match else None)

        if match and match.exact:
            details = f"Location verified near {match.name}"
        elif match:
            details = f"Approximate area: {match.name}"
        else:
            details = "Coordinates recorded, place name unavailable"

        logger.info(f"Live location ({latitude}, {longitude}) resolved with {confidence.value} confidence")
        return LocationResult(
            confidence=confidence,
            source=LocationSource.LIVE_SHARE,
            latitude=latitude,
            longitude=longitude,
            normalized_text=normalized,
            details=details,
        )

    def resolve_text(self, text: FreeTextLocation) -> LocationResult:
        query = text.text.strip()

        try:
            candidates = self.geocoder.geocode(query)
        except ExternalServiceError as e:
            logger.warning(f"Geocoding unavailable for '{query}': {e}")
            candidates = []

        best = self._unique_match(query, candidates)
        if best is None:
            details = "Location not found" if not candidates else f"Ambiguous location ({len(candidates)} matches)"
            logger.info(f"Text location '{query}' resolved with low confidence: {details}")
            return LocationResult(
                confidence=LocationConfidence.LOW,
                source=LocationSource.TEXT_GEOCODED,
                normalized_text=query,
                details=details,
            )

        logger.info(f"Text location '{query}' matched {best.display_name}")
        return LocationResult(
            confidence=LocationConfidence.HIGH,
            source=LocationSource.TEXT_GEOCODED,
            latitude=best.latitude,
            longitude=best.longitude,
            normalized_text=best.display_name or best.name,
            details=f"Matched {best.name}",
        )

    @staticmethod
    def _unique_match(query: str, candidates: List[GeocodeCandidate]) -> Optional[GeocodeCandidate]:
        if len(candidates) == 1:
            return candidates[0]
        wanted = query.lower()
        exact = [c for c in candidates if c.name.lower() == wanted]
        if len(exact) == 1:
            return exact[0]
        return None

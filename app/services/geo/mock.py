"""
Mock Geocoder Implementation

Simulates a geocoding provider without making real API calls.
Used when GEOCODER_PROVIDER=mock for local development and demos.

Behavior:
    - Deterministic coordinates: the same query always maps to the same point
    - Points are scattered within ~5 km of a configured city centre
    - Optional simulated latency and random provider failures
"""

import asyncio
import hashlib
import logging
import random
from typing import Optional

from app.core.config import get_settings
from app.core.exceptions import GeocodeUnavailable
from app.services.geo.base import BaseGeocoder, GeoPoint, normalize_cache_key

logger = logging.getLogger(__name__)


class MockGeocoder(BaseGeocoder):
    """
    Mock implementation of the geocoder.

    Attributes:
        failure_rate: Probability of a simulated provider outage (0.0-1.0)
        min_latency: Minimum response time in seconds
        max_latency: Maximum response time in seconds

    Example:
        >>> geocoder = MockGeocoder()
        >>> await geocoder.geocode("1 Yonge St, Toronto, ON, CA")
        GeoPoint(lat=43.67..., lon=-79.35...)
    """

    # Spread of generated points around the centre, in degrees
    SPREAD_DEGREES = 0.05

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        center: Optional[GeoPoint] = None,
    ):
        settings = get_settings()

        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.center = center or GeoPoint(
            lat=settings.mock_geocoder_center_lat,
            lon=settings.mock_geocoder_center_lon,
        )

        logger.info(
            f"MockGeocoder initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"center={self.center.lat},{self.center.lon})"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    async def _simulate_latency(self) -> None:
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    def _should_fail(self) -> bool:
        """Determine if this request should simulate a failure."""
        return self.failure_rate > 0 and random.random() < self.failure_rate

    def _offsets(self, query: str) -> tuple[float, float]:
        """Two stable offsets in [-1, 1] derived from the query text."""
        digest = hashlib.sha256(normalize_cache_key(query).encode("utf-8")).digest()
        a = int.from_bytes(digest[:4], "big") / 0xFFFFFFFF
        b = int.from_bytes(digest[4:8], "big") / 0xFFFFFFFF
        return a * 2 - 1, b * 2 - 1

    async def geocode(self, query: str) -> Optional[GeoPoint]:
        await self._simulate_latency()

        if self._should_fail():
            logger.debug("Mock: Simulated geocoder failure")
            raise GeocodeUnavailable("Geocoding service temporarily unavailable")

        if not query or not query.strip():
            return None

        d_lat, d_lon = self._offsets(query)
        point = GeoPoint(
            lat=round(self.center.lat + d_lat * self.SPREAD_DEGREES, 6),
            lon=round(self.center.lon + d_lon * self.SPREAD_DEGREES, 6),
        )
        logger.debug(f"Mock: '{query}' -> {point.lat},{point.lon}")
        return point

    async def health_check(self) -> bool:
        """Mock health check always returns True."""
        logger.debug("Mock: Geocoder health check passed")
        return True

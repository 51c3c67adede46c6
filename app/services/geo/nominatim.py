"""
Nominatim Geocoder Implementation

Production geocoder backed by the OpenStreetMap Nominatim search API.

Usage policy requirements:
    - Every request carries an identifying User-Agent (GEOCODER_USER_AGENT)
    - Results are cached by GeoResolver to keep request volume low

API Documentation:
    https://nominatim.org/release-docs/latest/api/Search/
"""

import logging
from datetime import datetime
from typing import Optional

import httpx

from app.core.config import get_settings
from app.core.exceptions import GeocodeUnavailable
from app.services.geo.base import BaseGeocoder, GeoPoint

logger = logging.getLogger(__name__)


class NominatimGeocoder(BaseGeocoder):
    """
    Nominatim search client.

    Example:
        >>> geocoder = NominatimGeocoder()
        >>> await geocoder.geocode("1 Yonge St, Toronto, ON, CA")
        GeoPoint(lat=43.64..., lon=-79.37...)
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        url: Optional[str] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the geocoder.

        Args:
            client: Shared HTTP client; one is created when omitted
            url: Search endpoint (defaults to GEOCODER_URL)
            user_agent: Identifying User-Agent (defaults to GEOCODER_USER_AGENT)
            timeout: Per-request timeout in seconds
        """
        settings = get_settings()

        self._url = url or settings.geocoder_url
        self._user_agent = user_agent or settings.geocoder_user_agent
        self._timeout = timeout or settings.provider_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

        logger.info(f"NominatimGeocoder initialized (url={self._url})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "nominatim"

    async def geocode(self, query: str) -> Optional[GeoPoint]:
        """Return the first Nominatim match for ``query``."""
        start_time = datetime.now()

        try:
            response = await self._client.get(
                self._url,
                params={"format": "json", "q": query, "limit": 1},
                headers={"User-Agent": self._user_agent},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Nominatim: timeout for '{query}'")
            raise GeocodeUnavailable("Geocoder timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Nominatim: transport error - {e}")
            raise GeocodeUnavailable(f"Geocoder unreachable: {e}") from e

        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000

        if response.status_code != 200:
            logger.warning(
                f"Nominatim: HTTP {response.status_code} for '{query}' "
                f"({elapsed_ms:.0f}ms)"
            )
            raise GeocodeUnavailable(f"Geocoder returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise GeocodeUnavailable("Geocoder returned invalid JSON") from e

        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            logger.debug(f"Nominatim: no result for '{query}' ({elapsed_ms:.0f}ms)")
            return None

        first = data[0]
        try:
            point = GeoPoint(lat=float(first["lat"]), lon=float(first["lon"]))
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Nominatim: result without usable coordinates for '{query}'")
            return None

        if not point.is_valid:
            logger.warning(f"Nominatim: out-of-range coordinates for '{query}'")
            return None

        logger.debug(f"Nominatim: '{query}' -> {point.lat},{point.lon} ({elapsed_ms:.0f}ms)")
        return point

    async def health_check(self) -> bool:
        """Geocode a well-known place to verify connectivity."""
        try:
            return await self.geocode("Toronto, ON, CA") is not None
        except GeocodeUnavailable as e:
            logger.error(f"Nominatim: Health check failed - {e}")
            return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

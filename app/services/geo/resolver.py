"""
Geo Resolver

Turns an Address into a GeoPoint through a geocoder, with caching and a
staged fallback chain of progressively coarser queries:

    1. street lines, city, province, postal code, country
    2. city, postal code, country
    3. city, province, country

Resolution never raises for an unknown address or a geocoder outage; the
caller gets None and falls back to the flat delivery fee.
"""

import asyncio
import logging
from typing import Optional

from app.core.cache import BaseCache
from app.core.exceptions import GeocodeUnavailable
from app.services.geo.base import (
    Address,
    BaseGeocoder,
    GeoPoint,
    build_query_parts,
    join_query,
    normalize_cache_key,
)
from app.services.geo.distance import haversine_km

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "geocode:"


class GeoResolver:
    """
    Cached, fail-soft address resolution.

    Both hits and "not found" outcomes are cached, each with its own TTL, so
    an ungeocodable address does not cost three provider calls on every
    request. Geocoder outages are not cached.

    Example:
        >>> resolver = GeoResolver(MockGeocoder(), MemoryCache())
        >>> await resolver.resolve(Address(["1 Yonge St"], "Toronto", "ON"))
        GeoPoint(lat=..., lon=...)
    """

    def __init__(
        self,
        geocoder: BaseGeocoder,
        cache: BaseCache,
        default_country: Optional[str] = None,
        positive_ttl_seconds: float = 86_400,
        negative_ttl_seconds: float = 300,
    ):
        self.geocoder = geocoder
        self.cache = cache
        self.default_country = default_country
        self.positive_ttl_seconds = positive_ttl_seconds
        self.negative_ttl_seconds = negative_ttl_seconds

    def build_queries(self, address: Address) -> list[str]:
        """
        Ordered, de-duplicated queries to try for an address.

        Stages carrying nothing beyond the country are dropped.
        """
        parts = build_query_parts(address, self.default_country)
        country = parts["country"]
        stages = [
            join_query(
                *parts["street"],
                parts["city"],
                parts["province"],
                parts["postal_code"],
                country,
            ),
            join_query(parts["city"], parts["postal_code"], country),
            join_query(parts["city"], parts["province"], country),
        ]

        queries: list[str] = []
        seen: set[str] = set()
        for query in stages:
            key = normalize_cache_key(query)
            if not key or key == normalize_cache_key(country) or key in seen:
                continue
            seen.add(key)
            queries.append(query)
        return queries

    async def resolve(self, address: Optional[Address]) -> Optional[GeoPoint]:
        """
        Resolve an address to coordinates.

        Args:
            address: Address with at least one non-empty street line

        Returns:
            GeoPoint, or None when the address is incomplete, unknown, or the
            geocoder is unavailable
        """
        if address is None or not address.has_street:
            return None

        queries = self.build_queries(address)
        if not queries:
            return None

        cache_key = CACHE_KEY_PREFIX + normalize_cache_key(queries[0])
        cached = await self._cache_get(cache_key)
        if cached is not None:
            if cached.get("missing"):
                logger.debug(f"GeoResolver: cached miss for '{queries[0]}'")
                return None
            return GeoPoint(lat=cached["lat"], lon=cached["lon"])

        try:
            for stage, query in enumerate(queries, start=1):
                point = await self.geocoder.geocode(query)
                if point is not None and point.is_valid:
                    if stage > 1:
                        logger.info(f"GeoResolver: resolved '{queries[0]}' with fallback query '{query}'")
                    await self._cache_set(cache_key, point.to_dict(), self.positive_ttl_seconds)
                    return point
        except GeocodeUnavailable as e:
            logger.warning(f"GeoResolver: geocoder unavailable for '{queries[0]}' - {e}")
            return None

        logger.info(f"GeoResolver: no result for '{queries[0]}'")
        await self._cache_set(cache_key, {"missing": True}, self.negative_ttl_seconds)
        return None

    async def _cache_get(self, key: str) -> Optional[dict]:
        """Cache lookup; an unreachable cache counts as a miss."""
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning(f"GeoResolver: cache read failed for '{key}' - {e}")
            return None

    async def _cache_set(self, key: str, value: dict, ttl_seconds: float) -> None:
        """Cache write; an unreachable cache skips the write."""
        try:
            await self.cache.set(key, value, ttl_seconds)
        except Exception as e:
            logger.warning(f"GeoResolver: cache write failed for '{key}' - {e}")

    async def distance_between_addresses(
        self,
        pickup: Address,
        dropoff: Address,
    ) -> Optional[float]:
        """Resolve both addresses concurrently and return their distance in km."""
        pickup_point, dropoff_point = await asyncio.gather(
            self.resolve(pickup),
            self.resolve(dropoff),
        )
        return haversine_km(pickup_point, dropoff_point)

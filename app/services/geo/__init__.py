"""
Geo Service Factory

Provides a single entry point for obtaining the geocoder and the cached
resolver built on top of it. GEOCODER_PROVIDER selects Nominatim or the
mock geocoder.

Usage:
    from app.services.geo import get_geo_resolver

    resolver = get_geo_resolver()
    point = await resolver.resolve(address)
"""

import logging
from functools import lru_cache

from app.core.cache import BaseCache, create_cache
from app.core.config import get_settings
from app.services.geo.base import (
    Address,
    BaseGeocoder,
    GeoPoint,
    build_geocode_query,
    split_province_postal,
)
from app.services.geo.distance import distance_fee_cents, haversine_km
from app.services.geo.mock import MockGeocoder
from app.services.geo.nominatim import NominatimGeocoder
from app.services.geo.resolver import GeoResolver

logger = logging.getLogger(__name__)


@lru_cache()
def get_geocoder() -> BaseGeocoder:
    """
    Get the configured geocoder instance.

    Returns:
        BaseGeocoder: MockGeocoder or NominatimGeocoder
    """
    settings = get_settings()

    if settings.geocoder_provider.lower() == "mock":
        logger.info("Geo Service: Using MockGeocoder")
        return MockGeocoder()

    logger.info(f"Geo Service: Using NominatimGeocoder ({settings.env_mode.value} mode)")
    return NominatimGeocoder()


@lru_cache()
def get_geocode_cache() -> BaseCache:
    """Process-wide geocode cache."""
    settings = get_settings()
    return create_cache(
        settings.cache_backend,
        namespace="geocode",
        redis_url=settings.redis_url,
        max_entries=settings.cache_max_entries,
    )


@lru_cache()
def get_geo_resolver() -> GeoResolver:
    """Get the process-wide resolver (geocoder + cache)."""
    settings = get_settings()
    return GeoResolver(
        geocoder=get_geocoder(),
        cache=get_geocode_cache(),
        default_country=settings.default_country,
        positive_ttl_seconds=settings.geocode_cache_ttl_seconds,
        negative_ttl_seconds=settings.geocode_negative_ttl_seconds,
    )


def reset_geo_service() -> None:
    """
    Clear the cached geo instances.

    Useful for testing or when configuration changes at runtime.
    """
    get_geo_resolver.cache_clear()
    get_geocode_cache.cache_clear()
    get_geocoder.cache_clear()
    logger.debug("Geo service cache cleared")


__all__ = [
    "get_geocoder",
    "get_geocode_cache",
    "get_geo_resolver",
    "reset_geo_service",
    "Address",
    "BaseGeocoder",
    "GeoPoint",
    "GeoResolver",
    "MockGeocoder",
    "NominatimGeocoder",
    "build_geocode_query",
    "split_province_postal",
    "haversine_km",
    "distance_fee_cents",
]

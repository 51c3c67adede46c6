"""
Geo Service Abstract Base Class

Defines the address and coordinate types shared by the geocoders, the
resolver and the delivery orchestrator, plus the interface contract every
geocoder implementation must follow.

Use Cases:
    - Geocoding pickup and drop-off addresses
    - Distance calculation for delivery fees
"""

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Address:
    """
    Structured mailing address.

    Attributes:
        street_address: Ordered street lines (e.g. ["100 King St W", "Suite 200"])
        city: City name
        province: Province/state name or code
        postal_code: Postal or ZIP code
        country: ISO country code; a configured default applies when empty
    """
    street_address: list[str] = field(default_factory=list)
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Address":
        """
        Build an Address from the storefront JSON shape.

        Accepts camelCase (streetAddress, postalCode) and snake_case keys, and
        a single string in place of the street line list.
        """
        data = data or {}
        lines = data.get("streetAddress", data.get("street_address")) or []
        if isinstance(lines, str):
            lines = [lines]
        return cls(
            street_address=[str(line) for line in lines if line is not None],
            city=data.get("city"),
            province=data.get("province", data.get("state")),
            postal_code=data.get("postalCode", data.get("postal_code")),
            country=data.get("country"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the storefront JSON shape."""
        return {
            "streetAddress": list(self.street_address),
            "city": self.city,
            "province": self.province,
            "postalCode": self.postal_code,
            "country": self.country,
        }

    @property
    def street_lines(self) -> list[str]:
        """Non-empty, trimmed street lines."""
        return [line.strip() for line in self.street_address if line and line.strip()]

    @property
    def has_street(self) -> bool:
        return bool(self.street_lines)


@dataclass(frozen=True)
class GeoPoint:
    """Latitude/longitude pair in degrees."""
    lat: float
    lon: float

    @property
    def is_valid(self) -> bool:
        """Finite and within the WGS84 ranges."""
        return (
            math.isfinite(self.lat)
            and math.isfinite(self.lon)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lon <= 180.0
        )

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


# Trailing Canadian (A1A 1A1) or US (12345, 12345-6789) postal code
_TRAILING_POSTAL = re.compile(
    r"\s+([A-Za-z]\d[A-Za-z][\s-]?\d[A-Za-z]\d|\d{5}(?:-\d{4})?)\s*$"
)


def _mixes_letters_and_digits(value: str) -> bool:
    return any(c.isdigit() for c in value) and any(c.isalpha() for c in value)


def split_province_postal(
    province: Optional[str],
    postal_code: Optional[str],
) -> tuple[Optional[str], Optional[str]]:
    """
    Separate a postal code typed into the province field.

    Only applies when the province mixes letters and digits and no postal
    code was given. A trailing postal code pattern is preferred; otherwise the
    last whitespace-delimited token is taken.

    Example:
        >>> split_province_postal("ON M5V 2T6", None)
        ('ON', 'M5V 2T6')
    """
    province = (province or "").strip()
    postal_code = (postal_code or "").strip()

    if postal_code or not province or not _mixes_letters_and_digits(province):
        return province or None, postal_code or None

    match = _TRAILING_POSTAL.search(province)
    if match:
        head = province[:match.start()].strip()
        if head:
            return head, match.group(1)

    head, _, tail = province.rpartition(" ")
    head = head.strip()
    if not head:
        return province, None
    return head, tail


def build_query_parts(address: Address, default_country: Optional[str] = None) -> dict[str, Any]:
    """
    Break an address into the fields used to assemble geocoding queries.

    Returns:
        dict with street (list), city, province, postal_code, country
    """
    province, postal_code = split_province_postal(address.province, address.postal_code)
    country = (address.country or "").strip() or (default_country or "")
    return {
        "street": address.street_lines,
        "city": (address.city or "").strip(),
        "province": province or "",
        "postal_code": postal_code or "",
        "country": country,
    }


def join_query(*parts: str) -> str:
    """Comma-join the non-empty parts."""
    return ", ".join(p for p in parts if p)


def build_geocode_query(address: Address, default_country: Optional[str] = None) -> str:
    """
    Full geocoding query: street lines, city, province, postal code, country.

    Example:
        >>> build_geocode_query(Address(["1 Yonge St"], "Toronto", "ON", "M5E 1E5", "CA"))
        '1 Yonge St, Toronto, ON, M5E 1E5, CA'
    """
    parts = build_query_parts(address, default_country)
    return join_query(
        *parts["street"],
        parts["city"],
        parts["province"],
        parts["postal_code"],
        parts["country"],
    )


def normalize_cache_key(query: str) -> str:
    """Lower-case and collapse whitespace so equivalent queries share an entry."""
    return " ".join(query.split()).lower()


class BaseGeocoder(ABC):
    """
    Abstract base class for geocoding providers.

    Implementations return the best match for a free-text query, None when
    the provider has no result, and raise GeocodeUnavailable when the
    provider cannot be reached or answers with something unreadable.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the geo provider.

        Returns:
            str: Provider name (e.g., "mock", "nominatim")
        """
        pass

    @abstractmethod
    async def geocode(self, query: str) -> Optional[GeoPoint]:
        """
        Look up a free-text address query.

        Args:
            query: Comma-separated address string

        Returns:
            GeoPoint of the first match, or None when nothing matched

        Raises:
            GeocodeUnavailable: network, status or parse failure
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the geocoder.

        Returns:
            bool: True if service is operational
        """
        pass

    async def aclose(self) -> None:
        """Release network resources held by the geocoder."""
        return None

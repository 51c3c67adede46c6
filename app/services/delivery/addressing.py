"""
Provider address formatting.

Uber Direct accepts a single comma-separated address string. Province and
state names are converted to their two-letter codes and postal codes are
upper-cased before sending.
"""

import re
import unicodedata
from typing import Optional

from app.services.geo.base import Address, split_province_postal


CANADIAN_REGIONS = {
    "alberta": "AB",
    "british columbia": "BC",
    "colombie britannique": "BC",
    "manitoba": "MB",
    "new brunswick": "NB",
    "nouveau brunswick": "NB",
    "newfoundland and labrador": "NL",
    "newfoundland": "NL",
    "terre neuve et labrador": "NL",
    "nova scotia": "NS",
    "nouvelle ecosse": "NS",
    "northwest territories": "NT",
    "territoires du nord ouest": "NT",
    "nunavut": "NU",
    "ontario": "ON",
    "prince edward island": "PE",
    "ile du prince edouard": "PE",
    "quebec": "QC",
    "saskatchewan": "SK",
    "yukon": "YT",
    "yukon territory": "YT",
}

US_STATES = {
    "alabama": "AL",
    "alaska": "AK",
    "arizona": "AZ",
    "arkansas": "AR",
    "california": "CA",
    "colorado": "CO",
    "connecticut": "CT",
    "delaware": "DE",
    "district of columbia": "DC",
    "washington dc": "DC",
    "florida": "FL",
    "georgia": "GA",
    "hawaii": "HI",
    "idaho": "ID",
    "illinois": "IL",
    "indiana": "IN",
    "iowa": "IA",
    "kansas": "KS",
    "kentucky": "KY",
    "louisiana": "LA",
    "maine": "ME",
    "maryland": "MD",
    "massachusetts": "MA",
    "michigan": "MI",
    "minnesota": "MN",
    "mississippi": "MS",
    "missouri": "MO",
    "montana": "MT",
    "nebraska": "NE",
    "nevada": "NV",
    "new hampshire": "NH",
    "new jersey": "NJ",
    "new mexico": "NM",
    "new york": "NY",
    "north carolina": "NC",
    "north dakota": "ND",
    "ohio": "OH",
    "oklahoma": "OK",
    "oregon": "OR",
    "pennsylvania": "PA",
    "rhode island": "RI",
    "south carolina": "SC",
    "south dakota": "SD",
    "tennessee": "TN",
    "texas": "TX",
    "utah": "UT",
    "vermont": "VT",
    "virginia": "VA",
    "washington": "WA",
    "west virginia": "WV",
    "wisconsin": "WI",
    "wyoming": "WY",
    "puerto rico": "PR",
    "guam": "GU",
    "us virgin islands": "VI",
    "american samoa": "AS",
    "northern mariana islands": "MP",
}

REGION_CODES = {**US_STATES, **CANADIAN_REGIONS}


def _lookup_key(value: str) -> str:
    """Lower-case, strip accents and punctuation, collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", value)
    ascii_text = "".join(c for c in decomposed if not unicodedata.combining(c))
    cleaned = re.sub(r"[^a-z0-9]+", " ", ascii_text.lower())
    return " ".join(cleaned.split())


def normalize_region_code(value: Optional[str]) -> str:
    """
    Convert a province/state name to its code.

    Values of three characters or fewer are treated as codes already and only
    upper-cased. Unrecognized names are returned trimmed.

    Example:
        >>> normalize_region_code("British Columbia")
        'BC'
        >>> normalize_region_code("ab")
        'AB'
    """
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= 3:
        return raw.upper()
    return REGION_CODES.get(_lookup_key(raw), raw)


def normalize_postal_code(value: Optional[str]) -> str:
    """Upper-case and single-space a postal code."""
    return " ".join((value or "").upper().split())


def format_provider_address(address: Address, default_country: str = "CA") -> str:
    """
    Render an address the way the delivery provider expects it.

    Example:
        >>> format_provider_address(Address(["100 Queen St W"], "Toronto", "Ontario", "m5h 2n2"))
        '100 Queen St W, Toronto, ON, M5H 2N2, CA'
    """
    province, postal_code = split_province_postal(address.province, address.postal_code)
    country = ((address.country or "").strip() or default_country).upper()
    parts = [
        *address.street_lines,
        (address.city or "").strip(),
        normalize_region_code(province),
        normalize_postal_code(postal_code),
        country,
    ]
    return ", ".join(p for p in parts if p)

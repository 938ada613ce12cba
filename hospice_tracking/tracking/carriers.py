"""
Carrier detection and tracking number extraction.

Single source of truth for carrier identity: display name, tracking page
domains, the provider's numeric carrier code and the tracking number formats
used for detection when only a number is known.
"""

import re
from dataclasses import dataclass, field
from typing import Optional


GENERIC_CARRIER_NAME = "Carrier"


@dataclass(frozen=True)
class Carrier:
    """A shipping carrier known to the tracking provider."""

    name: str
    code: Optional[int]  # provider carrier code, None = let provider auto-detect
    domains: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    number_patterns: tuple[re.Pattern, ...] = field(default=(), compare=False)

    def matches_name(self, value: str) -> bool:
        value = value.strip().lower()
        return value == self.name.lower() or value in (a.lower() for a in self.aliases)


def _patterns(*regexes: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(r, re.IGNORECASE) for r in regexes)


UPS = Carrier(
    name="UPS",
    code=100002,
    domains=("ups.com",),
    aliases=("united parcel service",),
    number_patterns=_patterns(r"^1Z[A-Z0-9]{16,18}$", r"^T\d{10}$"),
)
USPS = Carrier(
    name="USPS",
    code=21051,
    domains=("usps.com",),
    aliases=("us postal service", "united states postal service"),
    number_patterns=_patterns(r"^(91|92|93|94|95)\d{18,20}$", r"^[A-Z]{2}\d{9}US$"),
)
FEDEX = Carrier(
    name="FedEx",
    code=100003,
    domains=("fedex.com",),
    aliases=("fed ex", "federal express"),
    number_patterns=_patterns(r"^\d{12}$", r"^\d{15}$", r"^\d{20}$", r"^\d{22}$", r"^DT\d{12}$"),
)
DHL = Carrier(
    name="DHL",
    code=100001,
    domains=("dhl.com", "dhl.de"),
    aliases=("dhl express",),
    number_patterns=_patterns(r"^\d{10,11}$", r"^JD\d{18}$", r"^JJD\d{17}$"),
)
AMAZON = Carrier(
    name="Amazon",
    code=100143,
    domains=("amazon.com",),
    aliases=("amazon logistics",),
    number_patterns=_patterns(r"^TBA\d{12,}$"),
)
ONTRAC = Carrier(
    name="OnTrac",
    code=100049,
    domains=("ontrac.com",),
    number_patterns=_patterns(r"^[CD]\d{14}$"),
)
LASERSHIP = Carrier(
    name="LaserShip",
    code=100050,
    domains=("lasership.com",),
    number_patterns=_patterns(r"^1LS\d{12,15}$", r"^LX\d{8,15}$"),
)
PUROLATOR = Carrier(
    name="Purolator",
    code=None,
    domains=("purolator.com",),
)
CANADA_POST = Carrier(
    name="Canada Post",
    code=3041,
    domains=("canadapost",),
    aliases=("postes canada",),
)

# Order matters for number detection: more specific formats first
CARRIERS: tuple[Carrier, ...] = (
    UPS,
    AMAZON,
    LASERSHIP,
    ONTRAC,
    USPS,
    FEDEX,
    DHL,
    PUROLATOR,
    CANADA_POST,
)


# Tried in order; the first match wins
TRACKING_URL_PATTERNS: tuple[re.Pattern, ...] = _patterns(
    r"tracknumbers=([A-Z0-9]+)",       # FedEx
    r"tracknum=([A-Z0-9]+)",           # UPS
    r"InquiryNumber1=([A-Z0-9]+)",     # UPS (legacy)
    r"trknbr=([0-9]+)",                # FedEx (legacy)
    r"tracking[_-]?number=([A-Z0-9]+)",
    r"tracking[_-]id=([A-Z0-9]+)",     # DHL
    r"trackingId=([A-Z0-9]+)",         # Amazon
    r"tLabels=([A-Z0-9]+)",            # USPS
    r"tracking[=/]([A-Z0-9]+)",
    r"track[=/]([A-Z0-9]+)",
    r"[?&]id=([A-Z0-9]+)",
)

TRACKING_PATH_SEGMENT = re.compile(r"/([A-Z0-9]{10,30})(?:/|\?|#|$)", re.IGNORECASE)


def extract_tracking_number(tracking_url: Optional[str]) -> Optional[str]:
    """
    Extract a bare tracking number from a carrier tracking URL.

    Returns None when nothing in the URL looks like a tracking number.
    """
    if not tracking_url:
        return None

    for pattern in TRACKING_URL_PATTERNS:
        match = pattern.search(tracking_url)
        if match:
            return match.group(1)

    match = TRACKING_PATH_SEGMENT.search(tracking_url)
    if match:
        return match.group(1)

    return None


def detect_carrier_from_url(tracking_url: Optional[str]) -> Optional[Carrier]:
    """Detect carrier by the tracking page domain."""
    if not tracking_url:
        return None

    url = tracking_url.lower()
    for carrier in CARRIERS:
        if any(domain in url for domain in carrier.domains):
            return carrier
    return None


def detect_carrier_from_number(tracking_number: Optional[str]) -> Optional[Carrier]:
    """Detect carrier from tracking number format."""
    if not tracking_number:
        return None

    number = tracking_number.strip().upper()
    for carrier in CARRIERS:
        if any(p.match(number) for p in carrier.number_patterns):
            return carrier
    return None


def detect_carrier(
    tracking_url: Optional[str] = None,
    tracking_number: Optional[str] = None,
) -> Optional[Carrier]:
    """
    Infer the carrier from a tracking URL and/or number.

    The URL domain wins over number heuristics. None means the provider
    should auto-detect.
    """
    return detect_carrier_from_url(tracking_url) or detect_carrier_from_number(tracking_number)


def find_carrier(name: Optional[str]) -> Optional[Carrier]:
    """Look up a carrier by display name or alias (case-insensitive)."""
    if not name:
        return None
    for carrier in CARRIERS:
        if carrier.matches_name(name):
            return carrier
    return None


def carrier_code_for(name: Optional[str]) -> Optional[int]:
    carrier = find_carrier(name)
    return carrier.code if carrier else None


def carrier_for_code(code) -> Optional[Carrier]:
    """Map a provider carrier code back to a known carrier."""
    try:
        code = int(code)
    except (TypeError, ValueError):
        return None
    for carrier in CARRIERS:
        if carrier.code == code:
            return carrier
    return None


def display_name(carrier: Optional[Carrier]) -> str:
    return carrier.name if carrier else GENERIC_CARRIER_NAME

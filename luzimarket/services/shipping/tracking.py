"""Carrier tracking number validation and tracking URLs."""

import re
from typing import Optional
from urllib.parse import quote_plus

MIN_TRACKING_LENGTH = 5

TRACKING_PATTERNS: dict[str, re.Pattern] = {
    "fedex": re.compile(r"^[0-9]{12,22}$"),
    "ups": re.compile(r"^1Z[A-Z0-9]{16}$", re.IGNORECASE),
    "dhl": re.compile(r"^[0-9]{10,11}$"),
    "estafeta": re.compile(r"^[0-9]{10,22}$"),
}

GENERIC_TRACKING_PATTERN = re.compile(r"^[A-Z0-9]{5,30}$", re.IGNORECASE)

CARRIER_TRACKING_URLS: dict[str, str] = {
    "fedex": "https://www.fedex.com/fedextrack/?trknbr={tracking_number}",
    "ups": "https://www.ups.com/track?loc=en_US&tracknum={tracking_number}",
    "dhl": "https://www.dhl.com/en/express/tracking.html?AWB={tracking_number}",
    "estafeta": (
        "https://www.estafeta.com/Herramientas/Rastreo"
        "?wayBillType=0&wayBill={tracking_number}"
    ),
    "correos-de-mexico": (
        "https://www.correosdemexico.gob.mx/SSLServicios/RastreoEnvios/"
        "Rastreo.aspx?codigo={tracking_number}"
    ),
    "99minutos": "https://99minutos.com/rastreo/{tracking_number}",
}


def normalize_tracking_number(tracking_number: str) -> str:
    return re.sub(r"\s+", "", tracking_number)


def validate_tracking_number(tracking_number: str, carrier: Optional[str] = None) -> bool:
    """
    Check a tracking number against its carrier's format.

    Whitespace is ignored. Carriers without a known format, and calls without
    a carrier, accept 5 to 30 letters and digits.

    Args:
        tracking_number: Number as entered by the vendor
        carrier: Carrier code, e.g. ``ups``

    Returns:
        True if the number is well formed
    """
    cleaned = normalize_tracking_number(tracking_number or "")
    if len(cleaned) < MIN_TRACKING_LENGTH:
        return False

    pattern = TRACKING_PATTERNS.get(carrier.lower()) if carrier else None
    if pattern is not None:
        return bool(pattern.match(cleaned))
    return bool(GENERIC_TRACKING_PATTERN.match(cleaned))


def generate_tracking_url(tracking_number: str, carrier: str) -> str:
    """Public tracking URL for a carrier, falling back to a web search."""
    template = CARRIER_TRACKING_URLS.get(carrier.lower())
    if template is None:
        return "https://www.google.com/search?q=" + quote_plus(
            f"{carrier} tracking {tracking_number}"
        )
    return template.format(tracking_number=tracking_number)

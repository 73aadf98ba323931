"""Transporter detection and public tracking page links.

The transporter is inferred from the order's shipping method text. Only
transporters with a known public tracking page get a link.
"""

from enum import Enum
from urllib.parse import quote_plus


class Transporter(str, Enum):
    """Transporters with a known public tracking page, in detection order."""

    POSTNORD = "postnord"
    INSTABOX = "instabox"
    BRING = "bring"
    POSTEN = "posten"
    HELTHJEM = "helthjem"


def determine_transporter(*shipping_method_fields: str | None) -> Transporter | None:
    """Find the transporter named in any of the shipping method fields.

    Args:
        *shipping_method_fields: Method id, title and name, in any combination.

    Returns:
        The first matching Transporter, or None if unsupported.
    """
    haystack = " ".join((field or "").lower() for field in shipping_method_fields)
    for transporter in Transporter:
        if transporter.value in haystack:
            return transporter
    return None


def tracking_link(
    tracking_number: str | None,
    shipping_method: str | None,
    language: str = "en",
    *extra_method_fields: str | None,
) -> str | None:
    """Build the public tracking URL for a shipment.

    Args:
        tracking_number: Carrier tracking number.
        shipping_method: Shipping method id.
        language: Two-letter UI language; Bring and Posten get ``?lang=en``
            for English, PostNord embeds it in the path.
        *extra_method_fields: Shipping method title/name.

    Returns:
        URL string, or None when the number or method is missing or the
        transporter is unsupported.
    """
    if not tracking_number or not shipping_method:
        return None
    transporter = determine_transporter(shipping_method, *extra_method_fields)
    if transporter is None:
        return None

    number = quote_plus(tracking_number)
    lang = (language or "en")[:2].lower()
    lang_param = "?lang=en" if lang == "en" else ""

    if transporter is Transporter.POSTNORD:
        return f"https://tracking.postnord.com/{lang}/tracking?id={number}"
    if transporter is Transporter.INSTABOX:
        return f"https://track.instabox.io/{number}"
    if transporter is Transporter.BRING:
        return f"https://sporing.bring.no/sporing/{number}{lang_param}"
    if transporter is Transporter.POSTEN:
        return f"https://sporing.posten.no/sporing/{number}{lang_param}"
    return f"https://helthjem.no/sporing/{number}"

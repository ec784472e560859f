"""Utilities package."""

from .log_sanitizer import masked, sanitize_id, sanitize_ip, sanitize_phone
from .network import get_client_ip, ip_in_networks, normalize_ip_for_key
from .phone import InvalidPhoneNumberError, normalize_phone_number
from .timestamps import ensure_utc, from_unix, utc_now

__all__ = [
    "InvalidPhoneNumberError",
    "ensure_utc",
    "from_unix",
    "get_client_ip",
    "ip_in_networks",
    "masked",
    "normalize_ip_for_key",
    "normalize_phone_number",
    "sanitize_id",
    "sanitize_ip",
    "sanitize_phone",
    "utc_now",
]

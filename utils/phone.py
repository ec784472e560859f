"""Phone number normalization for the WhatsApp Cloud API."""

import re

from core.config import settings

# Formatting characters people type in phone numbers
_FORMATTING_CHARS = re.compile(r"[\s.\-()/]")
_VALID_NUMBER = re.compile(r"^\d{10,15}$")


class InvalidPhoneNumberError(ValueError):
    """Raised when a phone number cannot be turned into an international number."""


def normalize_phone_number(phone: str, country_code: str | None = None) -> str:
    """
    Convert a user-entered phone number to the digits-only international form.

    "06 12 34 56 78" -> "33612345678", "+33612345678" -> "33612345678".

    Args:
        phone: Phone number as typed
        country_code: Country code replacing a national leading 0

    Returns:
        International number without "+"

    Raises:
        InvalidPhoneNumberError: If the result is not 10 to 15 digits
    """
    if country_code is None:
        country_code = settings.phone_default_country_code

    cleaned = _FORMATTING_CHARS.sub("", phone or "")

    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    elif cleaned.startswith("00"):
        cleaned = cleaned[2:]
    elif cleaned.startswith("0"):
        cleaned = country_code + cleaned[1:]

    if not _VALID_NUMBER.match(cleaned):
        raise InvalidPhoneNumberError(f"Invalid phone number format: {phone!r}")

    return cleaned

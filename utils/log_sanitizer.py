"""Masking helpers for personal data written to logs."""

from core.config import settings

NOT_AVAILABLE = "N/A"


def sanitize_uid(uid: str | None) -> str:
    """Keep the first and last three characters of a Firebase UID."""
    if not uid:
        return NOT_AVAILABLE
    if len(uid) <= 6:
        return "***"
    return f"{uid[:3]}***{uid[-3:]}"


def sanitize_email(email: str | None) -> str:
    if not email:
        return NOT_AVAILABLE
    local, _, domain = email.partition("@")
    if not local or not domain:
        return "invalid@email"
    return f"{local[0]}***@{domain}"


def sanitize_id(value: int | str | None) -> str:
    """Keep the last three characters of a database ID."""
    if value is None or value == "":
        return NOT_AVAILABLE
    text = str(value)
    if len(text) <= 3:
        return "***"
    return f"***{text[-3:]}"


def sanitize_phone(phone: str | None) -> str:
    if not phone:
        return NOT_AVAILABLE
    if len(phone) <= 4:
        return "***"
    return f"{phone[:2]}***{phone[-2:]}"


def sanitize_ip(ip: str | None) -> str:
    if not ip:
        return NOT_AVAILABLE
    if ":" in ip:
        return ":".join(ip.split(":")[:3]) + ":***"
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.{parts[2]}.***"
    return "IP_INVALID"


def should_sanitize() -> bool:
    """Sanitization is always on outside development."""
    return not settings.is_development


def masked(value: str | int | None, kind: str = "id") -> str:
    """
    Sanitize a value for logging according to its kind.

    In development the raw value is logged to ease debugging.
    """
    if not should_sanitize():
        return NOT_AVAILABLE if value is None else str(value)

    if kind == "uid":
        return sanitize_uid(None if value is None else str(value))
    if kind == "email":
        return sanitize_email(None if value is None else str(value))
    if kind == "phone":
        return sanitize_phone(None if value is None else str(value))
    if kind == "ip":
        return sanitize_ip(None if value is None else str(value))
    return sanitize_id(value)

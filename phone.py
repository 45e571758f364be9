"""Phone number helpers."""

import re

_FORMATTING = re.compile(r"[\s\-\(\)\.]+")


def normalize_phone(phone: str) -> str:
    """
    Normalize a phone number to carry a leading "+".

    Formatting characters are stripped; no country code is invented.
    """
    if not phone:
        return ""
    cleaned = _FORMATTING.sub("", str(phone))
    if not cleaned.startswith("+"):
        cleaned = "+" + cleaned
    return cleaned


def validate_phone(phone: str) -> bool:
    """Check that a phone number looks like an international number."""
    if not phone:
        return False
    return bool(re.match(r"^\+?\d{7,15}$", _FORMATTING.sub("", phone)))

"""Email normalisation, the join key across every source."""
from typing import Any, Iterable


def normalise_email(raw: Any) -> str | None:
    """Trim and lower-case an email; returns None when there is no identity."""
    if not isinstance(raw, str):
        return None
    email = raw.strip().lower()
    return email or None


def primary_email(values: Iterable[Any] | str | None) -> str | None:
    """First usable email from a CRM email list.

    Entries may be plain strings or ``{"value": ..., "primary": ...}`` dicts.
    """
    if values is None:
        return None
    if isinstance(values, str):
        return normalise_email(values)
    for value in values:
        if isinstance(value, dict):
            value = value.get("value") or value.get("email")
        email = normalise_email(value)
        if email:
            return email
    return None

"""Field checks shared by Petsy records."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime, timezone
from email.utils import parseaddr

from .config import MAX_AGE_YEARS, MAX_PICTURES
from .errors import ValidationError

EMAIL_PATTERN = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)+$"
)
MAX_EMAIL_LENGTH = 320


def normalize_email(email: str | None) -> str:
    """Return a normalized email string for comparisons and storage."""
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    """Return True when an email has a pragmatic valid format."""
    if not email or len(email) > MAX_EMAIL_LENGTH:
        return False
    if "\r" in email or "\n" in email:
        return False
    _, parsed = parseaddr(email)
    if parsed != email:
        return False
    return bool(EMAIL_PATTERN.fullmatch(email))


def require_email(email: str | None) -> str:
    """Return the normalized email or raise ValidationError."""
    normalized = normalize_email(email)
    if not is_valid_email(normalized):
        raise ValidationError(f"invalid email address {email!r}")
    return normalized


def require_text(field: str, value: str | None) -> None:
    if not (value or "").strip():
        raise ValidationError(f"{field} cannot be empty")


def check_length(field: str, value: str | None, limit: int) -> None:
    if value is not None and len(value) > limit:
        raise ValidationError(f"{field} must be at most {limit} characters")


def check_pictures(pictures: Iterable[str] | None) -> None:
    items = list(pictures or [])
    if len(items) > MAX_PICTURES:
        raise ValidationError(f"at most {MAX_PICTURES} pictures are allowed")
    for picture in items:
        if not isinstance(picture, str) or not picture.strip():
            raise ValidationError("picture URLs must be non-empty strings")


def check_birthdate(value: datetime | None, now: datetime | None = None) -> None:
    """Reject birthdates in the future or implausibly far in the past."""
    if value is None:
        return
    current = now or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if value > current:
        raise ValidationError("birthdate cannot be in the future")
    age = current.year - value.year - ((current.month, current.day) < (value.month, value.day))
    if age > MAX_AGE_YEARS:
        raise ValidationError(f"birthdate cannot be more than {MAX_AGE_YEARS} years ago")


def check_range(field: str, value: float | None, low: float, high: float | None = None) -> None:
    if value is None:
        return
    if value < low or (high is not None and value > high):
        bound = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise ValidationError(f"{field} must be {bound}")

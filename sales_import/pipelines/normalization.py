"""Field normalization for imported sale payloads.

Dates, emails, display names and loosely typed numbers arrive in whatever
form the exporting system produced; everything here turns them into the
canonical values stored in the database without ever raising.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as date_parser

from ..config import settings

logger = logging.getLogger(__name__)

_SLASH_DATE = re.compile(r'^\s*(\d{1,2})/(\d{1,2})/(\d{4})(?:[\sT].*)?$')
_EMAIL = re.compile(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$')
_NAME_SEPARATORS = str.maketrans({'.': ' ', '_': ' ', '-': ' '})


def normalize_date(value: Any) -> str | None:
    """Normalize a textual date to ``YYYY-MM-DD``.

    ``DD/MM/YYYY`` is the export format and is tried first; anything else goes
    through dateutil. Unparseable input logs a warning and yields ``None``.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    match = _SLASH_DATE.match(text)
    try:
        if match:
            day, month, year = (int(part) for part in match.groups())
            return date(year, month, day).isoformat()
        return date_parser.parse(text).date().isoformat()
    except (ValueError, OverflowError) as e:
        logger.warning(f"Could not parse date {text!r}: {e}")
        return None


def parse_iso_date(value: str | None) -> date | None:
    """Turn a normalized ``YYYY-MM-DD`` string into a ``date`` for persistence."""
    if not value:
        return None
    return date.fromisoformat(value)


def format_export_date(value: date | datetime | str | None) -> str | None:
    """Render a stored date back into the ``DD/MM/YYYY`` export format."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.strftime('%d/%m/%Y')


def normalize_email(value: Any) -> str | None:
    """Trim and lower-case an email; empty or non-string values become ``None``."""
    if not isinstance(value, str):
        return None
    email = value.strip().lower()
    return email or None


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL.match(email))


def display_name_from_email(email: str | None, default: str | None = None) -> str:
    """Derive a human readable name from the local part of an email.

    ``"a.b@x.com"`` becomes ``"A B"``; an empty local part falls back to
    ``default``, or the configured default display name.
    """
    default = default or settings.imports.default_display_name
    if not email:
        return default
    local_part = email.split('@')[0].translate(_NAME_SEPARATORS)
    name = ' '.join(word.capitalize() for word in local_part.split(' ')).strip()
    return name or default


def as_number(value: Any) -> Decimal | None:
    """Return ``value`` as a Decimal when it is numeric (number or numeric string)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


def as_positive_int(value: Any) -> int | None:
    """Coerce a numeric id to a positive int, ``None`` when absent or not numeric."""
    number = as_number(value)
    # Ids fit in a signed 64-bit column; larger exponents are never ids
    if number is None or number.adjusted() > 18 or number != number.to_integral_value():
        return None
    result = int(number)
    return result if result > 0 else None


def is_paid(paid_amount: Any) -> bool:
    """An invoice status counts as paid when its paid amount is numeric and above zero."""
    number = as_number(paid_amount)
    return number is not None and number > 0

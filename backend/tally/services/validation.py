"""Field validators shared by the services and the request schemas.

Each validator returns the normalized value or raises ValidationError keyed
by field name, so the same message reaches a form whether the check fails
in a request model or in a service call.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation

import emoji

from tally.core.clock import to_utc
from tally.core.errors import ValidationError
from tally.services import recurrence

NAME_MAX_LENGTH = 100


def validate_name(value: str, field: str = "name") -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationError({field: "Bill name is required"})
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            {field: f"Bill name must be at most {NAME_MAX_LENGTH} characters"}
        )
    return name


def validate_amount(value, field: str = "amount") -> Decimal:
    """Positive, at most two decimal places. Floats go through str()."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError({field: "Amount must be a number"})
    if not amount.is_finite():
        raise ValidationError({field: "Amount must be a number"})
    if amount <= 0:
        raise ValidationError({field: "Amount must be greater than 0"})
    if amount.normalize().as_tuple().exponent < -2:
        raise ValidationError({field: "Amount must have at most 2 decimal places"})
    return amount.quantize(Decimal("0.01"))


def validate_emoji(value: str, field: str = "emoji") -> str:
    glyph = (value or "").strip()
    matched = "".join(e["emoji"] for e in emoji.emoji_list(glyph))
    if not glyph or matched != glyph:
        raise ValidationError({field: "Only emoji characters are allowed"})
    return glyph


def validate_rrule(value: str, field: str = "rrule") -> str:
    rule = (value or "").strip()
    try:
        recurrence.parse_rule(rule)
    except ValidationError as exc:
        raise ValidationError({field: str(exc)}) from exc
    return rule


def validate_instant(value, field: str) -> datetime:
    """Accept a datetime or a calendar date; return an aware UTC datetime."""
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValidationError({field: "Must be a valid date"})


def validate_schedule(dtstart: datetime, until: datetime | None) -> None:
    if until is not None and to_utc(until) <= to_utc(dtstart):
        raise ValidationError({"until": "Until must be after start date"})


def clean_optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    return text or None

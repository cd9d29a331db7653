"""Recurrence engine: evaluate RFC 5545 RRULEs over bounded windows.

Pure functions, no I/O. Callers deal in instants only; rule syntax stays in
this module.

Evaluation happens on naive UTC datetimes at one-second resolution, the way
``dateutil.rrule`` works internally (it drops microseconds from its anchor).
Every public function accepts aware or naive datetimes (naive is taken as
UTC) and returns aware UTC datetimes.
"""

import math
from datetime import datetime, timezone

from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, rrule, rrulestr

from tally.core.clock import to_utc, utc_now
from tally.core.errors import InvalidRecurrenceRule

SUPPORTED_FREQUENCIES = (YEARLY, MONTHLY, WEEKLY, DAILY)

INVALID_RULE_MESSAGE = (
    "RRULE must be valid and have frequency DAILY, WEEKLY, MONTHLY, or YEARLY"
)
INVALID_INTERVAL_MESSAGE = "RRULE interval must be at least 1"
INVALID_COUNT_MESSAGE = "RRULE count must be at least 1"


def parse_rule(rule: str) -> rrule:
    """Parse an RRULE string (``FREQ=...`` or ``RRULE:FREQ=...``).

    Raises InvalidRecurrenceRule when the rule is empty, malformed, expands to
    a rule set, repeats at an unsupported frequency, or has a non-positive
    INTERVAL or COUNT. Checks run on the parsed rule, so a repeated part is
    judged by the value dateutil keeps (the last one).
    """
    if not isinstance(rule, str) or not rule.strip():
        raise InvalidRecurrenceRule("Recurrence rule is required")

    try:
        parsed = rrulestr(rule.strip(), ignoretz=True)
    except (ValueError, TypeError) as exc:
        raise InvalidRecurrenceRule(INVALID_RULE_MESSAGE) from exc

    if not isinstance(parsed, rrule) or parsed._freq not in SUPPORTED_FREQUENCIES:
        raise InvalidRecurrenceRule(INVALID_RULE_MESSAGE)
    # A zero interval never advances, so expansion would not terminate.
    if parsed._interval < 1:
        raise InvalidRecurrenceRule(INVALID_INTERVAL_MESSAGE)
    if parsed._count is not None and parsed._count < 1:
        raise InvalidRecurrenceRule(INVALID_COUNT_MESSAGE)
    return parsed


def occurrences_in_range(
    rule: str,
    anchor_start: datetime,
    range_start: datetime | None = None,
    range_end: datetime | None = None,
    *,
    until: datetime | None = None,
    now: datetime | None = None,
) -> list[datetime]:
    """Every occurrence in ``[range_start, range_end]``, inclusive.

    ``range_start`` defaults to the anchor and ``range_end`` to ``now`` (wall
    clock when not given). ``until`` is the bill-level end bound, applied on
    top of any UNTIL/COUNT inside the rule.
    """
    anchored, start, end = _window(rule, anchor_start, range_start, range_end, until, now)
    if start > end:
        return []
    return [_aware(d) for d in anchored.between(start, end, inc=True)]


def is_active_in_range(
    rule: str,
    anchor_start: datetime,
    range_start: datetime | None = None,
    range_end: datetime | None = None,
    *,
    until: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    """True iff ``occurrences_in_range`` would be non-empty."""
    anchored, start, end = _window(rule, anchor_start, range_start, range_end, until, now)
    if start > end:
        return False
    first = anchored.after(start, inc=True)
    return first is not None and first <= end


def next_occurrence_at_or_after(
    rule: str,
    anchor_start: datetime,
    reference: datetime,
    *,
    until: datetime | None = None,
) -> datetime | None:
    """Earliest occurrence >= ``reference``; None once the schedule has ended."""
    anchored = _anchor(rule, anchor_start)
    found = anchored.after(_naive(reference), inc=True)
    if found is None:
        return None
    if until is not None and found > _naive(until):
        return None
    return _aware(found)


def days_until(moment: datetime, now: datetime) -> int:
    """Whole days from ``now`` to ``moment``, rounded up. Negative if past."""
    delta = to_utc(moment) - to_utc(now)
    return math.ceil(delta.total_seconds() / 86400)


def _anchor(rule: str, anchor_start: datetime) -> rrule:
    return parse_rule(rule).replace(dtstart=_naive(anchor_start))


def _window(rule, anchor_start, range_start, range_end, until, now):
    anchored = _anchor(rule, anchor_start)
    start = _naive(range_start if range_start is not None else anchor_start)
    if range_end is None:
        range_end = now if now is not None else utc_now()
    end = _naive(range_end)
    if until is not None:
        end = min(end, _naive(until))
    return anchored, start, end


def _naive(value: datetime) -> datetime:
    return to_utc(value).replace(tzinfo=None, microsecond=0)


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)

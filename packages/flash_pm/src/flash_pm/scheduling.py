"""
Recurrence calculator.

Computes when a trigger is next due. Every function here is pure: the
reference instant is always passed in, nothing reads the clock.
"""

from __future__ import annotations

import logging
import zoneinfo
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import TYPE_CHECKING, Any, Final

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError
from .schemas import TriggerType, UtcDatetime
from .triggers import CronEvaluator, StandardCronEvaluator

if TYPE_CHECKING:
    from .schemas import Trigger

logger = logging.getLogger(__name__)

UTC: Final[zoneinfo.ZoneInfo] = zoneinfo.ZoneInfo("UTC")

_TIMESTAMP = TypeAdapter(UtcDatetime)
_default_evaluator = StandardCronEvaluator()


def utc_now() -> datetime:
    """Wall-clock source for callers. Never used inside the calculator."""
    return datetime.now(dt_timezone.utc)


def parse_timestamp(value: Any, field: str) -> datetime | None:
    """
    Parses a datetime or ISO-8601 string into an aware UTC datetime.

    Raises:
        ValidationError: If ``value`` is not a recognizable timestamp.
    """
    if value is None:
        return None
    try:
        return _TIMESTAMP.validate_python(value)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, field) from e


def require_timestamp(value: Any, field: str = "now") -> datetime:
    parsed = parse_timestamp(value, field)
    if parsed is None:
        raise ValidationError(f"{field} is required")
    return parsed


def resolve_timezone(name: str | None) -> zoneinfo.ZoneInfo:
    """Returns the IANA zone ``name``; empty or unknown names fall back to UTC."""
    if not name or not name.strip():
        return UTC
    try:
        return zoneinfo.ZoneInfo(name.strip())
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return UTC


def compute_next_run(
    trigger_type: TriggerType | str,
    cron_expression: str | None = None,
    timezone: str | None = None,
    start_date: datetime | str | None = None,
    end_date: datetime | str | None = None,
    *,
    now: datetime | str,
    evaluator: CronEvaluator | None = None,
) -> datetime | None:
    """
    Computes the next occurrence of a trigger.

    Args:
        trigger_type: ``calendar`` or ``meter``.
        cron_expression: Rule of a calendar trigger, interpreted in ``timezone``.
        timezone: IANA zone name. Empty or unknown names mean UTC.
        start_date: Optional lower bound of the recurrence window.
        end_date: Optional upper bound of the recurrence window.
        now: Reference instant supplied by the caller.
        evaluator: Cron capability. Defaults to :class:`StandardCronEvaluator`.

    Returns:
        The first occurrence strictly after ``now`` (or at/after ``start_date``
        when the window opens in the future), as an aware UTC datetime.
        ``None`` when there is no next occurrence: meter triggers, calendar
        triggers without a rule or with an unparseable rule, an inverted
        window, or an occurrence past ``end_date``.

    Raises:
        ValidationError: If a timestamp or the trigger type is malformed.

    Examples:
        >>> compute_next_run(
        ...     "calendar",
        ...     "0 9 * * 1",
        ...     "America/New_York",
        ...     now="2024-01-10T12:00:00Z",
        ... )
        datetime.datetime(2024, 1, 15, 14, 0, tzinfo=datetime.timezone.utc)
    """
    reference = require_timestamp(now)
    start = parse_timestamp(start_date, "start_date")
    end = parse_timestamp(end_date, "end_date")

    try:
        kind = TriggerType(trigger_type)
    except ValueError as e:
        raise ValidationError(f"Unknown trigger type: {trigger_type!r}") from e

    # Meter triggers are advanced by usage readings, not by the clock
    if kind is not TriggerType.CALENDAR:
        return None

    if not cron_expression or not cron_expression.strip():
        return None

    if start is not None and end is not None and start > end:
        return None

    if start is not None and start > reference:
        after = start - timedelta(microseconds=1)
    else:
        after = reference

    evaluator = evaluator or _default_evaluator
    try:
        candidate = evaluator.next_match(
            cron_expression.strip(), resolve_timezone(timezone), after
        )
    except ValueError as exc:
        logger.warning("Failed to calculate next run for %r: %s", cron_expression, exc)
        return None

    if candidate is None:
        return None

    if end is not None and candidate > end:
        return None

    return candidate


def next_run_for(
    trigger: Trigger,
    program_timezone: str | None,
    *,
    now: datetime,
    evaluator: CronEvaluator | None = None,
) -> datetime | None:
    """Shorthand for :func:`compute_next_run` over a stored trigger."""
    return compute_next_run(
        trigger.type,
        trigger.cron_expression,
        program_timezone,
        trigger.start_date,
        trigger.end_date,
        now=now,
        evaluator=evaluator,
    )

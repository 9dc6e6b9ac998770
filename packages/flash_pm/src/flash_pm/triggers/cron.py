"""Cron expression parsing and matching."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import TYPE_CHECKING, ClassVar

from .base import CronEvaluator

if TYPE_CHECKING:
    from datetime import tzinfo

MAX_ITERATIONS = 2000


def _is_repeated(dt: datetime) -> bool:
    """True when the wall time of ``dt`` occurs twice at a DST fall-back."""
    # Inside a spring-forward gap the inequality runs the other way
    return dt.replace(fold=0).utcoffset() > dt.replace(fold=1).utcoffset()


def _repeated_span_start(dt: datetime) -> datetime:
    """Returns the first wall second of the repeated span containing ``dt``."""
    shift = dt.replace(fold=0).utcoffset() - dt.replace(fold=1).utcoffset()
    hi = dt.replace(microsecond=0, fold=0)
    lo = hi - shift
    while hi - lo > timedelta(seconds=1):
        mid = (lo + (hi - lo) / 2).replace(microsecond=0)
        if _is_repeated(mid):
            hi = mid
        else:
            lo = mid
    return hi


class CronField:
    """Parses and matches a single cron field."""

    def __init__(
        self,
        expr: str,
        min_val: int,
        max_val: int,
        aliases: dict[str, int] | None = None,
    ):
        self.min_val = min_val
        self.max_val = max_val
        self.aliases = aliases if aliases else {}
        self.is_wildcard = expr.strip() in ("*", "?")
        self.values = self._parse(expr)

    def _parse(self, expr: str) -> set[int]:
        """Parses a cron sub-expression (e.g., '*/15', '1,5', 'MON-FRI')."""
        expr = expr.strip().upper()
        for alias, val in self.aliases.items():
            expr = expr.replace(alias, str(val))

        values: set[int] = set()
        for part in expr.split(","):
            if "/" in part:
                range_part, step_part = part.split("/")
                step = int(step_part)
                if step <= 0:
                    msg = f"Step must be positive, got {step}"
                    raise ValueError(msg)
                if range_part in ("*", "?"):
                    start, end = self.min_val, self.max_val
                elif "-" in range_part:
                    start, end = map(int, range_part.split("-"))
                else:
                    start = int(range_part)
                    end = self.max_val
                values.update(range(start, end + 1, step))

            elif "-" in part:
                start, end = map(int, part.split("-"))
                if start > end:
                    msg = f"Invalid range {start}-{end}"
                    raise ValueError(msg)
                values.update(range(start, end + 1))

            elif part in ("*", "?"):
                values.update(range(self.min_val, self.max_val + 1))

            else:
                values.add(int(part))

        if not values:
            msg = f"Cron field '{expr}' matches nothing"
            raise ValueError(msg)

        for v in values:
            if v < self.min_val or v > self.max_val:
                msg = f"Value {v} out of range [{self.min_val}, {self.max_val}]"
                raise ValueError(msg)

        return values

    def matches(self, value: int) -> bool:
        return value in self.values

    def next_value(self, current: int) -> int | None:
        """Finds the next valid value greater than current."""
        for v in sorted(self.values):
            if v > current:
                return v
        return None

    def first_value(self) -> int:
        """Returns the smallest valid value."""
        return min(self.values)


class CronExpression:
    """
    A parsed cron expression.

    Format: [second] minute hour day month day_of_week

    When both day-of-month and day-of-week are restricted, a day matches if
    either of them matches (classic cron semantics).

    Examples:
        >>> # Every Monday at 09:00
        >>> expr = CronExpression("0 9 * * MON")

        >>> # Every 10 seconds (extended 6-field form)
        >>> expr = CronExpression("*/10 * * * * *")

        >>> # 1st and 15th of the month, plus every Friday, at midnight
        >>> expr = CronExpression("0 0 1,15 * FRI")

    Args:
        expression: 5-field (minute first) or 6-field (second first) string.

    Raises:
        ValueError: If the expression cannot be parsed.
    """

    DAY_ALIASES: ClassVar[dict[str, int]] = {
        "SUN": 0,
        "MON": 1,
        "TUE": 2,
        "WED": 3,
        "THU": 4,
        "FRI": 5,
        "SAT": 6,
    }
    MONTH_ALIASES: ClassVar[dict[str, int]] = {
        "JAN": 1,
        "FEB": 2,
        "MAR": 3,
        "APR": 4,
        "MAY": 5,
        "JUN": 6,
        "JUL": 7,
        "AUG": 8,
        "SEP": 9,
        "OCT": 10,
        "NOV": 11,
        "DEC": 12,
    }

    def __init__(self, expression: str):
        parts = expression.split()
        num_parts = len(parts)

        if num_parts == 5:
            second = "0"
            minute, hour, day, month, dow = parts
        elif num_parts == 6:
            second, minute, hour, day, month, dow = parts
        else:
            msg = (
                f"Invalid cron expression: '{expression}'. "
                f"Expected 5 or 6 fields, got {num_parts}."
            )
            raise ValueError(msg)

        self.expression = expression
        self._second = CronField(second, 0, 59)
        self._minute = CronField(minute, 0, 59)
        self._hour = CronField(hour, 0, 23)
        self._day = CronField(day, 1, 31)
        self._month = CronField(month, 1, 12, self.MONTH_ALIASES)
        # 7 is accepted as a second spelling of Sunday
        self._day_of_week = CronField(dow, 0, 7, self.DAY_ALIASES)
        self._day_of_week.values = {v % 7 for v in self._day_of_week.values}

    def next_after(self, after: datetime, tz: tzinfo) -> datetime | None:
        """Finds the earliest matching instant strictly after ``after``."""
        if after.tzinfo is None:
            after = after.replace(tzinfo=timezone.utc)
        local_now = after.astimezone(tz)

        # Start checking at the next whole second
        match = self._next_wall_match(
            local_now.replace(microsecond=0) + timedelta(seconds=1)
        )
        result = None
        if match is not None:
            result = match.replace(fold=0).astimezone(timezone.utc)
            if result <= after:
                # Wall time repeated after a DST fall-back: take the later pass
                result = match.replace(fold=1).astimezone(timezone.utc)

        if local_now.fold == 0 and _is_repeated(local_now):
            # Still in the first pass of a repeated hour; the second pass
            # replays wall times the forward search has already stepped over
            repeat = self._next_wall_match(_repeated_span_start(local_now))
            if repeat is not None and _is_repeated(repeat):
                second_pass = repeat.replace(fold=1).astimezone(timezone.utc)
                if result is None or second_pass < result:
                    result = second_pass

        return result

    def _next_wall_match(self, candidate: datetime) -> datetime | None:
        """Returns the first matching wall time at or after ``candidate``."""
        for _ in range(MAX_ITERATIONS):
            if not self._month.matches(candidate.month):
                candidate = self._advance_month(candidate)
                continue

            if not self._matches_day(candidate):
                candidate = self._advance_day(candidate)
                continue

            if not self._hour.matches(candidate.hour):
                candidate = self._advance_hour(candidate)
                continue

            if not self._minute.matches(candidate.minute):
                candidate = self._advance_minute(candidate)
                continue

            if not self._second.matches(candidate.second):
                candidate = self._advance_second(candidate)
                continue

            return candidate

        return None

    def _matches_day(self, dt: datetime) -> bool:
        dom_ok = self._day.matches(dt.day)
        # Python 0=Mon -> Cron 1=Mon
        dow_ok = self._day_of_week.matches((dt.weekday() + 1) % 7)
        if self._day.is_wildcard or self._day_of_week.is_wildcard:
            return dom_ok and dow_ok
        return dom_ok or dow_ok

    def _advance_month(self, dt: datetime) -> datetime:
        """Jump to the start of the next valid month."""
        next_val = self._month.next_value(dt.month)
        if next_val:
            year = dt.year
        else:
            next_val = self._month.first_value()
            year = dt.year + 1

        return dt.replace(year=year, month=next_val, day=1, hour=0, minute=0, second=0)

    def _advance_day(self, dt: datetime) -> datetime:
        """Jump to the start of the next candidate day."""
        if not self._day_of_week.is_wildcard:
            # Weekdays do not line up with day numbers; walk one day at a time
            return dt.replace(hour=0, minute=0, second=0) + timedelta(days=1)

        days_in_month = calendar.monthrange(dt.year, dt.month)[1]
        next_val = self._day.next_value(dt.day)

        if next_val is None or next_val > days_in_month:
            return self._advance_month(dt)

        return dt.replace(day=next_val, hour=0, minute=0, second=0)

    def _advance_hour(self, dt: datetime) -> datetime:
        next_val = self._hour.next_value(dt.hour)
        if next_val is None:
            return self._advance_day(dt)
        return dt.replace(hour=next_val, minute=0, second=0)

    def _advance_minute(self, dt: datetime) -> datetime:
        next_val = self._minute.next_value(dt.minute)
        if next_val is None:
            return self._advance_hour(dt)
        return dt.replace(minute=next_val, second=0)

    def _advance_second(self, dt: datetime) -> datetime:
        next_val = self._second.next_value(dt.second)
        if next_val is None:
            return self._advance_minute(dt)
        return dt.replace(second=next_val)

    def __repr__(self) -> str:
        return f"CronExpression('{self.expression}')"


@lru_cache(maxsize=256)
def parse_cron(expression: str) -> CronExpression:
    """Parses ``expression``, reusing earlier parses of the same string."""
    return CronExpression(expression)


class StandardCronEvaluator(CronEvaluator):
    """
    Default cron capability backed by :class:`CronExpression`.

    Examples:
        >>> from zoneinfo import ZoneInfo
        >>> evaluator = StandardCronEvaluator()
        >>> after = datetime(2024, 1, 10, 12, tzinfo=timezone.utc)
        >>> evaluator.next_match("0 9 * * 1", ZoneInfo("America/New_York"), after)
        datetime.datetime(2024, 1, 15, 14, 0, tzinfo=datetime.timezone.utc)
    """

    def next_match(
        self,
        expression: str,
        tz: tzinfo,
        after: datetime,
    ) -> datetime | None:
        return parse_cron(expression.strip()).next_after(after, tz)

    def validate(self, expression: str) -> None:
        parse_cron(expression.strip())

"""
Cron evaluation helpers.

Pure functions over standard 5-field cron expressions
(minute hour day-of-month month day-of-week). Nothing here reads the clock:
every computation is relative to the `after` instant passed in.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import FrozenSet, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadCronError, CroniterBadDateError, croniter

from .errors import InvalidCronExpression, InvalidTimezone

FIELD_NAMES = ("minute", "hour", "day-of-month", "month", "day-of-week")
FIELD_RANGES = ((0, 59), (0, 23), (1, 31), (1, 12), (0, 6))

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

MAX_PREVIEW = 50
# croniter results rejected in a row before giving up on an expression
MAX_CANDIDATES = 1000

# Leap year start, so "0 0 29 2 *" validates on its first search.
_VALIDATION_ANCHOR = datetime(2000, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class CronFields:
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days_of_month: FrozenSet[int]
    months: FrozenSet[int]
    days_of_week: FrozenSet[int]
    # Standard cron: when both day fields are restricted a day matches either one.
    dom_restricted: bool
    dow_restricted: bool

    @property
    def day_or(self) -> bool:
        return self.dom_restricted and self.dow_restricted

    def canonical(self) -> str:
        """Render as explicit value lists; day fields keep '*' only when unrestricted."""

        def _render(values: FrozenSet[int], index: int, restricted: bool) -> str:
            low, high = FIELD_RANGES[index]
            if not restricted and len(values) == high - low + 1:
                return "*"
            return ",".join(str(v) for v in sorted(values))

        return " ".join(
            [
                _render(self.minutes, 0, False),
                _render(self.hours, 1, False),
                _render(self.days_of_month, 2, self.dom_restricted),
                _render(self.months, 3, False),
                _render(self.days_of_week, 4, self.dow_restricted),
            ]
        )

    def matches(self, local: datetime) -> bool:
        if local.minute not in self.minutes or local.hour not in self.hours:
            return False
        if local.month not in self.months:
            return False
        dom_ok = local.day in self.days_of_month
        dow_ok = (local.isoweekday() % 7) in self.days_of_week
        if self.dom_restricted and self.dow_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok


def _parse_int(raw: str, expression: str, field: str) -> int:
    if not raw.isdigit():
        raise InvalidCronExpression(expression, f"{field} value '{raw}' is not a number")
    return int(raw)


def _parse_field(raw: str, index: int, expression: str) -> FrozenSet[int]:
    field = FIELD_NAMES[index]
    low, high = FIELD_RANGES[index]
    values: set[int] = set()

    for part in raw.split(","):
        if not part:
            raise InvalidCronExpression(expression, f"{field} has an empty list item")

        base, _, step_raw = part.partition("/")
        step = 1
        if step_raw or part.endswith("/"):
            step = _parse_int(step_raw, expression, field)
            if step < 1:
                raise InvalidCronExpression(expression, f"{field} step must be at least 1")

        if base == "*":
            start, end = low, high
        elif "-" in base:
            start_raw, _, end_raw = base.partition("-")
            start = _parse_int(start_raw, expression, field)
            end = _parse_int(end_raw, expression, field)
            if start > end:
                raise InvalidCronExpression(expression, f"{field} range {base} is descending")
        else:
            start = _parse_int(base, expression, field)
            # "5/15" means every 15 starting at 5
            end = high if step_raw else start

        if start < low or end > high:
            raise InvalidCronExpression(
                expression, f"{field} value out of range ({low}-{high}): {part}"
            )
        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse(cron_expr: str) -> CronFields:
    """
    Parse and validate a 5-field cron expression.

    Raises:
        InvalidCronExpression: wrong field count, bad syntax, or out-of-range value.
    """
    expression = (cron_expr or "").strip()
    if not expression:
        raise InvalidCronExpression(expression, "expression is required")

    parts = expression.split()
    if len(parts) != 5:
        raise InvalidCronExpression(
            expression,
            "must have exactly 5 fields (minute hour day-of-month month day-of-week)",
        )

    fields = [_parse_field(part, i, expression) for i, part in enumerate(parts)]
    return CronFields(
        minutes=fields[0],
        hours=fields[1],
        days_of_month=fields[2],
        months=fields[3],
        days_of_week=fields[4],
        dom_restricted=not parts[2].startswith("*"),
        dow_restricted=not parts[4].startswith("*"),
    )


def validate(cron_expr: str) -> None:
    """
    Raise InvalidCronExpression unless `cron_expr` parses and fires at least once.

    Impossible dates such as "0 0 30 2 *" are in range field by field, so the
    only way to reject them is to search for a fire time.
    """
    fields = parse(cron_expr)
    _next_match(fields, cron_expr, ZoneInfo("UTC"), _VALIDATION_ANCHOR)


def validation_error(cron_expr: str) -> Optional[str]:
    """Return a human-readable reason when `cron_expr` is invalid, else None."""
    try:
        validate(cron_expr)
    except InvalidCronExpression as exc:
        return exc.reason
    return None


def get_zone(tz_name: str) -> ZoneInfo:
    name = (tz_name or "").strip()
    if not name:
        raise InvalidTimezone(tz_name or "")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidTimezone(name) from None


def _as_utc(after: datetime) -> datetime:
    if after.tzinfo is None:
        return after.replace(tzinfo=timezone.utc)
    return after.astimezone(timezone.utc)


def next_fire_after(cron_expr: str, tz_name: str, after: datetime) -> datetime:
    """
    Smallest instant strictly greater than `after` matching `cron_expr`.

    Fields are matched against wall-clock time in `tz_name`. The result is an
    aware UTC datetime. Naive `after` values are treated as UTC.
    """
    fields = parse(cron_expr)
    zone = get_zone(tz_name)
    return _next_match(fields, cron_expr, zone, _as_utc(after))


def _next_match(fields: CronFields, cron_expr: str, zone: ZoneInfo, after_utc: datetime) -> datetime:
    try:
        itr = croniter(fields.canonical(), after_utc.astimezone(zone), day_or=fields.day_or)
        for _ in range(MAX_CANDIDATES):
            candidate = _as_utc(itr.get_next(datetime))
            # Around DST croniter can land on or before `after` (fall-back) or on
            # the end of a skipped hour (spring-forward); neither is a match.
            if candidate > after_utc and fields.matches(candidate.astimezone(zone)):
                return candidate
    except (CroniterBadCronError, CroniterBadDateError):
        # e.g. "0 0 30 2 *": every field is in range but no date ever matches
        raise InvalidCronExpression(cron_expr, "expression never fires") from None
    raise InvalidCronExpression(cron_expr, "no matching fire time found")


def next_fire_times(cron_expr: str, tz_name: str, after: datetime, count: int = 5) -> List[datetime]:
    """Preview the next `count` fire times (clamped to 1..50)."""
    count = max(1, min(int(count or 1), MAX_PREVIEW))
    runs: List[datetime] = []
    cursor = after
    for _ in range(count):
        cursor = next_fire_after(cron_expr, tz_name, cursor)
        runs.append(cursor)
    return runs


def _clock(hour: str, minute: str) -> str:
    return f"{hour.zfill(2)}:{minute.zfill(2)}"


def describe(cron_expr: str) -> str:
    """
    Best-effort English description of a cron expression.

    Never raises; unrecognized shapes echo the raw expression.
    """
    expression = " ".join((cron_expr or "").split())
    parts = expression.split(" ")
    if len(parts) != 5:
        return cron_expr or ""

    minute, hour, day_of_month, month, day_of_week = parts

    if expression == "* * * * *":
        return "Every minute"
    if expression == "0 * * * *":
        return "Every hour"
    if expression == "0 0 * * *":
        return "Daily at midnight"

    rest_any = day_of_month == "*" and month == "*" and day_of_week == "*"

    if minute.startswith("*/") and hour == "*" and rest_any:
        return f"Every {minute[2:]} minutes"

    if minute == "0" and hour.startswith("*/") and rest_any:
        return f"Every {hour[2:]} hours"

    if not (minute.isdigit() and hour.isdigit()):
        return expression

    at = _clock(hour, minute)

    if rest_any:
        return f"Daily at {at}"

    if day_of_week.isdigit() and day_of_month == "*" and month == "*":
        day_num = int(day_of_week)
        if 0 <= day_num <= 6:
            return f"Weekly on {DAY_NAMES[day_num]} at {at}"

    if day_of_month.isdigit() and month == "*" and day_of_week == "*":
        return f"Monthly on day {day_of_month} at {at}"

    return expression

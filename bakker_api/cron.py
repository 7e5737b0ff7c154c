"""
Validation and human-readable descriptions of 5-field cron expressions.

`validate_cron` is the only gate a schedule passes before it is written to
the config and projected into the crontab, and the API uses the same
function for previews, so both always agree.
"""
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class CronField:
    name: str
    min: int
    max: int

    @property
    def span(self) -> int:
        return self.max - self.min + 1


CRON_FIELDS = (
    CronField("minute", 0, 59),
    CronField("hour", 0, 23),
    CronField("day of month", 1, 31),
    CronField("month", 1, 12),
    CronField("day of week", 0, 7),
)

MONTH_FIELD = 3
DOW_FIELD = 4

MONTH_NAMES = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

DOW_NAMES = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}

DOW_LABELS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
MONTH_LABELS = [
    "", "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

# Above this many concrete times the description falls back to the raw fields.
MAX_LISTED_TIMES = 8


def _is_int(value: str) -> bool:
    return value.isascii() and value.isdigit()


def _resolve(value: str, field_index: int) -> Optional[int]:
    lower = value.lower()
    if field_index == MONTH_FIELD and lower in MONTH_NAMES:
        return MONTH_NAMES[lower]
    if field_index == DOW_FIELD and lower in DOW_NAMES:
        return DOW_NAMES[lower]
    if _is_int(value):
        return int(value)
    return None


def _validate_field(field: str, spec: CronField, field_index: int) -> Optional[str]:
    for part in field.split(","):
        if not part:
            return f"Empty value in list for {spec.name}"

        step_parts = part.split("/")
        if len(step_parts) > 2:
            return f'Invalid step in {spec.name}: "{part}"'
        if len(step_parts) == 2:
            step = step_parts[1]
            if not _is_int(step) or int(step) < 1:
                return f'Invalid step value "{step}" in {spec.name}'
            if int(step) > spec.span:
                return f"Step {int(step)} exceeds range of {spec.name} (max {spec.span})"

        base = step_parts[0]
        if base == "*":
            continue

        range_parts = base.split("-")
        if len(range_parts) > 2:
            return f'Invalid range in {spec.name}: "{base}"'

        resolved = []
        for value in range_parts:
            number = _resolve(value, field_index)
            if number is None:
                hint = ""
                if field_index == MONTH_FIELD:
                    hint = " (use 1-12 or JAN-DEC)"
                elif field_index == DOW_FIELD:
                    hint = " (use 0-7 or SUN-SAT)"
                return f'"{value}" is not valid in {spec.name}{hint}'
            if number < spec.min or number > spec.max:
                return f"{number} is out of range {spec.min}-{spec.max} for {spec.name}"
            resolved.append(number)

        if len(resolved) == 2 and resolved[0] > resolved[1]:
            return (
                f"Invalid range {resolved[0]}-{resolved[1]} in {spec.name} "
                f"(start must be <= end)"
            )
    return None


def validate_cron(expr: Optional[str]) -> Optional[str]:
    """
    Returns None when `expr` is an acceptable cron expression, otherwise a
    message describing the first violation found, scanning fields left to
    right and the atoms of each field in order.
    """
    if not expr or not expr.strip():
        return "Cron expression is required"
    if "\n" in expr or "\r" in expr:
        return "Cron expression must be a single line"

    fields = expr.split()
    if len(fields) != len(CRON_FIELDS):
        return f"Expected {len(CRON_FIELDS)} fields, got {len(fields)}"

    for index, (field, spec) in enumerate(zip(fields, CRON_FIELDS)):
        error = _validate_field(field, spec, index)
        if error:
            return error
    return None


# --- Descriptions ---


def _expand(field: str, field_index: int) -> List[int]:
    spec = CRON_FIELDS[field_index]
    values = set()
    for part in field.split(","):
        base, _, step_str = part.partition("/")
        step = int(step_str) if step_str else 1
        if base == "*":
            lo, hi = spec.min, spec.max
        elif "-" in base:
            lo_str, hi_str = base.split("-")
            lo, hi = _resolve(lo_str, field_index), _resolve(hi_str, field_index)
        else:
            lo = _resolve(base, field_index)
            hi = spec.max if step_str else lo
        values.update(range(lo, hi + 1, step))
    return sorted(values)


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _step_of(field: str) -> Optional[int]:
    if field.startswith("*/") and _is_int(field[2:]):
        return int(field[2:])
    return None


def _describe_time(minute: str, hour: str) -> str:
    minute_step = _step_of(minute)
    hour_step = _step_of(hour)

    if minute == "*" and hour == "*":
        return "Every minute"
    if minute_step and hour == "*":
        return "Every minute" if minute_step == 1 else f"Every {minute_step} minutes"
    if minute == "0" and hour == "*":
        return "Every hour"
    if minute == "0" and hour_step:
        return "Every hour" if hour_step == 1 else f"Every {hour_step} hours"
    if _is_int(minute) and hour == "*":
        return f"At :{int(minute):02d} every hour"
    if _is_int(minute) and hour_step:
        return f"At :{int(minute):02d} every {hour_step} hours"

    if minute != "*" and hour != "*":
        minutes = _expand(minute, 0)
        hours = _expand(hour, 1)
        if len(minutes) * len(hours) <= MAX_LISTED_TIMES:
            times = [f"{h:02d}:{m:02d}" for h in hours for m in minutes]
            return "At " + ", ".join(times)
        return f"At minute {minute} past hour {hour}"

    if minute == "*":
        hours = _expand(hour, 1)
        if len(hours) <= MAX_LISTED_TIMES:
            return "Every minute during " + ", ".join(f"{h:02d}:00" for h in hours)
        return f"Every minute during hours {hour}"

    minutes = _expand(minute, 0)
    if len(minutes) <= MAX_LISTED_TIMES:
        return "At minutes " + ", ".join(f":{m:02d}" for m in minutes) + " every hour"
    return f"At minutes {minute} every hour"


def _describe_dow(field: str) -> str:
    days = sorted({day % 7 for day in _expand(field, DOW_FIELD)})
    if days == [1, 2, 3, 4, 5]:
        return "weekdays"
    if days == [0, 6]:
        return "weekends"
    return ", ".join(DOW_LABELS[day] for day in days)


def _describe_dom(field: str) -> str:
    days = _expand(field, 2)
    if len(days) > MAX_LISTED_TIMES:
        return f"days {field}"
    return ", ".join(_ordinal(day) for day in days)


def _describe_month(field: str) -> str:
    return ", ".join(MONTH_LABELS[month] for month in _expand(field, MONTH_FIELD))


def describe_cron(expr: str) -> Optional[str]:
    """Best-effort English description, or None for an invalid expression."""
    if validate_cron(expr):
        return None

    minute, hour, dom, month, dow = expr.split()
    parts = [_describe_time(minute, hour)]
    if dow != "*":
        parts.append(f"on {_describe_dow(dow)}")
    if dom != "*":
        parts.append(f"on the {_describe_dom(dom)}")
    if month != "*":
        parts.append(f"in {_describe_month(month)}")
    return " ".join(parts)

"""
"HH:MM" time helpers

Times cross every interface as zero-padded "HH:MM" strings; arithmetic is done
on integer minutes since midnight.
"""
import re
from datetime import date

MINUTES_PER_DAY = 24 * 60

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def is_valid_hhmm(value: str) -> bool:
    return bool(_HHMM.match(value or ""))


def to_minutes(value: str) -> int:
    """'09:30' -> 570"""
    match = _HHMM.match(value or "")
    if not match:
        # "24:00" is accepted as the end of a window
        if value == "24:00":
            return MINUTES_PER_DAY
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def to_hhmm(minutes: int) -> str:
    """570 -> '09:30'"""
    if minutes < 0 or minutes > MINUTES_PER_DAY:
        raise ValueError(f"{minutes} minutes is outside a single day")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def add_minutes(value: str, minutes: int) -> str:
    return to_hhmm(to_minutes(value) + minutes)


def intervals_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    """Half-open [start, end) overlap; touching boundaries do not conflict"""
    return start1 < end2 and end1 > start2


def times_overlap(start1: str, end1: str, start2: str, end2: str) -> bool:
    return intervals_overlap(to_minutes(start1), to_minutes(end1), to_minutes(start2), to_minutes(end2))


def day_of_week(target_date: date) -> int:
    """0 = Monday ... 6 = Sunday"""
    return target_date.weekday()


DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

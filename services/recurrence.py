"""Expansion of ride schedules into calendar dates.

Weekdays follow the Sunday=0 .. Saturday=6 numbering used by clients, which
differs from Python's Monday=0 ``date.weekday()``.
"""
from datetime import date, timedelta
import calendar

from models import RideType, Schedule

DAY_NAME_TO_NUMBER = {
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}


def weekday_number(day: date) -> int:
    return (day.weekday() + 1) % 7


def is_school_day(day: date) -> bool:
    return 1 <= weekday_number(day) <= 5


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def expand(ride_type: RideType, schedule: Schedule, window_start: date, window_end: date) -> list[date]:
    """Dates in ``[window_start, window_end]`` on which the schedule needs a ride.

    The window is clamped to the schedule's own start and end dates. Existing
    instances are not consulted; callers create instances only if absent.
    """
    start = max(window_start, schedule.startDate)
    end = min(window_end, schedule.endDate)
    if start > end:
        return []

    if ride_type == RideType.ONCE_OFF:
        return sorted({d for d in schedule.dates or [] if start <= d <= end})

    if ride_type == RideType.WEEKLY:
        wanted = set(schedule.daysOfWeek or [])
        matches = lambda d: weekday_number(d) in wanted
    elif ride_type == RideType.MONTHLY:
        wanted = set(schedule.daysOfMonth or [])
        matches = lambda d: d.day in wanted
    else:
        raise ValueError(f"Unknown ride type: {ride_type}")

    dates = []
    current = start
    while current <= end:
        if matches(current):
            dates.append(current)
        current += timedelta(days=1)
    return dates

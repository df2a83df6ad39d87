"""
Business-hours arithmetic for SLA targets.

A day is reduced to a list of working intervals: the schedule's working
window for that weekday minus its breaks and any partial holiday. Elapsed
time and deadlines are then plain interval arithmetic over those lists.
All datetimes are naive UTC, matching the rest of the database layer.
"""
import math
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

MINUTES_PER_DAY = 24 * 60
# Upper bound on how far ahead a deadline search walks before giving up
MAX_SEARCH_DAYS = 731

Interval = Tuple[datetime, datetime]


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def time_to_minutes(value: Optional[time], end_of_day: bool = False) -> int:
    if value is None:
        return MINUTES_PER_DAY if end_of_day else 0
    minutes = value.hour * 60 + value.minute
    # A TIME column cannot hold 24:00, so midnight as an end bound means end of day
    if end_of_day and minutes == 0:
        return MINUTES_PER_DAY
    return minutes


def _subtract(ranges: List[Tuple[int, int]], cut_start: int, cut_end: int) -> List[Tuple[int, int]]:
    result = []
    for start, end in ranges:
        if cut_end <= start or cut_start >= end:
            result.append((start, end))
            continue
        if cut_start > start:
            result.append((start, cut_start))
        if cut_end < end:
            result.append((cut_end, end))
    return result


def _overlap(a: Interval, b: Interval) -> timedelta:
    start = max(a[0], b[0])
    end = min(a[1], b[1])
    return end - start if end > start else timedelta(0)


class BusinessCalendar:
    """Working-time view over a schedule and a set of holidays.

    `schedule` is a BusinessHoursSchedule (or None for round-the-clock);
    `holidays` is an iterable of HolidayDate rows.
    """

    def __init__(self, schedule: Any = None, holidays: Iterable[Any] = ()):
        self.schedule = schedule
        self.holidays = {h.holiday_date: h for h in holidays}

    @classmethod
    def for_rule(cls, rule: Any) -> "BusinessCalendar":
        schedule = rule.schedule if rule is not None else None
        calendar = rule.holiday_calendar if rule is not None else None
        holidays = calendar.dates if calendar is not None and calendar.is_active else []
        return cls(schedule, holidays)

    def _window(self, dow: int) -> Optional[Tuple[int, int]]:
        if self.schedule is None or self.schedule.is_24x7:
            return 0, MINUTES_PER_DAY
        for detail in self.schedule.details:
            if detail.day_of_week == dow:
                if not detail.is_working_day:
                    return None
                return time_to_minutes(detail.start_time), time_to_minutes(detail.end_time, end_of_day=True)
        return None

    def _breaks(self, dow: int) -> List[Tuple[int, int]]:
        if self.schedule is None or self.schedule.is_24x7:
            return []
        result = []
        for brk in self.schedule.breaks:
            if brk.applies_to_days:
                days = {int(d) for d in brk.applies_to_days.split(",") if d.strip()}
                if dow not in days:
                    continue
            result.append((time_to_minutes(brk.start_time), time_to_minutes(brk.end_time, end_of_day=True)))
        return result

    def working_intervals(self, day: date) -> List[Interval]:
        holiday = self.holidays.get(day)
        if holiday is not None and holiday.is_full_day:
            return []

        dow = day_of_week(day)
        window = self._window(dow)
        if window is None or window[1] <= window[0]:
            return []

        ranges = [window]
        for start, end in self._breaks(dow):
            ranges = _subtract(ranges, start, end)
        if holiday is not None:
            ranges = _subtract(
                ranges,
                time_to_minutes(holiday.start_time),
                time_to_minutes(holiday.end_time, end_of_day=True),
            )

        midnight = datetime.combine(day, time(0, 0))
        return [(midnight + timedelta(minutes=s), midnight + timedelta(minutes=e)) for s, e in ranges if e > s]

    def working_minutes_in_day(self, day: date) -> int:
        return sum(int((end - start).total_seconds() // 60) for start, end in self.working_intervals(day))

    def elapsed_minutes(
        self,
        start: datetime,
        end: datetime,
        pause_periods: Sequence[Interval] = (),
    ) -> int:
        """Business minutes between `start` and `end`, excluding closed pause periods."""
        if end <= start:
            return 0

        total = timedelta(0)
        day = start.date()
        while day <= end.date():
            for interval in self.working_intervals(day):
                segment = (max(interval[0], start), min(interval[1], end))
                if segment[1] <= segment[0]:
                    continue
                worked = segment[1] - segment[0]
                for pause in pause_periods:
                    worked -= _overlap(segment, pause)
                if worked > timedelta(0):
                    total += worked
            day += timedelta(days=1)

        return int(total.total_seconds() // 60)

    def next_working_moment(self, moment: datetime) -> datetime:
        day = moment.date()
        for _ in range(MAX_SEARCH_DAYS):
            for start, end in self.working_intervals(day):
                if end > moment:
                    return max(start, moment)
            day += timedelta(days=1)
        raise ValueError("No working hours found in schedule")

    def add_business_minutes(self, start: datetime, minutes: int) -> datetime:
        """Deadline reached after `minutes` of business time counted from `start`."""
        if minutes <= 0:
            return start

        remaining = timedelta(minutes=minutes)
        day = start.date()
        for _ in range(MAX_SEARCH_DAYS):
            for interval_start, interval_end in self.working_intervals(day):
                if interval_end <= start:
                    continue
                interval_start = max(interval_start, start)
                available = interval_end - interval_start
                if available >= remaining:
                    return interval_start + remaining
                remaining -= available
            day += timedelta(days=1)
        raise ValueError("No working hours found in schedule")


def calculate_sla_status(elapsed: int, min_tat: int, avg_tat: int, max_tat: int) -> Dict[str, Any]:
    percent_used = round(elapsed / max_tat * 100) if max_tat else 100

    if elapsed >= max_tat:
        return {
            "status": "breached",
            "zone": "red",
            "percent_used": percent_used,
            "remaining_minutes": 0,
            "overage_minutes": elapsed - max_tat,
        }

    if elapsed >= avg_tat:
        status, zone = "critical", "orange"
    elif elapsed >= min_tat:
        status, zone = "warning", "yellow"
    else:
        status, zone = "on_track", "green"

    return {
        "status": status,
        "zone": zone,
        "percent_used": percent_used,
        "remaining_minutes": max_tat - elapsed,
        "overage_minutes": 0,
    }


def final_sla_status(elapsed: int, min_tat: int, avg_tat: int, max_tat: int) -> str:
    if elapsed < min_tat:
        return "met_early"
    if elapsed < avg_tat:
        return "met"
    if elapsed < max_tat:
        return "met_late"
    return "breached"


def format_duration(minutes: int) -> str:
    minutes = int(math.floor(minutes))
    if minutes < 60:
        return f"{minutes}m"

    hours, mins = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {mins}m" if mins else f"{hours}h"

    days, hours = divmod(hours, 24)
    parts = [f"{days}d"]
    if hours:
        parts.append(f"{hours}h")
    if mins:
        parts.append(f"{mins}m")
    return " ".join(parts)

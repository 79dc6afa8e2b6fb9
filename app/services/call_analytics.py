"""
Time windows and distribution helpers for call analytics.
Pure functions over Call rows, shared by the statistics service and the call listing.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from app.db.models import Call, CallStatus

TIME_FILTERS = ("hour", "today", "two_days", "week")

DAYS_OF_WEEK = ["Lundi", "Mardi", "Mercredi", "Jeudi", "Vendredi", "Samedi", "Dimanche"]

TIME_SLOTS = [
    ("Matin (8h-12h)", 8, 12),
    ("Après-midi (12h-17h)", 12, 17),
    ("Soir (17h-19h)", 17, 19),
    ("Nuit (19h-8h)", 19, 8),
]


def local_midnight(now: datetime) -> datetime:
    """
    Start of the server-local day containing ``now``, as naive UTC.

    Args:
        now: Naive UTC datetime

    Returns:
        datetime: Naive UTC datetime of local midnight
    """
    local_now = now.replace(tzinfo=timezone.utc).astimezone()
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)


def get_time_filter_date(time_filter: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Lower bound on call start time for a dashboard time filter.

    Args:
        time_filter: hour, today, two_days, week or None
        now: Reference time (naive UTC), defaults to the current time

    Returns:
        Lower bound, or None when the filter is absent or unknown
    """
    now = now or datetime.utcnow()
    if time_filter == "hour":
        return now - timedelta(hours=1)
    if time_filter == "today":
        return local_midnight(now)
    if time_filter == "two_days":
        return now - timedelta(hours=48)
    if time_filter == "week":
        return now - timedelta(days=7)
    return None


def get_previous_period(time_filter: Optional[str], now: Optional[datetime] = None) -> Optional[Tuple[datetime, datetime]]:
    """
    Window of the same length immediately before the current filter window.

    Returns:
        (start, end) or None when there is no bounded current window
    """
    now = now or datetime.utcnow()
    start = get_time_filter_date(time_filter, now)
    if start is None:
        return None
    if time_filter == "today":
        return start - timedelta(days=1), start
    length = now - start
    return start - length, start


def format_duration(seconds: Optional[float]) -> str:
    """Format a duration in seconds as ``"{m}min {s}s"``."""
    total = int(round(seconds or 0))
    minutes, secs = divmod(total, 60)
    return f"{minutes}min {secs}s"


def calculate_percentage_change(current: float, previous: float) -> float:
    """Percentage change from previous to current, rounded to one decimal."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


def _empty_bucket() -> Dict[str, int]:
    return {"total": 0, "completed": 0, "failed": 0}


def _count(bucket: Dict[str, int], call: Call):
    bucket["total"] += 1
    if call.status == CallStatus.COMPLETED:
        bucket["completed"] += 1
    elif call.status == CallStatus.FAILED:
        bucket["failed"] += 1


def aggregate_calls_by_hour(calls: Iterable[Call]) -> Dict[int, Dict[str, int]]:
    """Count calls per hour of day (0-23)."""
    hourly = {hour: _empty_bucket() for hour in range(24)}
    for call in calls:
        _count(hourly[call.start_time.hour], call)
    return hourly


def aggregate_calls_by_day(calls: Iterable[Call]) -> Dict[str, Dict[str, int]]:
    """Count calls per French day name, Monday first."""
    daily = {day: _empty_bucket() for day in DAYS_OF_WEEK}
    for call in calls:
        _count(daily[DAYS_OF_WEEK[call.start_time.weekday()]], call)
    return daily


def get_time_slot(hour: int) -> str:
    """Name of the time slot containing the given hour."""
    for name, start, end in TIME_SLOTS:
        if start < end and start <= hour < end:
            return name
    # Night slot wraps around midnight
    return TIME_SLOTS[-1][0]


def aggregate_calls_by_time_slot(calls: Iterable[Call]) -> Dict[str, Dict[str, int]]:
    """Count calls per time slot (morning, afternoon, evening, night)."""
    slots = {name: _empty_bucket() for name, _, _ in TIME_SLOTS}
    for call in calls:
        _count(slots[get_time_slot(call.start_time.hour)], call)
    return slots


def calculate_average_duration(calls: Iterable[Call]) -> int:
    """Mean duration over calls with a positive duration, rounded."""
    durations = [call.duration for call in calls if call.duration and call.duration > 0]
    if not durations:
        return 0
    return round(sum(durations) / len(durations))


def find_peak_hour(hourly: Dict[int, Dict[str, int]]) -> Optional[int]:
    """Hour with the most calls, None when there are no calls."""
    peak_hour, peak_total = None, 0
    for hour, bucket in sorted(hourly.items()):
        if bucket["total"] > peak_total:
            peak_hour, peak_total = hour, bucket["total"]
    return peak_hour


def find_best_performing_hour(hourly: Dict[int, Dict[str, int]], min_calls: int = 3) -> Optional[Dict[str, float]]:
    """
    Hour with the best completion rate among hours with enough calls.

    Args:
        hourly: Output of aggregate_calls_by_hour
        min_calls: Minimum number of calls for an hour to qualify

    Returns:
        {"hour": int, "rate": float} or None when no hour qualifies
    """
    best: Optional[Dict[str, float]] = None
    for hour, bucket in sorted(hourly.items()):
        if bucket["total"] < min_calls:
            continue
        rate = round(bucket["completed"] / bucket["total"] * 100, 1)
        if best is None or rate > best["rate"]:
            best = {"hour": hour, "rate": rate}
    return best


def distribution_to_list(distribution: Dict, key_name: str) -> List[Dict]:
    """Flatten a bucket mapping for JSON responses."""
    return [{key_name: key, **bucket} for key, bucket in distribution.items()]

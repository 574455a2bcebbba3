import calendar
import logging
import datetime
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from utils.date_keys import add_days, days_between_inclusive, format_date, month_bounds, parse_date_key, shift_month

logger = logging.getLogger(__name__)

# Backward streak walk stops after this many days, so streaks of habits older
# than a year are reported as 365.
STREAK_WALK_LIMIT = 365


def compute_streak(activity, creation_date: datetime.date, today: datetime.date, max_days: int = STREAK_WALK_LIMIT) -> int:
    """
    Current streak: consecutive active days ending at `today`, walking backwards.
    Stops at the first day without activity, before `creation_date`, or after `max_days`.
    """
    streak = 0
    for i in range(max(0, int(max_days))):
        d = add_days(today, -i)
        if d < creation_date:
            break
        if activity.has_activity(format_date(d)):
            streak += 1
        else:
            break
    return streak


def _eligible_active_keys(activity, creation_date: datetime.date, today: datetime.date) -> List[str]:
    lo, hi = format_date(creation_date), format_date(today)
    # Keys are zero-padded, so string order is chronological order.
    return [k for k in activity.active_date_keys() if lo <= k <= hi and activity.activity_magnitude(k) > 0]


def best_streak(activity, creation_date: datetime.date, today: datetime.date) -> int:
    """Longest run of consecutive active days between creation and today."""
    best = 0
    run = 0
    prev: Optional[datetime.date] = None
    for key in _eligible_active_keys(activity, creation_date, today):
        d = parse_date_key(key)
        run = run + 1 if prev is not None and add_days(prev, 1) == d else 1
        best = max(best, run)
        prev = d
    return best


def completion_rate(activity, creation_date: datetime.date, today: datetime.date) -> int:
    """
    Percentage of days since creation (inclusive) that have activity, rounded and capped at 100.
    A creation date after `today` yields 0.
    """
    total = days_between_inclusive(creation_date, today)
    if total <= 0:
        return 0
    active = len(set(_eligible_active_keys(activity, creation_date, today)))
    rate = int(100 * active / total + 0.5)
    return max(0, min(100, rate))


@dataclass
class DayCell:
    day: int
    date_key: str
    is_valid: bool
    is_before_creation: bool
    is_today: bool
    is_creation_date: bool
    is_checked: bool
    magnitude: int
    has_completion: bool = False


@dataclass
class MonthGrid:
    year: int
    month: int
    label: str
    leading_blanks: int
    can_go_previous: bool
    cells: List[DayCell] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def can_navigate_to(year: int, month: int, creation_date: datetime.date) -> bool:
    """Months before the one containing the creation date are not viewable."""
    return (year, month) >= (creation_date.year, creation_date.month)


def previous_month(year: int, month: int, creation_date: datetime.date) -> Optional[Tuple[int, int]]:
    prev = shift_month(year, month, -1)
    if not can_navigate_to(prev[0], prev[1], creation_date):
        return None
    return prev


def next_month(year: int, month: int) -> Tuple[int, int]:
    return shift_month(year, month, 1)


def build_month_grid(
    year: int,
    month: int,
    creation_date: datetime.date,
    today: datetime.date,
    activity,
    completion_dates: Optional[Iterable[str]] = None,
) -> MonthGrid:
    """
    Lays a month out on a Monday-first 7-column grid.

    `leading_blanks` is the weekday of the 1st (Monday=0 .. Sunday=6). A day is
    valid (interactive) only between creation and today; days before creation are
    flagged separately from future days. Activity stored on invalid days is not shown.
    """
    first, last = month_bounds(year, month)
    completions: Set[str] = set(completion_dates or [])
    cells: List[DayCell] = []
    for day in range(1, last.day + 1):
        d = datetime.date(year, month, day)
        key = format_date(d)
        before = d < creation_date
        valid = (not before) and d <= today
        cells.append(DayCell(
            day=day,
            date_key=key,
            is_valid=valid,
            is_before_creation=before,
            is_today=d == today,
            is_creation_date=d == creation_date,
            is_checked=valid and activity.has_activity(key),
            magnitude=activity.activity_magnitude(key) if valid else 0,
            has_completion=key in completions,
        ))
    return MonthGrid(
        year=year,
        month=month,
        label=f"{calendar.month_name[month]} {year}",
        leading_blanks=first.weekday(),
        can_go_previous=previous_month(year, month, creation_date) is not None,
        cells=cells,
    )


def habit_summary(habit, today: datetime.date, tz_name: Optional[str] = None) -> Dict[str, Any]:
    """Stats panel numbers for a habit evaluated at `today`."""
    creation = habit.creation_date(tz_name)
    activity = habit.activity
    total_days = max(0, days_between_inclusive(creation, today))
    return {
        "streak": compute_streak(activity, creation, today),
        "best_streak": best_streak(activity, creation, today),
        "total_days": total_days,
        "checked_count": len(_eligible_active_keys(activity, creation, today)),
        "completion_rate": completion_rate(activity, creation, today),
        "creation_date": format_date(creation),
        "today": format_date(today),
    }

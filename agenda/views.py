"""
Day visibility rules and derived statistics.

Two call sites decide visibility differently for delivery tasks, and both
rules are kept on purpose behind an explicit view name:

  planner   - visible on every day up to and including deliveryDate,
              past days included
  calendar  - visible only inside [today, deliveryDate]

Permanent tasks are visible every day; one-off tasks only on their date.
Dates are plain YYYY-MM-DD strings, so lexical order is calendar order.
"""
import calendar
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from .schema import Task, TaskKind

PLANNER_VIEW = "planner"
CALENDAR_VIEW = "calendar"
VIEWS = (PLANNER_VIEW, CALENDAR_VIEW)

DAY_FORMAT = "%Y-%m-%d"
URGENT_DAYS = 3


def today() -> str:
    """Local calendar date, YYYY-MM-DD."""
    return date.today().isoformat()


def parse_day(value: Union[str, date, datetime, None]) -> str:
    """
    Normalize a date-like value to YYYY-MM-DD.

    Raises ValueError for anything that is not a calendar date.
    """
    if value is None:
        raise ValueError("Date is required")
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    try:
        return datetime.strptime(text, DAY_FORMAT).date().isoformat()
    except ValueError:
        raise ValueError(f"Invalid date: '{text}' (expected YYYY-MM-DD)")


# ── Visibility ────────────────────────────────────────────────────────────────


def is_visible_in_planner(task: Task, day: str) -> bool:
    kind = task.kind
    if kind == TaskKind.PERMANENT:
        return True
    if kind == TaskKind.DELIVERY:
        return day <= task.delivery_date
    return task.date == day


def is_visible_in_calendar(task: Task, day: str, today_str: Optional[str] = None) -> bool:
    kind = task.kind
    if kind == TaskKind.PERMANENT:
        return True
    if kind == TaskKind.DELIVERY:
        current = today_str or today()
        return current <= day <= task.delivery_date
    return task.date == day


def is_visible(task: Task, day: str, view: str = PLANNER_VIEW,
               today_str: Optional[str] = None) -> bool:
    if view == PLANNER_VIEW:
        return is_visible_in_planner(task, day)
    if view == CALENDAR_VIEW:
        return is_visible_in_calendar(task, day, today_str)
    raise ValueError(f"Unknown view: {view}")


def matches_search(task: Task, query: str) -> bool:
    """Case-insensitive substring match on the task text."""
    if not query:
        return True
    return query.lower() in (task.text or "").lower()


def tasks_for_day(tasks: Iterable[Task], day: str, query: str = "",
                  view: str = PLANNER_VIEW, today_str: Optional[str] = None) -> List[Task]:
    """Tasks visible on day after the search filter, in input order."""
    return [
        t for t in tasks
        if matches_search(t, query) and is_visible(t, day, view, today_str)
    ]


# ── Completion ────────────────────────────────────────────────────────────────


def is_completed_on(task: Task, day: str) -> bool:
    """Permanent tasks read only completedDates; the others read completed."""
    if task.is_permanent:
        return day in task.completed_dates
    return bool(task.completed)


def toggle_updates(task: Task, day: str) -> Dict[str, Any]:
    """Partial update that flips the task's completion for day."""
    if task.is_permanent:
        if day in task.completed_dates:
            dates = [d for d in task.completed_dates if d != day]
        else:
            dates = list(task.completed_dates) + [day]
        return {"completedDates": dates}
    return {"completed": not task.completed}


@dataclass
class Progress:
    """Completion counts for one day."""
    total: int = 0
    completed: int = 0

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        # Half-up rounding
        return int(math.floor(self.completed * 100 / self.total + 0.5))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "percentage": self.percentage,
        }


def progress_for_day(tasks: Iterable[Task], day: str, query: str = "",
                     view: str = PLANNER_VIEW, today_str: Optional[str] = None) -> Progress:
    visible = tasks_for_day(tasks, day, query, view, today_str)
    done = sum(1 for t in visible if is_completed_on(t, day))
    return Progress(total=len(visible), completed=done)


# ── Listing ───────────────────────────────────────────────────────────────────


@dataclass
class DaySections:
    """A day's tasks split the way the planner lists them."""
    deliveries: List[Task] = field(default_factory=list)
    permanent: List[Task] = field(default_factory=list)
    one_off: List[Task] = field(default_factory=list)

    def to_dict(self, day: str, reference: Optional[str] = None) -> Dict[str, Any]:
        return {
            "deliveries": [task_view(t, day, reference) for t in self.deliveries],
            "permanent": [task_view(t, day, reference) for t in self.permanent],
            "oneOff": [task_view(t, day, reference) for t in self.one_off],
        }


def split_sections(tasks: Iterable[Task], day: str, show_completed: bool = True) -> DaySections:
    """
    Group visible tasks by kind.

    With show_completed off, tasks done on day are left out of the lists.
    Progress is computed separately and still counts them.
    """
    sections = DaySections()
    for task in tasks:
        if not show_completed and is_completed_on(task, day):
            continue
        kind = task.kind
        if kind == TaskKind.DELIVERY:
            sections.deliveries.append(task)
        elif kind == TaskKind.PERMANENT:
            sections.permanent.append(task)
        else:
            sections.one_off.append(task)
    return sections


def days_until_delivery(task: Task, reference: Optional[str] = None) -> Optional[int]:
    """Whole days from reference (default today) to deliveryDate; None for non-delivery."""
    if task.kind != TaskKind.DELIVERY:
        return None
    start = date.fromisoformat(reference or today())
    due = date.fromisoformat(task.delivery_date)
    return (due - start).days


def is_delivery_urgent(task: Task, reference: Optional[str] = None) -> bool:
    days = days_until_delivery(task, reference)
    return days is not None and days <= URGENT_DAYS


def task_view(task: Task, day: str, reference: Optional[str] = None) -> Dict[str, Any]:
    """Task dict enriched with its state on day."""
    data = task.to_dict()
    data["kind"] = task.kind.value
    data["completedOnDay"] = is_completed_on(task, day)
    days = days_until_delivery(task, reference or day)
    if days is not None:
        data["daysUntilDelivery"] = days
        data["deliveryToday"] = days == 0
        data["deliveryUrgent"] = days <= URGENT_DAYS
    return data


# ── Calendar markers ──────────────────────────────────────────────────────────


def has_task_on(tasks: Iterable[Task], day: str) -> bool:
    """Calendar marker: deliveries mark only their deadline."""
    for task in tasks:
        kind = task.kind
        if kind == TaskKind.PERMANENT:
            return True
        if kind == TaskKind.DELIVERY:
            if task.delivery_date == day:
                return True
        elif task.date == day:
            return True
    return False


def marked_days(tasks: Iterable[Task], year: int, month: int) -> List[str]:
    """Days of the month that carry a task marker."""
    tasks = list(tasks)
    _, last = calendar.monthrange(year, month)
    days = [date(year, month, d).isoformat() for d in range(1, last + 1)]
    return [d for d in days if has_task_on(tasks, d)]

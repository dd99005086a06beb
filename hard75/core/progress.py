"""Challenge progress calculations — pure business logic.

Day numbers, percentages, streaks and weekly breakdowns for a 75-day run.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta

from hard75.data.models import (
    CHALLENGE_DURATION,
    ChallengeStats,
    CustomTask,
    DayProgress,
    TaskCompletion,
    WeekSummary,
)

logger = logging.getLogger(__name__)

# Stats only look back this many days, as the stats screen always did.
STATS_LOOKBACK_DAYS = 21


def parse_date(value: str | date) -> date:
    """Accept a date or a YYYY-MM-DD string (ISO datetimes are truncated).

    Raises ValueError on malformed input.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def to_iso(value: date) -> str:
    return value.isoformat()


def days_between(start: str | date, end: str | date) -> int:
    """Signed number of calendar days from start to end."""
    return (parse_date(end) - parse_date(start)).days


def add_days(start: str | date, days: int) -> str:
    return to_iso(parse_date(start) + timedelta(days=days))


def challenge_end_date(start_date: str | date) -> str:
    """Last day of the challenge: 75 days inclusive means start + 74."""
    return add_days(start_date, CHALLENGE_DURATION - 1)


def day_number(start_date: str | date, target: str | date) -> int:
    """Unclamped 1-based day number of target relative to start_date."""
    return days_between(start_date, target) + 1


def current_day(start_date: str | date, today: str | date | None = None) -> int:
    """Day of the challenge for today, clamped to 1..75.

    A start date in the future yields 1; anything past the end stays at 75.
    """
    if today is None:
        today = date.today()
    return max(1, min(CHALLENGE_DURATION, day_number(start_date, today)))


def date_for_day(start_date: str | date, day: int) -> str:
    """Calendar date (YYYY-MM-DD) of the given 1-based day."""
    return add_days(start_date, day - 1)


def calculate_percentage(current: int | float, total: int | float) -> int:
    """Rounded percentage; halves round up (12.5 -> 13)."""
    if total == 0:
        return 0
    return math.floor(current / total * 100 + 0.5)


def progress_percentage(day: int) -> int:
    """Share of the 75 days reached, as a rounded percentage."""
    return calculate_percentage(day, CHALLENGE_DURATION)


def days_remaining(day: int) -> int:
    return max(0, CHALLENGE_DURATION - day + 1)


def build_day_progress(
    target_date: str,
    tasks: list[CustomTask],
    completions: dict[str, TaskCompletion],
    day: int | None = None,
) -> DayProgress:
    """Combine the task list with one day's completions.

    Completions for tasks that no longer exist are kept in the map but do
    not count toward the total. Without a task list the completion entries
    themselves define the total.
    """
    if tasks:
        task_ids = [t.id for t in tasks]
    else:
        task_ids = list(completions)

    completed_count = sum(
        1 for tid in task_ids if tid in completions and completions[tid].completed
    )
    total = len(task_ids)

    return DayProgress(
        date=target_date,
        day_number=day,
        completions=dict(completions),
        completed_count=completed_count,
        total_tasks=total,
        all_completed=total > 0 and completed_count == total,
    )


def completed_tasks_count(completions: dict[str, TaskCompletion], task_ids: set[str]) -> int:
    return sum(1 for tid, c in completions.items() if c.completed and tid in task_ids)


def is_perfect_day(completions: dict[str, TaskCompletion], task_ids: set[str]) -> bool:
    return bool(task_ids) and completed_tasks_count(completions, task_ids) == len(task_ids)


def streaks(perfect_flags: list[bool]) -> tuple[int, int]:
    """Return (current_streak, longest_streak) for days in chronological order.

    The current streak counts back from the most recent day and is 0 when
    the latest day was missed.
    """
    longest = 0
    run = 0
    for flag in perfect_flags:
        if flag:
            run += 1
            longest = max(longest, run)
        else:
            run = 0

    current = 0
    for flag in reversed(perfect_flags):
        if not flag:
            break
        current += 1

    return current, longest


def weekly_breakdown(
    start_date: str,
    days: dict[str, dict[str, TaskCompletion]],
    task_ids: set[str],
) -> list[WeekSummary]:
    """Group tracked days into 7-day blocks counted from the start date."""
    weeks: dict[int, WeekSummary] = {}
    for day_str in sorted(days):
        n = day_number(start_date, day_str)
        if n < 1 or n > CHALLENGE_DURATION:
            continue
        week = (n - 1) // 7 + 1
        summary = weeks.get(week)
        if summary is None:
            summary = WeekSummary(
                week=week,
                start_date=date_for_day(start_date, (week - 1) * 7 + 1),
                days_tracked=0,
                perfect_days=0,
                tasks_completed=0,
                completion_rate=0,
            )
            weeks[week] = summary
        completions = days[day_str]
        summary.days_tracked += 1
        summary.tasks_completed += completed_tasks_count(completions, task_ids)
        if is_perfect_day(completions, task_ids):
            summary.perfect_days += 1

    for summary in weeks.values():
        summary.completion_rate = calculate_percentage(summary.perfect_days, summary.days_tracked)

    return [weeks[w] for w in sorted(weeks)]


def stats_window(start_date: str, today: str | date | None = None) -> list[str]:
    """Dates the stats screen examines: the finished days, last three weeks max."""
    day = current_day(start_date, today)
    finished = day - 1
    first = max(0, finished - STATS_LOOKBACK_DAYS)
    return [add_days(start_date, i) for i in range(first, finished)]


def compute_stats(
    start_date: str,
    tasks: list[CustomTask],
    days: dict[str, dict[str, TaskCompletion]],
    today: str | date | None = None,
) -> ChallengeStats:
    """Aggregate finished days of the challenge into ChallengeStats.

    Args:
        start_date: Challenge start (YYYY-MM-DD).
        tasks: Current task list; a day is perfect when all of them are done.
        days: Completions keyed by date, for the dates of stats_window().
        today: Reference date (defaults to today).
    """
    day = current_day(start_date, today)
    stats = ChallengeStats(
        current_day=day,
        days_remaining=days_remaining(day),
        challenge_progress=progress_percentage(day),
    )

    window = stats_window(start_date, today)
    if not window:
        return stats

    task_ids = {t.id for t in tasks}
    per_day = [days.get(d, {}) for d in window]
    flags = [is_perfect_day(c, task_ids) for c in per_day]
    counts = [completed_tasks_count(c, task_ids) for c in per_day]

    stats.total_days = len(window)
    stats.completed_days = sum(flags)
    stats.perfect_days = stats.completed_days
    stats.current_streak, stats.longest_streak = streaks(flags)
    stats.total_tasks_completed = sum(counts)
    stats.completion_rate = stats.completed_days / stats.total_days * 100
    stats.average_tasks_per_day = stats.total_tasks_completed / stats.total_days

    last_week = counts[-7:]
    stats.weekly_average = sum(last_week) / len(last_week)

    stats.weeks = weekly_breakdown(start_date, dict(zip(window, per_day)), task_ids)

    logger.debug(
        "Stats for challenge starting %s: %d/%d perfect days, streak %d",
        start_date, stats.completed_days, stats.total_days, stats.current_streak,
    )
    return stats

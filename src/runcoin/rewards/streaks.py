"""Daily run streak derivation (calendar days, not rolling 24h windows)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta


@dataclass(frozen=True)
class StreakState:
    streak_days: int
    is_first_run_today: bool


def derive_streak(
    last_run_date: date | None,
    current_streak: int,
    today: date,
    yesterday: date | None = None,
) -> StreakState:
    """Streak to credit for a run finished on ``today``.

    - last run today: streak unchanged, not the first run of the day
    - last run yesterday: streak + 1, first run of the day
    - anything else (gap, never ran, clock skew into the future): reset to 1
    """
    if yesterday is None:
        yesterday = today - timedelta(days=1)

    if last_run_date == today:
        return StreakState(streak_days=max(current_streak, 1), is_first_run_today=False)
    if last_run_date == yesterday:
        return StreakState(streak_days=max(current_streak, 0) + 1, is_first_run_today=True)
    return StreakState(streak_days=1, is_first_run_today=True)

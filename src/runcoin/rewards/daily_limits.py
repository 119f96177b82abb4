"""Soft daily cap for the generic coin-award path.

Once a user's awards for the day have reached ``daily_reward_cap``, later
awards that day are halved instead of refused.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from runcoin.rewards.calculator import round_half_up

REDUCED_MULTIPLIER = 0.5


@dataclass(frozen=True)
class DailyAward:
    original_amount: float
    actual_amount: float
    applied_multiplier: float
    reduced: bool
    daily_total: float
    reset_date: date


def apply_daily_diminishing(
    amount: float,
    daily_rewarded: float,
    reset_date: date | None,
    today: date,
    daily_reward_cap: float,
) -> DailyAward:
    """Compute the award after the soft cap and the updated daily counter.

    The counter starts over when ``reset_date`` is not ``today``. The cap
    check looks at the total *before* this award, so the award that
    crosses the cap is still paid in full.
    """
    if reset_date != today:
        daily_rewarded = 0.0

    reduced = daily_rewarded >= daily_reward_cap
    multiplier = REDUCED_MULTIPLIER if reduced else 1.0
    actual = round_half_up(amount * multiplier)

    return DailyAward(
        original_amount=amount,
        actual_amount=actual,
        applied_multiplier=multiplier,
        reduced=reduced,
        daily_total=round_half_up(daily_rewarded + actual),
        reset_date=today,
    )

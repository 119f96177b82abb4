"""Cap enforcement applied after the reward calculator.

Both clips only ever lower a reward. They run even when the calculator
already stayed inside its own bounds, so a replayed or forged run still
hits the unissued pool and the per-user daily budget.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from runcoin.db.models import LedgerEntry
from runcoin.rewards.calculator import round_half_up

RUN_SOURCE = "run"


@dataclass(frozen=True)
class CapResult:
    calculated: float
    after_supply_clip: float
    earned_today: float
    daily_cap_remaining: float
    final: float

    @property
    def supply_clipped(self) -> bool:
        return self.after_supply_clip < self.calculated

    @property
    def daily_clipped(self) -> bool:
        return self.final < self.after_supply_clip


def clip_to_supply(amount: float, remaining: float) -> float:
    """A single grant never exceeds the unissued pool."""
    return max(0.0, min(amount, remaining))


def clip_to_daily_cap(amount: float, earned_today: float, daily_user_cap: float) -> tuple[float, float]:
    """Returns (clipped amount, remaining daily budget before this grant)."""
    budget = max(0.0, daily_user_cap - earned_today)
    return round_half_up(min(amount, budget)), budget


def enforce_caps(amount: float, remaining: float, earned_today: float, daily_user_cap: float) -> CapResult:
    """Supply clip first, then the daily-user clip."""
    after_supply = clip_to_supply(amount, remaining)
    final, budget = clip_to_daily_cap(after_supply, earned_today, daily_user_cap)
    return CapResult(
        calculated=amount,
        after_supply_clip=after_supply,
        earned_today=earned_today,
        daily_cap_remaining=budget,
        final=final,
    )


async def earned_today(db: AsyncSession, user_id: int, day: date) -> float:
    """Sum of today's run-sourced ledger credits for a user.

    Point-in-time read: a concurrent request for the same user can land
    between this sum and the ledger append, so the cap can be overshot
    by at most one in-flight reward.
    """
    result = await db.execute(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0.0)).where(
            LedgerEntry.user_id == user_id,
            LedgerEntry.source_type == RUN_SOURCE,
            LedgerEntry.entry_date == day,
        )
    )
    return round_half_up(float(result.scalar_one()))

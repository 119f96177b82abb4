"""Generic coin awards: the soft-capped level-up path and the flat activity table."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from runcoin.config import Settings
from runcoin.db.models import User
from runcoin.rewards.activity_table import resolve_activity_reward
from runcoin.rewards.calculator import round_half_up
from runcoin.rewards.clock import local_day, utc_now
from runcoin.rewards.daily_limits import apply_daily_diminishing
from runcoin.rewards.economy_service import get_economy_config
from runcoin.rewards.errors import InvalidRewardInput
from runcoin.rewards.ledger_service import credit_coins
from runcoin.rewards.progression import LinearLadder, get_ladder

COIN_AWARD_SOURCE = "coin_award"
ACTIVITY_SOURCE = "activity"


@dataclass(frozen=True)
class CoinAwardResult:
    coin_balance: float
    level: int
    level_progress_coins: float
    levels_gained: int
    reduced_rewards: bool
    applied_multiplier: float
    original_amount: float
    actual_amount: float


@dataclass(frozen=True)
class ActivityAwardResult:
    activity_type: str
    coins_awarded: int
    new_balance: float
    reason: str
    levels_gained: int = 0


async def _economy_values(db: AsyncSession, settings: Settings) -> tuple[float, float]:
    """(coins_per_level, daily_reward_cap) from the economy record, falling back to settings."""
    config = await get_economy_config(db)
    if config is None:
        return settings.coins_per_level, settings.daily_reward_cap
    return config.coins_per_level, config.daily_reward_cap


async def apply_coin_and_level_up(
    db: AsyncSession,
    user: User,
    delta_coins: float,
    reason: str,
    settings: Settings,
    now: datetime | None = None,
) -> CoinAwardResult:
    """Credit ``delta_coins`` through the daily soft cap and advance the configured ladder."""
    if (
        isinstance(delta_coins, bool)
        or not isinstance(delta_coins, (int, float))
        or not math.isfinite(delta_coins)
        or round_half_up(delta_coins) <= 0
    ):
        msg = "Invalid deltaCoins: must be a positive number"
        raise InvalidRewardInput(msg)

    today = local_day(now or utc_now(), settings.economy_timezone)
    coins_per_level, daily_reward_cap = await _economy_values(db, settings)

    award = apply_daily_diminishing(
        round_half_up(delta_coins),
        user.daily_rewarded_coins,
        user.daily_reset_date,
        today,
        daily_reward_cap,
    )
    user.daily_rewarded_coins = award.daily_total
    user.daily_reset_date = award.reset_date

    credit = await credit_coins(
        db,
        user,
        award.actual_amount,
        entry_type="run",
        source_type=COIN_AWARD_SOURCE,
        note=reason,
        base_reward=award.original_amount,
        multiplier_used=award.applied_multiplier,
        ladder=get_ladder(settings.level_ladder, coins_per_level),
        day=today,
    )

    return CoinAwardResult(
        coin_balance=credit.coin_balance,
        level=credit.level_update.level,
        level_progress_coins=credit.level_update.progress_coins,
        levels_gained=credit.level_update.levels_gained,
        reduced_rewards=award.reduced,
        applied_multiplier=award.applied_multiplier,
        original_amount=award.original_amount,
        actual_amount=award.actual_amount,
    )


async def award_activity_coins(
    db: AsyncSession,
    user: User,
    activity_type: str,
    metadata: dict[str, Any] | None,
    settings: Settings,
    now: datetime | None = None,
) -> ActivityAwardResult:
    """Pay the flat reward for an activity. Unknown activity types raise InvalidActivityError."""
    reward = resolve_activity_reward(activity_type, metadata)
    if reward.coins <= 0:
        return ActivityAwardResult(
            activity_type=activity_type,
            coins_awarded=0,
            new_balance=user.coin_balance,
            reason=reward.reason,
        )

    coins_per_level, _ = await _economy_values(db, settings)
    credit = await credit_coins(
        db,
        user,
        reward.coins,
        entry_type="bonus",
        source_type=ACTIVITY_SOURCE,
        source_id=activity_type,
        note=reward.reason,
        base_reward=reward.coins,
        multiplier_used=1.0,
        ladder=LinearLadder(coins_per_level),
        day=local_day(now or utc_now(), settings.economy_timezone),
    )

    return ActivityAwardResult(
        activity_type=activity_type,
        coins_awarded=reward.coins,
        new_balance=credit.coin_balance,
        reason=reward.reason,
        levels_gained=credit.level_update.levels_gained,
    )

"""Run reward calculation under the decaying emission model.

Pure functions only: no session, no clock. The caller derives the
streak state, checks for an exhausted supply and applies the caps.

Coin-valued intermediates (base, streak bonus, daily bonus, raw, final)
are rounded half-up to 2 decimals as they are produced. Ratios and
multipliers are kept at full precision so the rounding error does not
compound.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from runcoin.rewards.errors import InvalidRewardInput

_CENT = Decimal("0.01")


def round_half_up(value: float, places: int = 2) -> float:
    """Round like a receipt does: 0.125 -> 0.13, never banker's rounding."""
    quantum = _CENT if places == 2 else Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class EconomyParams:
    """Immutable snapshot of the economy parameters a calculation reads."""

    base_rate_per_km: float
    streak_max_days: int
    streak_max_bonus: float
    daily_first_bonus: float
    emission_floor: float
    emission_k: float
    max_reward_per_run: float
    total_supply: float
    remaining: float

    @classmethod
    def from_config(cls, config: Any) -> EconomyParams:  # noqa: ANN401
        return cls(
            base_rate_per_km=config.base_rate_per_km,
            streak_max_days=config.streak_max_days,
            streak_max_bonus=config.streak_max_bonus,
            daily_first_bonus=config.daily_first_bonus,
            emission_floor=config.emission_floor,
            emission_k=config.emission_k,
            max_reward_per_run=config.max_reward_per_run,
            total_supply=config.total_supply,
            remaining=config.remaining,
        )


@dataclass(frozen=True)
class RewardBreakdown:
    """Every intermediate of one run reward, kept for receipts and audits."""

    distance_km: float
    base_reward: float
    streak_days: int
    streak_factor: float
    streak_rate: float
    streak_bonus: float
    daily_bonus: float
    is_first_run_today: bool
    remaining_ratio: float
    emission_multiplier: float
    raw_reward: float
    final_reward: float
    supply_exhausted: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def streak_factor(streak_days: int, streak_max_days: int) -> float:
    if streak_max_days <= 0:
        msg = "streak_max_days must be positive"
        raise InvalidRewardInput(msg)
    return min(streak_days, streak_max_days) / streak_max_days


def streak_rate(streak_days: int, streak_max_days: int, streak_max_bonus: float) -> float:
    """Bonus rate for a streak; sqrt front-loads the incentive, saturating at ``streak_max_bonus``."""
    return streak_max_bonus * math.sqrt(streak_factor(streak_days, streak_max_days))


def remaining_ratio(remaining: float, total_supply: float) -> float:
    if total_supply <= 0:
        return 0.0
    return min(1.0, max(0.0, remaining / total_supply))


def emission_multiplier(remaining: float, total_supply: float, floor: float, k: float) -> float:
    """Convex decay ``ratio ** k`` as supply depletes, never below ``floor``."""
    return max(floor, remaining_ratio(remaining, total_supply) ** k)


def _check_inputs(distance_km: float, streak_days: int) -> None:
    if not isinstance(distance_km, (int, float)) or not math.isfinite(distance_km) or distance_km < 0:
        msg = f"distance_km must be a finite number >= 0, got {distance_km!r}"
        raise InvalidRewardInput(msg)
    if streak_days < 1:
        msg = f"streak_days must be >= 1, got {streak_days!r}"
        raise InvalidRewardInput(msg)


def exhausted_breakdown(distance_km: float, streak_days: int, is_first_run_today: bool) -> RewardBreakdown:
    """Zero-reward sentinel returned once the unissued pool is empty."""
    return RewardBreakdown(
        distance_km=distance_km,
        base_reward=0.0,
        streak_days=streak_days,
        streak_factor=0.0,
        streak_rate=0.0,
        streak_bonus=0.0,
        daily_bonus=0.0,
        is_first_run_today=is_first_run_today,
        remaining_ratio=0.0,
        emission_multiplier=0.0,
        raw_reward=0.0,
        final_reward=0.0,
        supply_exhausted=True,
    )


def calculate_run_reward(
    distance_km: float,
    streak_days: int,
    is_first_run_today: bool,
    params: EconomyParams,
) -> RewardBreakdown:
    """Compute the coin reward for one finished run.

    Steps, in order:
      1. base = distance_km * base_rate_per_km
      2-3. streak_rate = streak_max_bonus * sqrt(min(streak, max_days) / max_days)
      4. streak_bonus = base * streak_rate
      5. daily_bonus = base * daily_first_bonus on the first run of the day
      6-7. emission multiplier from the remaining/total supply ratio
      8. raw = base + streak_bonus + daily_bonus
      9. final = min(raw * multiplier, max_reward_per_run)

    The supply and daily-user clips are not applied here; see ``caps``.
    """
    _check_inputs(distance_km, streak_days)
    if params.remaining <= 0:
        return exhausted_breakdown(distance_km, streak_days, is_first_run_today)

    base = round_half_up(distance_km * params.base_rate_per_km)
    factor = streak_factor(streak_days, params.streak_max_days)
    rate = params.streak_max_bonus * math.sqrt(factor)
    streak_bonus = round_half_up(base * rate)
    daily_bonus = round_half_up(base * params.daily_first_bonus) if is_first_run_today else 0.0

    ratio = remaining_ratio(params.remaining, params.total_supply)
    multiplier = max(params.emission_floor, ratio ** params.emission_k)

    raw = round_half_up(base + streak_bonus + daily_bonus)
    final = min(round_half_up(raw * multiplier), params.max_reward_per_run)

    return RewardBreakdown(
        distance_km=distance_km,
        base_reward=base,
        streak_days=streak_days,
        streak_factor=factor,
        streak_rate=rate,
        streak_bonus=streak_bonus,
        daily_bonus=daily_bonus,
        is_first_run_today=is_first_run_today,
        remaining_ratio=ratio,
        emission_multiplier=multiplier,
        raw_reward=raw,
        final_reward=round_half_up(final),
    )

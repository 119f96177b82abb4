"""Finish-run flow: streak -> calculator -> caps -> supply -> ledger -> ladder."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from runcoin.config import Settings
from runcoin.db.models import Run, User
from runcoin.rewards.calculator import EconomyParams, calculate_run_reward
from runcoin.rewards.caps import RUN_SOURCE, earned_today, enforce_caps
from runcoin.rewards.clock import today_and_yesterday, utc_now
from runcoin.rewards.economy_service import effective_remaining, get_economy_config, reserve_supply
from runcoin.rewards.errors import InvalidRewardInput, RunAlreadyFinishedError, RunNotFoundError
from runcoin.rewards.ledger_service import credit_coins_once, find_entry_by_key
from runcoin.rewards.progression import LinearLadder
from runcoin.rewards.streaks import derive_streak

logger = logging.getLogger(__name__)

RUN_COMPLETED = "completed"
RUN_IN_PROGRESS = "in_progress"


@dataclass
class FinishRunResult:
    run_id: str
    tokens_earned: float
    coin_balance: float
    level: int
    streak_days: int
    levels_gained: int = 0
    reason: str | None = None
    breakdown: dict[str, Any] | None = field(default=None)


def run_idempotency_key(run_id: str) -> str:
    return f"run:{run_id}"


def _validate(run_id: str, distance_km: float, duration_sec: int) -> None:
    if not run_id or len(run_id) > 64:
        msg = "run_id must be 1-64 characters"
        raise InvalidRewardInput(msg)
    if isinstance(distance_km, bool) or not isinstance(distance_km, (int, float)) or not math.isfinite(distance_km):
        msg = "distance_km must be a finite number"
        raise InvalidRewardInput(msg)
    if distance_km < 0:
        msg = "distance_km must be >= 0"
        raise InvalidRewardInput(msg)
    if isinstance(duration_sec, bool) or not isinstance(duration_sec, int) or duration_sec < 0:
        msg = "duration_sec must be an integer >= 0"
        raise InvalidRewardInput(msg)


def _receipt(breakdown: dict[str, Any], caps: Any, granted: float) -> dict[str, Any]:  # noqa: ANN401
    """Breakdown plus cap outcome; the short keys feed the wallet receipt view."""
    return {
        **breakdown,
        "calculated_reward": breakdown["final_reward"],
        "supply_clipped": caps.supply_clipped or granted < caps.final,
        "daily_clipped": caps.daily_clipped,
        "earned_today": caps.earned_today,
        "daily_cap_remaining": caps.daily_cap_remaining,
        "final_reward": granted,
        "distance": breakdown["base_reward"],
        "streak": breakdown["streak_bonus"],
        "daily": breakdown["daily_bonus"],
        "bonus": 0.0,
    }


async def _replay(db: AsyncSession, user: User, run: Run) -> FinishRunResult:
    entry = await find_entry_by_key(db, run_idempotency_key(run.id))
    breakdown = json.loads(entry.note) if entry is not None and entry.note else None
    return FinishRunResult(
        run_id=run.id,
        tokens_earned=run.coins_earned,
        coin_balance=user.coin_balance,
        level=user.level,
        streak_days=user.current_streak,
        reason="already_finished",
        breakdown=breakdown,
    )


async def finish_run(
    db: AsyncSession,
    user: User,
    run_id: str,
    distance_km: float,
    duration_sec: int,
    settings: Settings,
    now: datetime | None = None,
) -> FinishRunResult:
    """Complete a run and credit its reward.

    The run row is created when the tracker never registered it. Finishing
    an already completed run replays the stored result. Writes are flushed,
    not committed; the caller commits.

    Streak fields are written only together with a credited reward. A run
    that earns nothing (too short, no economy, supply exhausted) does not
    mark the day as run, so it neither keeps a streak alive nor uses up
    the first-run-of-the-day bonus.
    """
    _validate(run_id, distance_km, duration_sec)
    now = now or utc_now()
    today, yesterday = today_and_yesterday(now, settings.economy_timezone)

    run = await db.get(Run, run_id)
    if run is not None and run.user_id != user.id:
        raise RunNotFoundError(f"Run {run_id} not found")
    if run is not None and run.status == RUN_COMPLETED:
        return await _replay(db, user, run)

    if run is None:
        run = Run(id=run_id, user_id=user.id, started_at=now)
        db.add(run)
    run.distance_km = distance_km
    run.duration_sec = duration_sec
    run.status = RUN_COMPLETED
    run.finished_at = now
    run.coins_earned = 0.0

    streak = derive_streak(user.last_run_date, user.current_streak, today, yesterday)

    def _zero(reason: str, breakdown: dict[str, Any] | None = None) -> FinishRunResult:
        return FinishRunResult(
            run_id=run_id,
            tokens_earned=0.0,
            coin_balance=user.coin_balance,
            level=user.level,
            streak_days=user.current_streak,
            reason=reason,
            breakdown=breakdown,
        )

    config = await get_economy_config(db)
    if config is None:
        await db.flush()
        return _zero("economy_not_configured")

    remaining = effective_remaining(config)
    if remaining <= 0:
        await db.flush()
        return _zero("supply_exhausted")

    if distance_km < settings.min_run_distance_km or duration_sec < settings.min_run_duration_sec:
        await db.flush()
        return _zero("run_too_short")

    params = replace(EconomyParams.from_config(config), remaining=remaining)
    breakdown = calculate_run_reward(distance_km, streak.streak_days, streak.is_first_run_today, params)

    already_earned = await earned_today(db, user.id, today)
    caps = enforce_caps(breakdown.final_reward, remaining, already_earned, config.daily_user_cap)

    granted = await reserve_supply(db, config, caps.final, settings.supply_write_attempts)
    receipt = _receipt(breakdown.as_dict(), caps, granted)

    if granted <= 0:
        await db.flush()
        return _zero("daily_cap_reached" if caps.final <= 0 else "supply_exhausted", receipt)

    credit = await credit_coins_once(
        db,
        user,
        granted,
        entry_type="run",
        source_type=RUN_SOURCE,
        source_id=run_id,
        note=json.dumps(receipt),
        base_reward=breakdown.base_reward,
        multiplier_used=breakdown.emission_multiplier,
        idempotency_key=run_idempotency_key(run_id),
        ladder=LinearLadder(config.coins_per_level),
        day=today,
    )
    if credit is None:
        raise RunAlreadyFinishedError(f"Run {run_id} was already credited")

    run.coins_earned = granted
    user.last_run_date = today
    user.current_streak = streak.streak_days
    user.longest_streak = max(user.longest_streak, streak.streak_days)
    await db.flush()

    return FinishRunResult(
        run_id=run_id,
        tokens_earned=granted,
        coin_balance=credit.coin_balance,
        level=credit.level_update.level,
        streak_days=streak.streak_days,
        levels_gained=credit.level_update.levels_gained,
        breakdown=receipt,
    )


async def _replay_after_conflict(db: AsyncSession, user: User, run_id: str) -> FinishRunResult:
    await db.refresh(user)
    run = await db.get(Run, run_id, populate_existing=True)
    if run is not None and run.user_id != user.id:
        raise RunNotFoundError(f"Run {run_id} not found")
    if run is None or run.status != RUN_COMPLETED:
        raise RunAlreadyFinishedError(f"Run {run_id} was already credited")
    return await _replay(db, user, run)


async def finish_run_and_commit(
    db: AsyncSession,
    user: User,
    run_id: str,
    distance_km: float,
    duration_sec: int,
    settings: Settings,
    now: datetime | None = None,
) -> FinishRunResult:
    """``finish_run`` followed by commit.

    Two finishes of the same run can both pass the replay check. The
    loser then hits the runs primary key or the ``run:<id>`` ledger key;
    its writes are rolled back and it gets the winner's stored result.
    """
    try:
        result = await finish_run(db, user, run_id, distance_km, duration_sec, settings, now=now)
        await db.commit()
    except (IntegrityError, RunAlreadyFinishedError):
        await db.rollback()
        logger.warning("Run %s for user %s was finished concurrently; replaying", run_id, user.id)
        return await _replay_after_conflict(db, user, run_id)
    return result

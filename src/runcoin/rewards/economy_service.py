"""Economy record access: seeding, reads and versioned supply writes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from runcoin.config import Settings
from runcoin.db.models import EconomyConfig
from runcoin.rewards.calculator import round_half_up
from runcoin.rewards.errors import SupplyConflictError

logger = logging.getLogger(__name__)


async def get_economy_config(db: AsyncSession) -> EconomyConfig | None:
    """Return the singleton economy record, or None if it was never seeded."""
    result = await db.execute(select(EconomyConfig).order_by(EconomyConfig.id).limit(1))
    return result.scalar_one_or_none()


async def seed_economy_config(db: AsyncSession, settings: Settings) -> EconomyConfig:
    """Create the economy record from settings if none exists. Idempotent."""
    existing = await get_economy_config(db)
    if existing is not None:
        return existing

    config = EconomyConfig(
        base_rate_per_km=settings.base_rate_per_km,
        streak_max_days=settings.streak_max_days,
        streak_max_bonus=settings.streak_max_bonus,
        daily_first_bonus=settings.daily_first_bonus,
        emission_floor=settings.emission_floor,
        emission_k=settings.emission_k,
        max_reward_per_run=settings.max_reward_per_run,
        daily_user_cap=settings.daily_user_cap,
        total_supply=settings.total_supply,
        distributed=0.0,
        remaining=settings.total_supply,
        coins_per_level=settings.coins_per_level,
        daily_reward_cap=settings.daily_reward_cap,
        reward_multiplier=settings.reward_multiplier,
        version=1,
        updated_at=datetime.now(timezone.utc),
    )
    db.add(config)
    await db.commit()
    logger.info("Seeded economy config: total_supply=%s", settings.total_supply)
    return config


def effective_remaining(config: EconomyConfig) -> float:
    """``remaining`` recomputed from the supply counters rather than trusted as stored."""
    return round_half_up(max(0.0, config.total_supply - config.distributed))


async def reserve_supply(
    db: AsyncSession,
    config: EconomyConfig,
    amount: float,
    attempts: int = 3,
) -> float:
    """Move up to ``amount`` coins from remaining to distributed.

    Compare-and-swap on ``version``: if another writer bumped the record
    since it was read, the record is refreshed, the grant re-clipped to
    the fresh remaining supply and the write retried. Returns the amount
    actually reserved (possibly less than requested, possibly 0).
    """
    if amount <= 0:
        return 0.0

    for _ in range(max(1, attempts)):
        granted = round_half_up(min(amount, effective_remaining(config)))
        if granted <= 0:
            logger.info("Supply exhausted: requested=%s", amount)
            return 0.0

        distributed = round_half_up(config.distributed + granted)
        result = await db.execute(
            update(EconomyConfig)
            .where(EconomyConfig.id == config.id, EconomyConfig.version == config.version)
            .values(
                distributed=distributed,
                remaining=round_half_up(max(0.0, config.total_supply - distributed)),
                version=config.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await db.refresh(config)
        if result.rowcount == 1:
            return granted

        logger.warning("Economy config version moved during supply write; retrying")

    msg = "Economy supply kept changing; retry the request"
    raise SupplyConflictError(msg)

"""Achievement catalog seed data — the 8 launch achievements."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from runcoin.db.models import Achievement

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Distance
    {
        "slug": "first_run",
        "title": "First Run",
        "description": "Complete your very first run",
        "badge_emoji": "\U0001f3c3",
        "category": "distance",
        "rarity": "common",
        "requirement_type": "total_runs",
        "requirement_value": 1,
        "reward_coins": 15,
        "display_order": 1,
    },
    {
        "slug": "10km_club",
        "title": "10km Club",
        "description": "Run a total of 10 kilometres",
        "badge_emoji": "\U0001f3af",
        "category": "distance",
        "rarity": "common",
        "requirement_type": "total_distance",
        "requirement_value": 10,
        "reward_coins": 25,
        "display_order": 2,
    },
    # Consistency
    {
        "slug": "10_runs",
        "title": "10 Runs Streak",
        "description": "Complete 10 runs",
        "badge_emoji": "\U0001f525",
        "category": "consistency",
        "rarity": "common",
        "requirement_type": "total_runs",
        "requirement_value": 10,
        "reward_coins": 30,
        "display_order": 3,
    },
    # Special
    {
        "slug": "calorie_burner",
        "title": "Calorie Burner",
        "description": "Burn through 5,000 kilometres of running",
        "badge_emoji": "\U0001f4aa",
        "category": "special",
        "rarity": "common",
        "requirement_type": "total_distance",
        "requirement_value": 5000,
        "reward_coins": 30,
        "display_order": 4,
    },
    {
        "slug": "50km_star",
        "title": "50km Star",
        "description": "Run a total of 50 kilometres",
        "badge_emoji": "⭐",
        "category": "distance",
        "rarity": "rare",
        "requirement_type": "total_distance",
        "requirement_value": 50,
        "reward_coins": 40,
        "display_order": 5,
    },
    {
        "slug": "inferno",
        "title": "Inferno",
        "description": "Run a total of 20,000 kilometres",
        "badge_emoji": "\U0001f525",
        "category": "special",
        "rarity": "rare",
        "requirement_type": "total_distance",
        "requirement_value": 20000,
        "reward_coins": 45,
        "display_order": 6,
    },
    {
        "slug": "50_runs_master",
        "title": "50 Runs Master",
        "description": "Complete 50 runs",
        "badge_emoji": "\U0001f48e",
        "category": "consistency",
        "rarity": "rare",
        "requirement_type": "total_runs",
        "requirement_value": 50,
        "reward_coins": 60,
        "display_order": 7,
    },
    {
        "slug": "100km_legend",
        "title": "100km Legend",
        "description": "Run a total of 100 kilometres",
        "badge_emoji": "\U0001f3c6",
        "category": "distance",
        "rarity": "epic",
        "requirement_type": "total_distance",
        "requirement_value": 100,
        "reward_coins": 80,
        "display_order": 8,
    },
]


async def seed_achievements(db: AsyncSession) -> int:
    """Upsert the achievement catalog by slug. Returns the number of rows written.

    Idempotent — existing rows are updated in place, ids never change,
    so unlock records stay attached.
    """
    result = await db.execute(select(Achievement))
    existing = {a.slug: a for a in result.scalars()}

    count = 0
    for data in ACHIEVEMENT_SEED_DATA:
        row = existing.get(data["slug"])
        if row is None:
            db.add(Achievement(**data, is_active=True))
        else:
            for key, value in data.items():
                setattr(row, key, value)
        count += 1

    await db.commit()
    logger.info("Seeded %d achievements", count)
    return count

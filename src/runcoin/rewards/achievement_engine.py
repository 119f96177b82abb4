"""Achievement engine — evaluates user statistics against the achievement catalog."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from runcoin.config import Settings
from runcoin.db.models import Achievement, Follow, QuestProgress, Run, User, UserAchievement
from runcoin.rewards.calculator import round_half_up
from runcoin.rewards.clock import local_day
from runcoin.rewards.economy_service import get_economy_config
from runcoin.rewards.events import ACHIEVEMENT_CHANNEL, publish_event, publish_level_up
from runcoin.rewards.ledger_service import credit_coins_once
from runcoin.rewards.progression import LinearLadder

logger = logging.getLogger(__name__)

ACHIEVEMENT_SOURCE = "achievement"
REQUIREMENT_TYPES = ("total_distance", "total_runs", "quest_streak", "friend_count")


def achievement_bonus_key(user_id: int, achievement_id: int) -> str:
    """Deterministic ledger key for the bonus of one (user, achievement) pair."""
    return f"achievement:{achievement_id}:user:{user_id}"


def achievement_bonus_note(title: str) -> str:
    return f'Achievement unlocked: "{title}"'


@dataclass(frozen=True)
class UserStats:
    total_distance: float
    total_runs: int
    quest_streak: int
    friend_count: int

    def value_for(self, requirement_type: str) -> float | None:
        if requirement_type not in REQUIREMENT_TYPES:
            return None
        return getattr(self, requirement_type)


@dataclass(frozen=True)
class AchievementSnapshot:
    """Plain copy of a catalog row; survives a session rollback mid-pass."""

    id: int
    slug: str
    title: str
    description: str
    badge_emoji: str | None
    category: str
    rarity: str
    requirement_type: str
    requirement_value: float
    reward_coins: float

    @classmethod
    def from_model(cls, row: Achievement) -> AchievementSnapshot:
        return cls(
            id=row.id,
            slug=row.slug,
            title=row.title,
            description=row.description,
            badge_emoji=row.badge_emoji,
            category=row.category,
            rarity=row.rarity,
            requirement_type=row.requirement_type,
            requirement_value=row.requirement_value,
            reward_coins=row.reward_coins,
        )


@dataclass(frozen=True)
class UnlockedAchievement:
    achievement: AchievementSnapshot
    progress: float
    bonus_coins: float


class AchievementEngine:
    """Unlocks achievements at most once per user, tolerating concurrent passes.

    No locks are taken. Each unlock re-checks for an existing record right
    before writing, the (user_id, achievement_id) unique constraint rejects
    a racing duplicate, and the bonus is keyed in the ledger so coins are
    never credited twice even if the unlock write itself raced.
    """

    def __init__(self, db: AsyncSession, redis: object | None, settings: Settings) -> None:
        self.db = db
        self.redis = redis
        self.settings = settings

    async def load_catalog(self) -> list[AchievementSnapshot]:
        result = await self.db.execute(
            select(Achievement)
            .where(Achievement.is_active.is_(True))
            .order_by(Achievement.display_order, Achievement.id)
        )
        return [AchievementSnapshot.from_model(a) for a in result.scalars()]

    async def unlocked_ids(self, user_id: int) -> set[int]:
        result = await self.db.execute(
            select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
        )
        return set(result.scalars())

    async def has_unlock(self, user_id: int, achievement_id: int) -> bool:
        result = await self.db.execute(
            select(UserAchievement.id).where(
                UserAchievement.user_id == user_id,
                UserAchievement.achievement_id == achievement_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def compute_stats(self, user_id: int) -> UserStats:
        runs = await self.db.execute(
            select(func.coalesce(func.sum(Run.distance_km), 0.0), func.count(Run.id)).where(
                Run.user_id == user_id,
                Run.status == "completed",
            )
        )
        total_distance, total_runs = runs.one()

        quests = await self.db.execute(
            select(func.count(QuestProgress.id)).where(
                QuestProgress.user_id == user_id,
                QuestProgress.completed.is_(True),
            )
        )
        follows = await self.db.execute(
            select(func.count(Follow.id)).where(Follow.follower_id == user_id)
        )
        return UserStats(
            total_distance=float(total_distance),
            total_runs=int(total_runs),
            quest_streak=int(quests.scalar_one()),
            friend_count=int(follows.scalar_one()),
        )

    async def _reward_multiplier(self) -> float:
        config = await get_economy_config(self.db)
        return config.reward_multiplier if config is not None else self.settings.reward_multiplier

    async def check(self, user: User, now: datetime | None = None) -> list[UnlockedAchievement]:
        """Evaluate every locked achievement for ``user``.

        Returns the achievements newly unlocked by this pass. A second pass
        with unchanged statistics returns an empty list.
        """
        catalog = await self.load_catalog()
        unlocked = await self.unlocked_ids(user.id)
        stats = await self.compute_stats(user.id)
        multiplier = await self._reward_multiplier()

        newly: list[UnlockedAchievement] = []
        for achievement in catalog:
            if achievement.id in unlocked:
                continue
            value = stats.value_for(achievement.requirement_type)
            if value is None or value < achievement.requirement_value:
                continue
            result = await self.unlock(user, achievement, value, multiplier, now=now)
            if result is not None:
                newly.append(result)
        return newly

    async def unlock(
        self,
        user: User,
        achievement: AchievementSnapshot,
        progress: float,
        multiplier: float = 1.0,
        now: datetime | None = None,
    ) -> UnlockedAchievement | None:
        """Write one unlock and its bonus, then commit. Returns None if already unlocked."""
        if await self.has_unlock(user.id, achievement.id):
            return None

        now = now or datetime.now(timezone.utc)
        bonus = round_half_up(achievement.reward_coins * multiplier)

        record = UserAchievement(
            user_id=user.id,
            achievement_id=achievement.id,
            unlocked_at=now,
            progress=progress,
            final_reward=bonus,
        )
        self.db.add(record)

        paid = 0.0
        levels_gained = 0
        try:
            await self.db.flush()
            if achievement.reward_coins > 0:
                credit = await credit_coins_once(
                    self.db,
                    user,
                    bonus,
                    idempotency_key=achievement_bonus_key(user.id, achievement.id),
                    entry_type="bonus",
                    source_type=ACHIEVEMENT_SOURCE,
                    source_id=achievement.slug,
                    note=achievement_bonus_note(achievement.title),
                    base_reward=achievement.reward_coins,
                    multiplier_used=multiplier,
                    ladder=LinearLadder(await self._coins_per_level()),
                    day=local_day(now, self.settings.economy_timezone),
                )
                if credit is None:
                    logger.warning(
                        "Bonus for achievement %s already credited to user %s; unlock recorded without coins",
                        achievement.slug, user.id,
                    )
                else:
                    paid = bonus
                    levels_gained = credit.level_update.levels_gained
            record.final_reward = paid
            await self.db.commit()
        except IntegrityError:
            # A concurrent pass unlocked (or credited) the same pair first.
            await self.db.rollback()
            await self.db.refresh(user)
            logger.warning("Duplicate unlock of %s for user %s skipped", achievement.slug, user.id)
            return None

        await publish_event(self.redis, ACHIEVEMENT_CHANNEL, {
            "user_id": user.id,
            "slug": achievement.slug,
            "title": achievement.title,
            "rarity": achievement.rarity,
            "bonus_coins": paid,
        })
        await publish_level_up(self.redis, user.id, user.level, levels_gained)
        return UnlockedAchievement(achievement=achievement, progress=progress, bonus_coins=paid)

    async def _coins_per_level(self) -> float:
        config = await get_economy_config(self.db)
        return config.coins_per_level if config is not None else self.settings.coins_per_level

"""Achievement engine — thresholds, idempotence and duplicate-unlock races."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from runcoin.db.models import Achievement, LedgerEntry, Run, UserAchievement
from runcoin.rewards.achievement_engine import (
    AchievementEngine,
    UserStats,
    achievement_bonus_key,
    achievement_bonus_note,
)
from runcoin.rewards.economy_service import get_economy_config
from tests.factories import add_completed_quests, add_completed_runs, add_follows, make_user


class _RecordingRedis:
    def __init__(self) -> None:
        self.channels: list[str] = []

    async def publish(self, channel: str, _message: str) -> int:
        self.channels.append(channel)
        return 1


async def _achievement(db, slug: str) -> Achievement:
    return (await db.execute(select(Achievement).where(Achievement.slug == slug))).scalar_one()


async def _unlock_count(db, user_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(UserAchievement).where(UserAchievement.user_id == user_id)
    )
    return result.scalar_one()


async def _ledger_total(db, user_id: int) -> float:
    result = await db.execute(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0.0)).where(LedgerEntry.user_id == user_id)
    )
    return float(result.scalar_one())


@pytest_asyncio.fixture
async def runner(db_session):
    return await make_user(db_session)


@pytest.fixture
def engine(db_session, settings):
    return AchievementEngine(db_session, None, settings)


class TestStats:
    @pytest.mark.asyncio
    async def test_counts_only_completed_runs(self, db_session, engine, runner):
        await add_completed_runs(db_session, runner, [5, 7.5])
        await add_completed_runs(db_session, runner, [1000], prefix="open")
        run = await db_session.get(Run, f"open-{runner.id}-0")
        run.status = "in_progress"
        await db_session.commit()

        stats = await engine.compute_stats(runner.id)
        assert stats.total_runs == 2
        assert stats.total_distance == 12.5

    @pytest.mark.asyncio
    async def test_quests_and_follows(self, db_session, engine, runner):
        friends = [await make_user(db_session, f"friend{i}@example.com") for i in range(3)]
        await add_follows(db_session, runner, friends)
        await add_follows(db_session, friends[0], [runner])  # inbound edges do not count
        await add_completed_quests(db_session, runner, 4)

        stats = await engine.compute_stats(runner.id)
        assert stats.friend_count == 3
        assert stats.quest_streak == 4

    def test_unknown_requirement_type(self):
        stats = UserStats(total_distance=1, total_runs=1, quest_streak=0, friend_count=0)
        assert stats.value_for("total_runs") == 1
        assert stats.value_for("elevation_gain") is None


class TestCheck:
    @pytest.mark.asyncio
    async def test_unlocks_qualifying_achievements_with_bonus(self, db_session, engine, runner):
        await add_completed_runs(db_session, runner, [6, 5])

        unlocked = await engine.check(runner)

        slugs = [u.achievement.slug for u in unlocked]
        assert slugs == ["first_run", "10km_club"]
        assert [u.bonus_coins for u in unlocked] == [15, 25]
        assert runner.coin_balance == 40
        assert await _ledger_total(db_session, runner.id) == 40

        entry = (await db_session.execute(
            select(LedgerEntry).where(LedgerEntry.source_id == "first_run")
        )).scalar_one()
        assert entry.type == "bonus"
        assert entry.source_type == "achievement"
        assert entry.note == achievement_bonus_note("First Run")
        assert entry.note == 'Achievement unlocked: "First Run"'

    @pytest.mark.asyncio
    async def test_second_pass_is_a_no_op(self, db_session, engine, runner):
        await add_completed_runs(db_session, runner, [12])
        first = await engine.check(runner)
        second = await engine.check(runner)

        assert len(first) == 2
        assert second == []
        assert await _unlock_count(db_session, runner.id) == 2
        assert await _ledger_total(db_session, runner.id) == 40

    @pytest.mark.asyncio
    async def test_new_progress_unlocks_more(self, db_session, engine, runner):
        await add_completed_runs(db_session, runner, [4])
        assert [u.achievement.slug for u in await engine.check(runner)] == ["first_run"]

        await add_completed_runs(db_session, runner, [7], prefix="later")
        assert [u.achievement.slug for u in await engine.check(runner)] == ["10km_club"]

    @pytest.mark.asyncio
    async def test_nothing_qualifies(self, engine, runner):
        assert await engine.check(runner) == []

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self, db_session, engine, runner):
        await add_completed_runs(db_session, runner, [1.0] * 10)
        slugs = {u.achievement.slug for u in await engine.check(runner)}
        assert slugs == {"first_run", "10km_club", "10_runs"}

    @pytest.mark.asyncio
    async def test_reward_multiplier_scales_bonus(self, db_session, engine, runner):
        config = await get_economy_config(db_session)
        config.reward_multiplier = 1.5
        await db_session.commit()
        await add_completed_runs(db_session, runner, [3])

        [unlocked] = await engine.check(runner)
        assert unlocked.bonus_coins == 22.5
        record = (await db_session.execute(select(UserAchievement))).scalar_one()
        assert record.final_reward == 22.5

    @pytest.mark.asyncio
    async def test_bonus_leaves_global_supply_alone(self, db_session, engine, runner):
        await add_completed_runs(db_session, runner, [3])
        await engine.check(runner)
        config = await get_economy_config(db_session)
        assert config.distributed == 0

    @pytest.mark.asyncio
    async def test_social_and_quest_requirements(self, db_session, engine, runner):
        db_session.add_all([
            Achievement(slug="social", title="Social Runner", category="social",
                        requirement_type="friend_count", requirement_value=2, reward_coins=10),
            Achievement(slug="questor", title="Questor", category="quests",
                        requirement_type="quest_streak", requirement_value=3, reward_coins=0),
            Achievement(slug="climber", title="Climber", category="special",
                        requirement_type="elevation_gain", requirement_value=0, reward_coins=99),
        ])
        await db_session.commit()
        friends = [await make_user(db_session, f"pal{i}@example.com") for i in range(2)]
        await add_follows(db_session, runner, friends)
        await add_completed_quests(db_session, runner, 3)

        unlocked = {u.achievement.slug: u for u in await engine.check(runner)}
        assert set(unlocked) == {"social", "questor"}
        assert unlocked["questor"].bonus_coins == 0
        # Zero-reward achievements write no ledger entry
        assert await _ledger_total(db_session, runner.id) == 10

    @pytest.mark.asyncio
    async def test_inactive_achievements_are_ignored(self, db_session, engine, runner):
        first_run = await _achievement(db_session, "first_run")
        first_run.is_active = False
        await db_session.commit()
        await add_completed_runs(db_session, runner, [2])
        assert await engine.check(runner) == []

    @pytest.mark.asyncio
    async def test_publishes_unlock_events(self, db_session, settings, runner):
        redis = _RecordingRedis()
        await add_completed_runs(db_session, runner, [3])
        await AchievementEngine(db_session, redis, settings).check(runner)
        assert redis.channels == ["pubsub:achievement_unlocked"]


class TestRaces:
    @pytest.mark.asyncio
    async def test_concurrent_unlock_resolves_to_skip(self, db_session, engine, runner, monkeypatch):
        """The pre-write re-check lost the race: the unique constraint rejects the duplicate."""
        await add_completed_runs(db_session, runner, [3])
        first_run = await _achievement(db_session, "first_run")
        db_session.add(UserAchievement(
            user_id=runner.id,
            achievement_id=first_run.id,
            unlocked_at=datetime.now(timezone.utc),
            progress=1,
            final_reward=15,
        ))
        await db_session.commit()

        async def _stale_unlocked_ids(_user_id):
            return set()

        async def _stale_has_unlock(_user_id, _achievement_id):
            return False

        monkeypatch.setattr(engine, "unlocked_ids", _stale_unlocked_ids)
        monkeypatch.setattr(engine, "has_unlock", _stale_has_unlock)

        assert await engine.check(runner) == []
        assert await _unlock_count(db_session, runner.id) == 1
        assert await _ledger_total(db_session, runner.id) == 0
        assert runner.coin_balance == 0

    @pytest.mark.asyncio
    async def test_race_mid_pass_keeps_other_unlocks(self, db_session, engine, runner, monkeypatch):
        await add_completed_runs(db_session, runner, [11])
        first_run = await _achievement(db_session, "first_run")
        db_session.add(UserAchievement(
            user_id=runner.id,
            achievement_id=first_run.id,
            unlocked_at=datetime.now(timezone.utc),
        ))
        await db_session.commit()

        async def _stale_unlocked_ids(_user_id):
            return set()

        async def _stale_has_unlock(_user_id, _achievement_id):
            return False

        monkeypatch.setattr(engine, "unlocked_ids", _stale_unlocked_ids)
        monkeypatch.setattr(engine, "has_unlock", _stale_has_unlock)

        unlocked = await engine.check(runner)
        assert [u.achievement.slug for u in unlocked] == ["10km_club"]
        assert runner.coin_balance == 25

    @pytest.mark.asyncio
    async def test_bonus_never_credited_twice(self, db_session, engine, runner):
        """Unlock record missing but the keyed bonus exists: record the unlock, pay nothing."""
        await add_completed_runs(db_session, runner, [3])
        first_run = await _achievement(db_session, "first_run")
        db_session.add(LedgerEntry(
            user_id=runner.id,
            amount=15,
            type="bonus",
            source_type="achievement",
            source_id="first_run",
            note=achievement_bonus_note("First Run"),
            final_reward=15,
            entry_date=date(2026, 3, 10),
            idempotency_key=achievement_bonus_key(runner.id, first_run.id),
            created_at=datetime.now(timezone.utc),
        ))
        runner.coin_balance = 15
        await db_session.commit()

        [unlocked] = await engine.check(runner)
        assert unlocked.achievement.slug == "first_run"
        assert unlocked.bonus_coins == 0
        assert await _unlock_count(db_session, runner.id) == 1
        assert await _ledger_total(db_session, runner.id) == 15
        assert runner.coin_balance == 15

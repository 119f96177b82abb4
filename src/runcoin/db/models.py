"""ORM models for the reward and progression engine.

Tables are created by the alembic migrations in ``alembic/versions``;
``Base.metadata.create_all`` produces the same shape for development
databases and the test suite.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from runcoin.db.base import Base, BigIntPK


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Runner account plus the denormalized wallet/progression fields the engine owns."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Wallet (cached sum of coin_ledger) ---
    coin_balance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")

    # --- Progression ---
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    level_progress_coins: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")

    # --- Streak ---
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_run_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # --- Daily diminishing-return counter ---
    daily_rewarded_coins: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    daily_reset_date: Mapped[date | None] = mapped_column(Date, nullable=True)


# ---------------------------------------------------------------------------
# Economy
# ---------------------------------------------------------------------------


class EconomyConfig(Base):
    """Singleton economy parameters. ``version`` guards distributed/remaining writes."""

    __tablename__ = "economy_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    base_rate_per_km: Mapped[float] = mapped_column(Float, nullable=False)
    streak_max_days: Mapped[int] = mapped_column(Integer, nullable=False)
    streak_max_bonus: Mapped[float] = mapped_column(Float, nullable=False)
    daily_first_bonus: Mapped[float] = mapped_column(Float, nullable=False)
    emission_floor: Mapped[float] = mapped_column(Float, nullable=False)
    emission_k: Mapped[float] = mapped_column(Float, nullable=False)
    max_reward_per_run: Mapped[float] = mapped_column(Float, nullable=False)
    daily_user_cap: Mapped[float] = mapped_column(Float, nullable=False)
    total_supply: Mapped[float] = mapped_column(Float, nullable=False)
    distributed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    remaining: Mapped[float] = mapped_column(Float, nullable=False)
    coins_per_level: Mapped[float] = mapped_column(Float, nullable=False)
    daily_reward_cap: Mapped[float] = mapped_column(Float, nullable=False)
    reward_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0, server_default="1")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LedgerEntry(Base):
    """Append-only coin ledger. Source of truth for every balance change."""

    __tablename__ = "coin_ledger"
    __table_args__ = (
        Index("idx_coin_ledger_user_day", "user_id", "entry_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    source_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_reward: Mapped[float | None] = mapped_column(Float, nullable=True)
    multiplier_used: Mapped[float | None] = mapped_column(Float, nullable=True)
    final_reward: Mapped[float | None] = mapped_column(Float, nullable=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class Run(Base):
    """A recorded run. ``id`` is generated by the tracking client."""

    __tablename__ = "runs"
    __table_args__ = (
        Index("idx_runs_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    duration_sec: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="in_progress")
    coins_earned: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Achievement catalog — seeded on startup."""

    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    badge_emoji: Mapped[str | None] = mapped_column(String(16), nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    requirement_type: Mapped[str] = mapped_column(String(32), nullable=False)
    requirement_value: Mapped[float] = mapped_column(Float, nullable=False)
    reward_coins: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class UserAchievement(Base):
    """Unlock records — UNIQUE(user_id, achievement_id) makes the unlock a conditional write."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="user_achievements_user_id_achievement_id_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id: Mapped[int] = mapped_column(Integer, ForeignKey("achievements.id"), nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    final_reward: Mapped[float | None] = mapped_column(Float, nullable=True)

    achievement: Mapped[Achievement] = relationship("Achievement", lazy="joined")


# ---------------------------------------------------------------------------
# Statistic inputs (quests, follows)
# ---------------------------------------------------------------------------


class DailyQuest(Base):
    """Date-scoped quest instance."""

    __tablename__ = "daily_quests"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    quest_date: Mapped[date] = mapped_column(Date, nullable=False)
    quest_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_value: Mapped[float] = mapped_column(Float, nullable=False)
    reward_coins: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    title: Mapped[str] = mapped_column(String(128), nullable=False)


class QuestProgress(Base):
    """Per-user progress on a daily quest."""

    __tablename__ = "quest_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "quest_id", name="quest_progress_user_id_quest_id_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quest_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("daily_quests.id", ondelete="CASCADE"), nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")


class Follow(Base):
    """One-directional follow edge."""

    __tablename__ = "follows"
    __table_args__ = (
        UniqueConstraint("follower_id", "followee_id", name="follows_follower_id_followee_id_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    follower_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    followee_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

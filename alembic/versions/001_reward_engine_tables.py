"""Reward engine tables.

Creates users, economy_config, coin_ledger, runs, achievements,
user_achievements, daily_quests, quest_progress and follows.

Revision ID: 001_reward_engine_tables
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_reward_engine_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            email VARCHAR(320) UNIQUE NOT NULL,
            display_name VARCHAR(64),
            is_banned BOOLEAN DEFAULT false,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            coin_balance DOUBLE PRECISION NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1 CHECK (level >= 1),
            level_progress_coins DOUBLE PRECISION NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_run_date DATE,
            daily_rewarded_coins DOUBLE PRECISION NOT NULL DEFAULT 0,
            daily_reset_date DATE
        )
    """)

    # --- Economy (singleton, versioned) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS economy_config (
            id SERIAL PRIMARY KEY,
            base_rate_per_km DOUBLE PRECISION NOT NULL,
            streak_max_days INTEGER NOT NULL,
            streak_max_bonus DOUBLE PRECISION NOT NULL,
            daily_first_bonus DOUBLE PRECISION NOT NULL,
            emission_floor DOUBLE PRECISION NOT NULL,
            emission_k DOUBLE PRECISION NOT NULL,
            max_reward_per_run DOUBLE PRECISION NOT NULL,
            daily_user_cap DOUBLE PRECISION NOT NULL,
            total_supply DOUBLE PRECISION NOT NULL,
            distributed DOUBLE PRECISION NOT NULL DEFAULT 0,
            remaining DOUBLE PRECISION NOT NULL,
            coins_per_level DOUBLE PRECISION NOT NULL,
            daily_reward_cap DOUBLE PRECISION NOT NULL,
            reward_multiplier DOUBLE PRECISION NOT NULL DEFAULT 1,
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMPTZ
        )
    """)

    # --- Coin Ledger (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS coin_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount DOUBLE PRECISION NOT NULL,
            type VARCHAR(16) NOT NULL,
            source_type VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            note TEXT,
            base_reward DOUBLE PRECISION,
            multiplier_used DOUBLE PRECISION,
            final_reward DOUBLE PRECISION,
            entry_date DATE NOT NULL,
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_coin_ledger_user_day
        ON coin_ledger(user_id, entry_date)
    """)

    # --- Runs ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS runs (
            id VARCHAR(64) PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            distance_km DOUBLE PRECISION NOT NULL DEFAULT 0,
            duration_sec INTEGER NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'in_progress',
            coins_earned DOUBLE PRECISION NOT NULL DEFAULT 0,
            started_at TIMESTAMPTZ,
            finished_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_runs_user_status
        ON runs(user_id, status)
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            badge_emoji VARCHAR(16),
            category VARCHAR(32) NOT NULL,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            requirement_type VARCHAR(32) NOT NULL,
            requirement_value DOUBLE PRECISION NOT NULL,
            reward_coins DOUBLE PRECISION NOT NULL DEFAULT 0,
            display_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)

    # --- User Achievements (one unlock per pair) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            achievement_id INTEGER NOT NULL REFERENCES achievements(id),
            unlocked_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            progress DOUBLE PRECISION NOT NULL DEFAULT 0,
            final_reward DOUBLE PRECISION,
            CONSTRAINT user_achievements_user_id_achievement_id_key UNIQUE (user_id, achievement_id)
        )
    """)

    # --- Statistic inputs ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_quests (
            id BIGSERIAL PRIMARY KEY,
            quest_date DATE NOT NULL,
            quest_type VARCHAR(32) NOT NULL,
            target_value DOUBLE PRECISION NOT NULL,
            reward_coins DOUBLE PRECISION NOT NULL DEFAULT 0,
            title VARCHAR(128) NOT NULL
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS quest_progress (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            quest_id BIGINT NOT NULL REFERENCES daily_quests(id) ON DELETE CASCADE,
            progress DOUBLE PRECISION NOT NULL DEFAULT 0,
            completed BOOLEAN NOT NULL DEFAULT false,
            CONSTRAINT quest_progress_user_id_quest_id_key UNIQUE (user_id, quest_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS follows (
            id BIGSERIAL PRIMARY KEY,
            follower_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            followee_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT follows_follower_id_followee_id_key UNIQUE (follower_id, followee_id)
        )
    """)


def downgrade() -> None:
    for table in (
        "follows",
        "quest_progress",
        "daily_quests",
        "user_achievements",
        "achievements",
        "runs",
        "coin_ledger",
        "economy_config",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")

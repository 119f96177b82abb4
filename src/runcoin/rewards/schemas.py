"""Pydantic request/response models for reward endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# --- Runs ---


class FinishRunRequest(BaseModel):
    distance_km: float
    duration_sec: int


class FinishRunResponse(BaseModel):
    run_id: str
    tokens_earned: float
    coin_balance: float
    level: int
    streak_days: int
    levels_gained: int = 0
    reason: str | None = None
    breakdown: dict[str, Any] | None = None


# --- Coins ---


class ApplyCoinsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    delta_coins: float = Field(alias="deltaCoins")
    reason: str = Field(default="", max_length=256)


class ApplyCoinsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    coin_balance: float
    level: int
    level_progress_coins: float
    levels_gained: int = Field(alias="levelsGained")
    reduced_rewards: bool = Field(alias="reducedRewards")
    applied_multiplier: float = Field(alias="appliedMultiplier")
    original_amount: float = Field(alias="originalAmount")
    actual_amount: float = Field(alias="actualAmount")


# --- Activities ---


class AwardActivityRequest(BaseModel):
    activity_type: str = Field(min_length=1, max_length=64)
    metadata: dict[str, Any] = {}


class AwardActivityResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activity_type: str
    coins_awarded: int = Field(alias="coinsAwarded")
    new_balance: float = Field(alias="newBalance")
    reason: str


# --- Achievements ---


class CheckAchievementsRequest(BaseModel):
    user_email: str | None = None


class AchievementResponse(BaseModel):
    slug: str
    title: str
    description: str
    badge_emoji: str | None = None
    category: str
    rarity: str
    requirement_type: str
    requirement_value: float
    reward_coins: float


class UnlockedAchievementResponse(BaseModel):
    slug: str
    title: str
    rarity: str
    badge_emoji: str | None = None
    progress: float
    bonus_coins: float


class CheckAchievementsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    newly_unlocked: list[UnlockedAchievementResponse] = Field(alias="newlyUnlocked")


class AchievementCatalogResponse(BaseModel):
    achievements: list[AchievementResponse]


class UserAchievementEntry(BaseModel):
    slug: str
    title: str
    rarity: str
    badge_emoji: str | None = None
    unlocked_at: datetime
    progress: float
    final_reward: float | None = None


class UserAchievementsResponse(BaseModel):
    unlocked: list[UserAchievementEntry]
    total_available: int
    total_unlocked: int


# --- Economy / wallet ---


class EconomyResponse(BaseModel):
    total_supply: float
    distributed: float
    remaining: float
    percent_distributed: float
    emission_multiplier: float
    base_rate_per_km: float
    max_reward_per_run: float
    daily_user_cap: float
    coins_per_level: float
    daily_reward_cap: float
    reward_multiplier: float


class LevelView(BaseModel):
    level: int
    coins_into_level: float
    coins_for_level: float
    progress_ratio: float
    coins_to_next: float


class WalletResponse(BaseModel):
    coin_balance: float
    level: int
    level_progress_coins: float
    linear: LevelView
    quadratic: LevelView
    current_streak: int
    longest_streak: int
    last_run_date: date | None = None
    daily_rewarded_coins: float
    daily_reset_date: date | None = None
    balance_drift: float = 0.0


class LedgerEntryResponse(BaseModel):
    amount: float
    type: str
    source_type: str
    source_id: str | None = None
    note: str | None = None
    base_reward: float | None = None
    multiplier_used: float | None = None
    final_reward: float | None = None
    entry_date: date
    created_at: datetime


class LedgerHistoryResponse(BaseModel):
    entries: list[LedgerEntryResponse]
    total: int
    page: int
    per_page: int


class LevelEntry(BaseModel):
    level: int
    linear_cumulative: float
    quadratic_cumulative: float


class AllLevelsResponse(BaseModel):
    coins_per_level: float
    levels: list[LevelEntry]

"""Reward API endpoints — runs, coin awards, activities, achievements and wallet views."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from runcoin.auth.dependencies import get_current_user
from runcoin.config import Settings
from runcoin.database import get_session
from runcoin.db.models import Achievement, User, UserAchievement
from runcoin.dependencies import get_redis_dep, get_settings_dep
from runcoin.rewards.achievement_engine import AchievementEngine
from runcoin.rewards.calculator import emission_multiplier, round_half_up
from runcoin.rewards.coin_service import apply_coin_and_level_up, award_activity_coins
from runcoin.rewards.economy_service import effective_remaining, get_economy_config
from runcoin.rewards.errors import ForbiddenPrincipalError
from runcoin.rewards.events import REWARD_CHANNEL, publish_event, publish_level_up
from runcoin.rewards.ledger_service import list_entries, reconcile_balance
from runcoin.rewards.progression import LevelState, LinearLadder, QuadraticLadder, quadratic_threshold
from runcoin.rewards.run_service import finish_run_and_commit
from runcoin.rewards.schemas import (
    AchievementCatalogResponse,
    AchievementResponse,
    AllLevelsResponse,
    ApplyCoinsRequest,
    ApplyCoinsResponse,
    AwardActivityRequest,
    AwardActivityResponse,
    CheckAchievementsRequest,
    CheckAchievementsResponse,
    EconomyResponse,
    FinishRunRequest,
    FinishRunResponse,
    LedgerEntryResponse,
    LedgerHistoryResponse,
    LevelEntry,
    LevelView,
    UnlockedAchievementResponse,
    UserAchievementEntry,
    UserAchievementsResponse,
    WalletResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Rewards"])


async def _coins_per_level(db: AsyncSession, settings: Settings) -> float:
    config = await get_economy_config(db)
    return config.coins_per_level if config is not None else settings.coins_per_level


# ── Reward operations ──


@router.post("/runs/{run_id}/finish", response_model=FinishRunResponse)
async def finish_run_endpoint(
    body: FinishRunRequest,
    run_id: str = Path(min_length=1, max_length=64),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
    settings: Settings = Depends(get_settings_dep),
):
    """Finish a run and credit its capped, emission-scaled reward."""
    result = await finish_run_and_commit(db, user, run_id, body.distance_km, body.duration_sec, settings)

    if result.tokens_earned > 0 and result.reason is None:
        await publish_event(redis, REWARD_CHANNEL, {
            "user_id": user.id,
            "source_type": "run",
            "source_id": run_id,
            "amount": result.tokens_earned,
        })
        await publish_level_up(redis, user.id, result.level, result.levels_gained)

    return FinishRunResponse(
        run_id=result.run_id,
        tokens_earned=result.tokens_earned,
        coin_balance=result.coin_balance,
        level=result.level,
        streak_days=result.streak_days,
        levels_gained=result.levels_gained,
        reason=result.reason,
        breakdown=result.breakdown,
    )


@router.post("/coins/apply", response_model=ApplyCoinsResponse)
async def apply_coins_endpoint(
    body: ApplyCoinsRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
    settings: Settings = Depends(get_settings_dep),
):
    """Credit coins through the daily soft cap and advance the level ladder."""
    result = await apply_coin_and_level_up(db, user, body.delta_coins, body.reason, settings)
    await db.commit()
    await publish_level_up(redis, user.id, result.level, result.levels_gained)

    return ApplyCoinsResponse(
        coin_balance=result.coin_balance,
        level=result.level,
        level_progress_coins=result.level_progress_coins,
        levels_gained=result.levels_gained,
        reduced_rewards=result.reduced_rewards,
        applied_multiplier=result.applied_multiplier,
        original_amount=result.original_amount,
        actual_amount=result.actual_amount,
    )


@router.post("/activities/award", response_model=AwardActivityResponse)
async def award_activity_endpoint(
    body: AwardActivityRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
    settings: Settings = Depends(get_settings_dep),
):
    """Pay the flat reward for a discrete activity."""
    result = await award_activity_coins(db, user, body.activity_type, body.metadata, settings)
    await db.commit()

    if result.coins_awarded > 0:
        await publish_event(redis, REWARD_CHANNEL, {
            "user_id": user.id,
            "source_type": "activity",
            "source_id": body.activity_type,
            "amount": result.coins_awarded,
        })
        await publish_level_up(redis, user.id, user.level, result.levels_gained)

    return AwardActivityResponse(
        activity_type=result.activity_type,
        coins_awarded=result.coins_awarded,
        new_balance=result.new_balance,
        reason=result.reason,
    )


@router.post("/achievements/check", response_model=CheckAchievementsResponse)
async def check_achievements_endpoint(
    body: CheckAchievementsRequest | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
    settings: Settings = Depends(get_settings_dep),
):
    """Unlock every achievement the caller now qualifies for. Idempotent."""
    if body is not None and body.user_email and body.user_email.lower() != user.email.lower():
        raise ForbiddenPrincipalError("Achievements can only be checked for the calling user")

    engine = AchievementEngine(db, redis, settings)
    unlocked = await engine.check(user)

    return CheckAchievementsResponse(
        newly_unlocked=[
            UnlockedAchievementResponse(
                slug=u.achievement.slug,
                title=u.achievement.title,
                rarity=u.achievement.rarity,
                badge_emoji=u.achievement.badge_emoji,
                progress=u.progress,
                bonus_coins=u.bonus_coins,
            )
            for u in unlocked
        ]
    )


# ── Public read endpoints ──


@router.get("/economy", response_model=EconomyResponse)
async def get_economy(db: AsyncSession = Depends(get_session)):
    """Global supply state and the current emission multiplier."""
    config = await get_economy_config(db)
    if config is None:
        raise HTTPException(status_code=404, detail="Economy not configured")

    remaining = effective_remaining(config)
    percent = config.distributed / config.total_supply * 100 if config.total_supply > 0 else 100.0
    return EconomyResponse(
        total_supply=config.total_supply,
        distributed=config.distributed,
        remaining=remaining,
        percent_distributed=round_half_up(percent, 4),
        emission_multiplier=emission_multiplier(
            remaining, config.total_supply, config.emission_floor, config.emission_k
        ),
        base_rate_per_km=config.base_rate_per_km,
        max_reward_per_run=config.max_reward_per_run,
        daily_user_cap=config.daily_user_cap,
        coins_per_level=config.coins_per_level,
        daily_reward_cap=config.daily_reward_cap,
        reward_multiplier=config.reward_multiplier,
    )


@router.get("/achievements", response_model=AchievementCatalogResponse)
async def list_achievements(db: AsyncSession = Depends(get_session)):
    """Active achievement catalog in display order."""
    result = await db.execute(
        select(Achievement)
        .where(Achievement.is_active.is_(True))
        .order_by(Achievement.display_order, Achievement.id)
    )
    return AchievementCatalogResponse(
        achievements=[
            AchievementResponse(
                slug=a.slug,
                title=a.title,
                description=a.description,
                badge_emoji=a.badge_emoji,
                category=a.category,
                rarity=a.rarity,
                requirement_type=a.requirement_type,
                requirement_value=a.requirement_value,
                reward_coins=a.reward_coins,
            )
            for a in result.scalars()
        ]
    )


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels(
    count: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings_dep),
):
    """Cumulative coin thresholds of the first ``count`` levels on both ladders."""
    coins_per_level = await _coins_per_level(db, settings)
    return AllLevelsResponse(
        coins_per_level=coins_per_level,
        levels=[
            LevelEntry(
                level=level,
                linear_cumulative=(level - 1) * coins_per_level,
                quadratic_cumulative=quadratic_threshold(level),
            )
            for level in range(1, count + 1)
        ],
    )


# ── Authenticated read endpoints ──


@router.get("/users/me/wallet", response_model=WalletResponse)
async def get_my_wallet(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings_dep),
):
    """Balance (reconciled against the ledger), level on both ladders and streak."""
    balance, drift = await reconcile_balance(db, user)
    if drift != 0:
        await db.commit()

    state = LevelState(level=user.level, progress_coins=user.level_progress_coins, total_coins=balance)
    linear = LinearLadder(await _coins_per_level(db, settings)).describe(state)
    quadratic = QuadraticLadder().describe(state)

    return WalletResponse(
        coin_balance=balance,
        level=user.level,
        level_progress_coins=user.level_progress_coins,
        linear=LevelView(**vars(linear)),
        quadratic=LevelView(**vars(quadratic)),
        current_streak=user.current_streak,
        longest_streak=user.longest_streak,
        last_run_date=user.last_run_date,
        daily_rewarded_coins=user.daily_rewarded_coins,
        daily_reset_date=user.daily_reset_date,
        balance_drift=drift,
    )


@router.get("/users/me/ledger", response_model=LedgerHistoryResponse)
async def get_my_ledger(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Coin ledger history (paginated, newest first)."""
    entries, total = await list_entries(db, user.id, page, per_page)
    return LedgerHistoryResponse(
        entries=[
            LedgerEntryResponse(
                amount=e.amount,
                type=e.type,
                source_type=e.source_type,
                source_id=e.source_id,
                note=e.note,
                base_reward=e.base_reward,
                multiplier_used=e.multiplier_used,
                final_reward=e.final_reward,
                entry_date=e.entry_date,
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/users/me/achievements", response_model=UserAchievementsResponse)
async def get_my_achievements(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Achievements the caller has unlocked, newest first."""
    result = await db.execute(
        select(UserAchievement)
        .where(UserAchievement.user_id == user.id)
        .order_by(UserAchievement.unlocked_at.desc(), UserAchievement.id.desc())
    )
    unlocked = result.scalars().unique().all()

    total_available = await db.execute(
        select(func.count()).select_from(Achievement).where(Achievement.is_active.is_(True))
    )

    return UserAchievementsResponse(
        unlocked=[
            UserAchievementEntry(
                slug=ua.achievement.slug,
                title=ua.achievement.title,
                rarity=ua.achievement.rarity,
                badge_emoji=ua.achievement.badge_emoji,
                unlocked_at=ua.unlocked_at,
                progress=ua.progress,
                final_reward=ua.final_reward,
            )
            for ua in unlocked
        ],
        total_available=total_available.scalar_one(),
        total_unlocked=len(unlocked),
    )

"""Coin ledger: the single credit path plus balance reconciliation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from runcoin.db.models import LedgerEntry, User
from runcoin.rewards.calculator import round_half_up
from runcoin.rewards.progression import LevelLadder, LevelState, LevelUpdate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditResult:
    entry: LedgerEntry
    coin_balance: float
    level_update: LevelUpdate


async def find_entry_by_key(db: AsyncSession, idempotency_key: str) -> LedgerEntry | None:
    result = await db.execute(
        select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def credit_coins(
    db: AsyncSession,
    user: User,
    amount: float,
    *,
    entry_type: str,
    source_type: str,
    ladder: LevelLadder,
    day: date,
    source_id: str | None = None,
    note: str | None = None,
    base_reward: float | None = None,
    multiplier_used: float | None = None,
    idempotency_key: str | None = None,
) -> CreditResult:
    """Credit ``amount`` coins to a user.

    Write order:
    1. Append the ledger entry
    2. Mirror the amount into users.coin_balance
    3. Advance the level ladder

    The caller owns the transaction (flush here, commit in the caller),
    so a failure before commit leaves none of the writes behind. The
    caller also announces any level change, once the commit succeeded.
    """
    amount = round_half_up(amount)
    entry = LedgerEntry(
        user_id=user.id,
        amount=amount,
        type=entry_type,
        source_type=source_type,
        source_id=source_id,
        note=note,
        base_reward=base_reward,
        multiplier_used=multiplier_used,
        final_reward=amount,
        entry_date=day,
        idempotency_key=idempotency_key,
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)

    state = LevelState(
        level=user.level,
        progress_coins=user.level_progress_coins,
        total_coins=user.coin_balance,
    )
    level_update = ladder.advance(state, amount)

    user.coin_balance = round_half_up(user.coin_balance + amount)
    user.level = level_update.level
    user.level_progress_coins = level_update.progress_coins

    await db.flush()

    return CreditResult(entry=entry, coin_balance=user.coin_balance, level_update=level_update)


async def credit_coins_once(
    db: AsyncSession,
    user: User,
    amount: float,
    *,
    idempotency_key: str,
    **kwargs: Any,  # noqa: ANN401
) -> CreditResult | None:
    """``credit_coins`` guarded by an idempotency key. Returns None if the key was already used.

    The unique index on ``idempotency_key`` still rejects a concurrent
    duplicate that passes this check; that surfaces as IntegrityError on flush.
    """
    if await find_entry_by_key(db, idempotency_key):
        return None
    return await credit_coins(db, user, amount, idempotency_key=idempotency_key, **kwargs)


async def ledger_balance(db: AsyncSession, user_id: int) -> float:
    """Balance reconstructed from the ledger."""
    result = await db.execute(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0.0)).where(LedgerEntry.user_id == user_id)
    )
    return round_half_up(float(result.scalar_one()))


async def reconcile_balance(db: AsyncSession, user: User) -> tuple[float, float]:
    """Repair ``users.coin_balance`` from the ledger.

    Returns (balance, drift) where drift is ledger minus cached before repair.
    """
    balance = await ledger_balance(db, user.id)
    drift = round_half_up(balance - user.coin_balance)
    if drift != 0:
        logger.warning(
            "Coin balance drift for user %s: cached=%s ledger=%s; repairing",
            user.id, user.coin_balance, balance,
        )
        user.coin_balance = balance
        await db.flush()
    return balance, drift


async def list_entries(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[LedgerEntry], int]:
    """Newest-first page of a user's ledger plus the total entry count."""
    total_result = await db.execute(
        select(func.count()).select_from(LedgerEntry).where(LedgerEntry.user_id == user_id)
    )
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.user_id == user_id)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total_result.scalar_one()

"""Level ladders.

Two ladder shapes exist and are deliberately not reconciled:

- ``LinearLadder``: every level costs ``coins_per_level``; the user row
  stores the level and the coins accumulated toward the next one.
- ``QuadraticLadder``: level N starts at N^2 * 10 cumulative coins; the
  level is a function of total coin intake.

Both expose ``advance`` (apply a credit) and ``describe`` (progress view)
so callers pick one by name through ``get_ladder``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from runcoin.rewards.calculator import round_half_up

QUADRATIC_COINS_FACTOR = 10


@dataclass(frozen=True)
class LevelState:
    level: int
    progress_coins: float
    total_coins: float


@dataclass(frozen=True)
class LevelUpdate:
    level: int
    progress_coins: float
    levels_gained: int
    total_coins: float


@dataclass(frozen=True)
class LevelInfo:
    level: int
    coins_into_level: float
    coins_for_level: float
    progress_ratio: float
    coins_to_next: float


class LevelLadder(Protocol):
    name: str

    def advance(self, state: LevelState, delta: float) -> LevelUpdate: ...

    def describe(self, state: LevelState) -> LevelInfo: ...


class LinearLadder:
    """Constant cost per level."""

    name = "linear"

    def __init__(self, coins_per_level: float) -> None:
        if coins_per_level <= 0:
            msg = "coins_per_level must be positive"
            raise ValueError(msg)
        self.coins_per_level = coins_per_level

    def advance(self, state: LevelState, delta: float) -> LevelUpdate:
        progress = state.progress_coins + delta
        gained = 0
        if progress >= self.coins_per_level:
            gained = int(progress // self.coins_per_level)
            progress -= gained * self.coins_per_level
        progress = round_half_up(max(0.0, min(progress, self.coins_per_level)))
        return LevelUpdate(
            level=max(state.level, 1) + gained,
            progress_coins=progress,
            levels_gained=gained,
            total_coins=round_half_up(state.total_coins + delta),
        )

    def describe(self, state: LevelState) -> LevelInfo:
        into = max(0.0, state.progress_coins)
        return LevelInfo(
            level=max(state.level, 1),
            coins_into_level=round_half_up(into),
            coins_for_level=self.coins_per_level,
            progress_ratio=min(1.0, into / self.coins_per_level),
            coins_to_next=round_half_up(max(0.0, self.coins_per_level - into)),
        )


def quadratic_threshold(level: int) -> float:
    """Cumulative coins at which ``level`` starts."""
    return level * level * QUADRATIC_COINS_FACTOR


def quadratic_level_for(total_coins: float) -> int:
    level = max(1, math.isqrt(max(0, int(total_coins // QUADRATIC_COINS_FACTOR))))
    while quadratic_threshold(level + 1) <= total_coins:
        level += 1
    return level


class QuadraticLadder:
    """Level N requires N^2 * 10 cumulative coins."""

    name = "quadratic"

    def advance(self, state: LevelState, delta: float) -> LevelUpdate:
        total = round_half_up(state.total_coins + delta)
        level = max(state.level, quadratic_level_for(total))
        into = max(0.0, total - quadratic_threshold(level))
        return LevelUpdate(
            level=level,
            progress_coins=round_half_up(into),
            levels_gained=level - max(state.level, 1),
            total_coins=total,
        )

    def describe(self, state: LevelState) -> LevelInfo:
        level = quadratic_level_for(state.total_coins)
        span = quadratic_threshold(level + 1) - quadratic_threshold(level)
        into = max(0.0, state.total_coins - quadratic_threshold(level))
        return LevelInfo(
            level=level,
            coins_into_level=round_half_up(into),
            coins_for_level=span,
            progress_ratio=min(1.0, into / span),
            coins_to_next=round_half_up(max(0.0, span - into)),
        )


def get_ladder(name: str, coins_per_level: float) -> LevelLadder:
    if name == LinearLadder.name:
        return LinearLadder(coins_per_level)
    if name == QuadraticLadder.name:
        return QuadraticLadder()
    msg = f"Unknown level ladder: {name}"
    raise ValueError(msg)

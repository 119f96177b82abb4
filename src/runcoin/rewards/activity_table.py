"""Flat coin rewards for discrete activities.

This channel is paid outside the emission curve and the run caps.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from runcoin.rewards.errors import InvalidActivityError, InvalidRewardInput


@dataclass(frozen=True)
class ActivityReward:
    activity_type: str
    coins: int
    reason: str


def _number(metadata: Mapping[str, Any], key: str, default: float = 0) -> float:
    value = metadata.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        msg = f"metadata.{key} must be a number"
        raise InvalidRewardInput(msg)
    if value < 0:
        msg = f"metadata.{key} must be >= 0"
        raise InvalidRewardInput(msg)
    return value


def _whole_number(metadata: Mapping[str, Any], key: str, default: int = 0) -> int:
    value = _number(metadata, key, default)
    if not float(value).is_integer():
        msg = f"metadata.{key} must be a whole number"
        raise InvalidRewardInput(msg)
    return int(value)


def _run_completed(metadata: Mapping[str, Any]) -> tuple[int, str]:
    distance = _number(metadata, "distance_km")
    return math.floor(distance * 10), f"Run completed: {distance:.1f} km"


def _challenge_completed(metadata: Mapping[str, Any]) -> tuple[int, str]:
    reward = _whole_number(metadata, "reward", 200) or 200
    name = metadata.get("challengeName") or metadata.get("challenge_name") or "Challenge"
    return reward, f"Completed: {name}"


def _streak_milestone(metadata: Mapping[str, Any]) -> tuple[int, str]:
    days = _whole_number(metadata, "days")
    return days * 20, f"{days}-day streak!"


def _flat(coins: int, reason: str) -> Callable[[Mapping[str, Any]], tuple[int, str]]:
    return lambda _metadata: (coins, reason)


ACTIVITY_REWARDS: dict[str, Callable[[Mapping[str, Any]], tuple[int, str]]] = {
    "run_completed": _run_completed,
    "personal_best": _flat(100, "New personal best!"),
    "challenge_joined": _flat(20, "Joined a challenge"),
    "challenge_completed": _challenge_completed,
    "group_joined": _flat(30, "Joined a group"),
    "group_post": _flat(15, "Shared with group"),
    "event_attended": _flat(50, "Attended group event"),
    "streak_milestone": _streak_milestone,
}


def resolve_activity_reward(activity_type: str, metadata: Mapping[str, Any] | None = None) -> ActivityReward:
    """Look up the coins and reason for an activity. Unknown types are rejected."""
    handler = ACTIVITY_REWARDS.get(activity_type)
    if handler is None:
        msg = f"Invalid activity type: {activity_type!r}. Must be one of {sorted(ACTIVITY_REWARDS)}"
        raise InvalidActivityError(msg)
    coins, reason = handler(metadata or {})
    return ActivityReward(activity_type=activity_type, coins=coins, reason=reason)

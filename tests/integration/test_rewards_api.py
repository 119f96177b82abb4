"""End-to-end reward flows over HTTP."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete, func, select

from runcoin.database import get_session
from runcoin.db.models import EconomyConfig, LedgerEntry, Run
from runcoin.dependencies import get_redis_dep
from runcoin.main import create_app
from runcoin.rewards import ledger_service
from tests.factories import add_completed_runs, auth_headers, make_user


async def _ledger_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(LedgerEntry))).scalar_one()


class TestFinishRun:
    @pytest.mark.asyncio
    async def test_first_run_reward(self, authed_client: AsyncClient, db_session, user):
        response = await authed_client.post(
            "/api/v1/runs/morning-5k/finish", json={"distance_km": 5, "duration_sec": 1800}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["run_id"] == "morning-5k"
        assert data["tokens_earned"] == 5.68
        assert data["coin_balance"] == 5.68
        assert data["streak_days"] == 1
        assert data["level"] == 1
        assert data["reason"] is None
        assert data["breakdown"]["base_reward"] == 5.0

        await db_session.refresh(user)
        assert user.coin_balance == 5.68
        run = await db_session.get(Run, "morning-5k")
        assert run.status == "completed"

    @pytest.mark.asyncio
    async def test_replay_does_not_credit_again(self, authed_client: AsyncClient, db_session):
        body = {"distance_km": 5, "duration_sec": 1800}
        first = await authed_client.post("/api/v1/runs/r1/finish", json=body)
        second = await authed_client.post("/api/v1/runs/r1/finish", json=body)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["reason"] == "already_finished"
        assert second.json()["tokens_earned"] == 5.68
        assert second.json()["coin_balance"] == 5.68
        assert await _ledger_count(db_session) == 1

    @pytest.mark.asyncio
    async def test_someone_elses_run_is_not_found(self, authed_client: AsyncClient, db_session):
        other = await make_user(db_session, "other@example.com")
        db_session.add(Run(id="theirs", user_id=other.id, status="in_progress"))
        await db_session.commit()

        response = await authed_client.post(
            "/api/v1/runs/theirs/finish", json={"distance_km": 5, "duration_sec": 1800}
        )
        assert response.status_code == 404
        assert response.json()["error"] == "run_not_found"

    @pytest.mark.asyncio
    async def test_concurrent_credit_of_the_same_run_is_a_conflict(
        self, authed_client: AsyncClient, db_session, user, monkeypatch
    ):
        # The other request has written its ledger row but not yet completed the run
        now = datetime.now(timezone.utc)
        db_session.add(Run(id="race-1", user_id=user.id, status="in_progress", started_at=now))
        db_session.add(LedgerEntry(
            user_id=user.id,
            amount=5.68,
            type="run",
            source_type="run",
            source_id="race-1",
            entry_date=now.date(),
            idempotency_key="run:race-1",
            created_at=now,
        ))
        await db_session.commit()

        async def _not_seen_yet(db, key):
            return None

        monkeypatch.setattr(ledger_service, "find_entry_by_key", _not_seen_yet)

        response = await authed_client.post(
            "/api/v1/runs/race-1/finish", json={"distance_km": 5, "duration_sec": 1800}
        )
        assert response.status_code == 409
        assert response.json()["error"] == "run_already_finished"
        assert await _ledger_count(db_session) == 1
        # The supply reservation was rolled back with the failed credit
        distributed = (await db_session.execute(select(EconomyConfig.distributed))).scalar_one()
        assert distributed == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"distance_km": -1, "duration_sec": 1800},
        {"distance_km": 5, "duration_sec": -5},
        {"distance_km": "far", "duration_sec": 1800},
        {"duration_sec": 1800},
    ])
    async def test_invalid_input_writes_nothing(self, authed_client: AsyncClient, db_session, body):
        response = await authed_client.post("/api/v1/runs/bad/finish", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"
        assert await db_session.get(Run, "bad") is None
        assert await _ledger_count(db_session) == 0

    @pytest.mark.asyncio
    async def test_short_run_completes_without_reward(self, authed_client: AsyncClient):
        response = await authed_client.post(
            "/api/v1/runs/stroll/finish", json={"distance_km": 0.2, "duration_sec": 100}
        )
        assert response.status_code == 200
        assert response.json()["tokens_earned"] == 0
        assert response.json()["reason"] == "run_too_short"

    @pytest.mark.asyncio
    async def test_daily_cap(self, authed_client: AsyncClient):
        body = {"distance_km": 40, "duration_sec": 14400}
        earned = [
            (await authed_client.post(f"/api/v1/runs/long-{i}/finish", json=body)).json()
            for i in range(3)
        ]
        assert [e["tokens_earned"] for e in earned] == [30, 20, 0]
        assert earned[2]["reason"] == "daily_cap_reached"
        assert earned[2]["coin_balance"] == 50

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient):
        response = await client.post("/api/v1/runs/r1/finish", json={"distance_km": 5, "duration_sec": 1800})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_supply_accounting(self, authed_client: AsyncClient, db_session):
        await authed_client.post("/api/v1/runs/r1/finish", json={"distance_km": 5, "duration_sec": 1800})
        economy = (await authed_client.get("/api/v1/economy")).json()
        assert economy["distributed"] == 5.68
        assert economy["remaining"] == pytest.approx(economy["total_supply"] - 5.68)

        config = (await db_session.execute(select(EconomyConfig))).scalar_one()
        await db_session.refresh(config)
        assert config.version == 2


class _CommitCheckingRedis:
    """Records, at publish time, whether another session already sees the user's ledger rows."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        self.seen: list[tuple[str, int]] = []

    async def publish(self, channel: str, _message: str) -> int:
        async for other in get_session():
            count = await other.execute(
                select(func.count()).select_from(LedgerEntry).where(LedgerEntry.user_id == self.user_id)
            )
            self.seen.append((channel, count.scalar_one()))
            await other.close()
            break
        return 1


class TestApplyCoins:
    @pytest.mark.asyncio
    async def test_camel_case_contract(self, authed_client: AsyncClient):
        response = await authed_client.post("/api/v1/coins/apply", json={"deltaCoins": 130, "reason": "bonus"})
        assert response.status_code == 200
        data = response.json()
        assert data["levelsGained"] == 1
        assert data["level"] == 2
        assert data["level_progress_coins"] == 30
        assert data["reducedRewards"] is False
        assert data["appliedMultiplier"] == 1.0
        assert data["originalAmount"] == 130
        assert data["actualAmount"] == 130
        assert data["coin_balance"] == 130

    @pytest.mark.asyncio
    async def test_level_up_is_announced_after_commit(self, db_session, user):
        redis = _CommitCheckingRedis(user.id)
        app = create_app()
        app.dependency_overrides[get_redis_dep] = lambda: redis
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post(
                "/api/v1/coins/apply", json={"deltaCoins": 130, "reason": "bonus"}, headers=auth_headers(user)
            )

        assert response.json()["levelsGained"] == 1
        assert redis.seen == [("pubsub:level_up", 1)]

    @pytest.mark.asyncio
    async def test_soft_cap_halves_over_the_limit(self, authed_client: AsyncClient):
        await authed_client.post("/api/v1/coins/apply", json={"deltaCoins": 200, "reason": "big"})
        response = await authed_client.post("/api/v1/coins/apply", json={"deltaCoins": 40, "reason": "late"})
        data = response.json()
        assert data["reducedRewards"] is True
        assert data["appliedMultiplier"] == 0.5
        assert data["actualAmount"] == 20

    @pytest.mark.asyncio
    async def test_missing_delta_rejected(self, authed_client: AsyncClient):
        response = await authed_client.post("/api/v1/coins/apply", json={"reason": "nothing"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"


class TestActivities:
    @pytest.mark.asyncio
    async def test_flat_award(self, authed_client: AsyncClient):
        response = await authed_client.post(
            "/api/v1/activities/award", json={"activity_type": "personal_best"}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["coinsAwarded"] == 100
        assert data["newBalance"] == 100
        assert data["reason"] == "New personal best!"

    @pytest.mark.asyncio
    async def test_metadata_driven_award(self, authed_client: AsyncClient):
        response = await authed_client.post(
            "/api/v1/activities/award",
            json={"activity_type": "streak_milestone", "metadata": {"days": 7}},
        )
        assert response.json()["coinsAwarded"] == 140
        assert response.json()["reason"] == "7-day streak!"

    @pytest.mark.asyncio
    async def test_fractional_reward_is_rejected(self, authed_client: AsyncClient, db_session):
        response = await authed_client.post(
            "/api/v1/activities/award",
            json={"activity_type": "challenge_completed", "metadata": {"reward": 150.5}},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"
        assert await _ledger_count(db_session) == 0

    @pytest.mark.asyncio
    async def test_unknown_activity(self, authed_client: AsyncClient, db_session):
        response = await authed_client.post("/api/v1/activities/award", json={"activity_type": "nap"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_activity"
        assert await _ledger_count(db_session) == 0


class TestAchievements:
    @pytest.mark.asyncio
    async def test_check_unlocks_once(self, authed_client: AsyncClient, db_session, user):
        await add_completed_runs(db_session, user, [6, 5])

        first = await authed_client.post("/api/v1/achievements/check")
        assert first.status_code == 200
        unlocked = first.json()["newlyUnlocked"]
        assert [u["slug"] for u in unlocked] == ["first_run", "10km_club"]
        assert [u["bonus_coins"] for u in unlocked] == [15, 25]

        second = await authed_client.post("/api/v1/achievements/check", json={})
        assert second.json()["newlyUnlocked"] == []

        mine = (await authed_client.get("/api/v1/users/me/achievements")).json()
        assert mine["total_unlocked"] == 2
        assert mine["total_available"] == 8
        assert {u["slug"] for u in mine["unlocked"]} == {"first_run", "10km_club"}

        wallet = (await authed_client.get("/api/v1/users/me/wallet")).json()
        assert wallet["coin_balance"] == 40
        assert wallet["balance_drift"] == 0

    @pytest.mark.asyncio
    async def test_matching_email_is_accepted(self, authed_client: AsyncClient, user):
        response = await authed_client.post(
            "/api/v1/achievements/check", json={"user_email": user.email.upper()}
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_other_principal_forbidden(self, authed_client: AsyncClient):
        response = await authed_client.post(
            "/api/v1/achievements/check", json={"user_email": "someone@else.com"}
        )
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_catalog_is_public(self, client: AsyncClient):
        response = await client.get("/api/v1/achievements")
        assert response.status_code == 200
        slugs = [a["slug"] for a in response.json()["achievements"]]
        assert slugs[0] == "first_run"
        assert len(slugs) == 8


class TestReads:
    @pytest.mark.asyncio
    async def test_economy(self, client: AsyncClient):
        data = (await client.get("/api/v1/economy")).json()
        assert data["distributed"] == 0
        assert data["remaining"] == data["total_supply"]
        assert data["percent_distributed"] == 0
        assert data["emission_multiplier"] == 1.0

    @pytest.mark.asyncio
    async def test_economy_not_configured(self, db_session, client: AsyncClient):
        await db_session.execute(delete(EconomyConfig))
        await db_session.commit()

        response = await client.get("/api/v1/economy")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_levels(self, client: AsyncClient):
        data = (await client.get("/api/v1/levels", params={"count": 3})).json()
        assert data["coins_per_level"] == 100
        assert [lv["linear_cumulative"] for lv in data["levels"]] == [0, 100, 200]
        assert data["levels"][1]["quadratic_cumulative"] == 40

    @pytest.mark.asyncio
    async def test_levels_count_bounds(self, client: AsyncClient):
        response = await client.get("/api/v1/levels", params={"count": 0})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_wallet_repairs_drift(self, authed_client: AsyncClient, db_session, user):
        await authed_client.post("/api/v1/activities/award", json={"activity_type": "group_post"})
        await db_session.refresh(user)
        user.coin_balance = 999
        await db_session.commit()

        data = (await authed_client.get("/api/v1/users/me/wallet")).json()
        assert data["coin_balance"] == 15
        assert data["balance_drift"] == -984
        assert data["linear"]["coins_into_level"] == 15
        assert data["linear"]["coins_to_next"] == 85

        await db_session.refresh(user)
        assert user.coin_balance == 15

    @pytest.mark.asyncio
    async def test_ledger_pagination(self, authed_client: AsyncClient):
        for activity in ("group_post", "group_joined", "event_attended"):
            await authed_client.post("/api/v1/activities/award", json={"activity_type": activity})

        page_one = (await authed_client.get("/api/v1/users/me/ledger", params={"per_page": 2})).json()
        assert page_one["total"] == 3
        assert len(page_one["entries"]) == 2
        assert page_one["entries"][0]["source_id"] == "event_attended"

        page_two = (await authed_client.get(
            "/api/v1/users/me/ledger", params={"per_page": 2, "page": 2}
        )).json()
        assert [e["source_id"] for e in page_two["entries"]] == ["group_post"]

    @pytest.mark.asyncio
    async def test_ledger_is_per_user(self, client: AsyncClient, db_session, user):
        other = await make_user(db_session, "other@example.com")
        await client.post(
            "/api/v1/activities/award", json={"activity_type": "group_post"}, headers=auth_headers(other)
        )
        data = (await client.get("/api/v1/users/me/ledger", headers=auth_headers(user))).json()
        assert data["total"] == 0

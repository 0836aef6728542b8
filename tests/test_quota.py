# tests/test_quota.py
"""
Quota ledger tests
Tests: window rollover, consumption limits, concurrent consumers, history
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from fastapi import status
from sqlalchemy import delete, func, select, update

from app.core.exceptions import AccessError, InputError, NotFoundError, QuotaExceededError
from app.db.models.license import License
from app.db.models.usage import AccessLog, UsageStats
from app.db.repositories.usage_repository import next_period_end
from app.services.quota_service import QuotaService


@pytest.fixture
async def account(register_user):
    """Registered user id plus bearer headers"""
    body = await register_user("q@x.com")
    return {
        "user_id": body["user"]["id"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
    }


async def _set_usage(session_factory, user_id, **values):
    async with session_factory() as session:
        await session.execute(
            update(UsageStats).where(UsageStats.user_id == user_id).values(**values)
        )
        await session.commit()


async def _stats(session_factory, user_id) -> UsageStats:
    async with session_factory() as session:
        return await session.get(UsageStats, user_id)


async def _log_count(session_factory, user_id) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(AccessLog).where(AccessLog.user_id == user_id)
        )
        return result.scalar_one()


def _parse_utc(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def test_next_period_end_is_one_calendar_month():
    assert next_period_end(datetime(2024, 1, 15, 8, 30)) == datetime(2024, 2, 15, 8, 30)
    assert next_period_end(datetime(2024, 1, 31)) == datetime(2024, 2, 29)
    assert next_period_end(datetime(2024, 12, 1)) == datetime(2025, 1, 1)


class TestQuotaWindow:
    """Reading the current window"""

    @pytest.mark.asyncio
    async def test_current_quota(self, client, account):
        response = await client.get("/api/quota/current", headers=account["headers"])

        assert response.status_code == status.HTTP_200_OK
        subscription = response.json()["subscription"]
        assert subscription["user_id"] == account["user_id"]
        assert subscription["product_code"] == "p16-gateway"
        assert subscription["plan_tier"] == "free"
        assert subscription["status"] == "active"
        assert subscription["quota_limit"] == 1_000_000
        assert subscription["quota_used"] == 0
        assert subscription["quota_reset_at"]

    @pytest.mark.asyncio
    async def test_times_are_marked_utc(self, client, session_factory, account):
        await _set_usage(session_factory, account["user_id"], current_period_end=datetime(2030, 1, 1, 12, 0))

        response = await client.get("/api/quota/current", headers=account["headers"])

        subscription = response.json()["subscription"]
        reset_at = _parse_utc(subscription["quota_reset_at"])
        assert reset_at == datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert _parse_utc(subscription["created_at"]).tzinfo is not None

    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        response = await client.get("/api/quota/current")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_rollover_at_period_end(self, session_factory, account):
        user_id = account["user_id"]
        await _set_usage(
            session_factory, user_id,
            current_period_start=datetime(2024, 1, 1),
            current_period_end=datetime(2024, 2, 1),
            tokens_consumed=500,
        )

        async with session_factory() as session:
            view = await QuotaService(session).get_quota(user_id, now=datetime(2024, 2, 1))

        assert view.quota_used == 0
        assert view.period_start == datetime(2024, 2, 1)
        assert view.period_end == datetime(2024, 3, 1)
        stats = await _stats(session_factory, user_id)
        assert stats.tokens_consumed == 0
        assert stats.current_period_end == datetime(2024, 3, 1)

    @pytest.mark.asyncio
    async def test_no_rollover_before_period_end(self, session_factory, account):
        user_id = account["user_id"]
        await _set_usage(
            session_factory, user_id,
            current_period_start=datetime(2024, 1, 1),
            current_period_end=datetime(2024, 2, 1),
            tokens_consumed=500,
        )

        async with session_factory() as session:
            view = await QuotaService(session).get_quota(user_id, now=datetime(2024, 1, 31, 23, 59))

        assert view.quota_used == 500
        assert view.period_end == datetime(2024, 2, 1)

    @pytest.mark.asyncio
    async def test_expired_window_resets_through_api(self, client, session_factory, account):
        past = datetime.utcnow() - timedelta(days=40)
        await _set_usage(
            session_factory, account["user_id"],
            current_period_start=past,
            current_period_end=past + timedelta(days=30),
            tokens_consumed=999,
        )

        response = await client.get("/api/quota/current", headers=account["headers"])

        subscription = response.json()["subscription"]
        assert subscription["quota_used"] == 0
        assert _parse_utc(subscription["quota_reset_at"]) > datetime.now(timezone.utc)

    @pytest.mark.asyncio
    async def test_no_active_license(self, client, session_factory, account):
        async with session_factory() as session:
            await session.execute(delete(License).where(License.user_id == account["user_id"]))
            await session.commit()

        response = await client.get("/api/quota/current", headers=account["headers"])

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["error"] == "NO_ACTIVE_LICENSE"

    @pytest.mark.asyncio
    async def test_expired_license_is_not_active(self, session_factory, account):
        async with session_factory() as session:
            await session.execute(
                update(License)
                .where(License.user_id == account["user_id"])
                .values(expires_at=datetime.utcnow() - timedelta(days=1))
            )
            await session.commit()

            with pytest.raises(AccessError):
                await QuotaService(session).get_quota(account["user_id"])

    @pytest.mark.asyncio
    async def test_missing_usage_row(self, client, session_factory, account):
        async with session_factory() as session:
            await session.execute(delete(UsageStats).where(UsageStats.user_id == account["user_id"]))
            await session.commit()

        response = await client.get("/api/quota/current", headers=account["headers"])

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestConsume:
    """Charging tokens"""

    @pytest.mark.asyncio
    async def test_consume(self, client, session_factory, account):
        response = await client.post("/api/quota/consume", headers=account["headers"], json={
            "model": "gpt-4o",
            "tokens": 1200,
            "request_id": "req-1",
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"success": True, "quota_remaining": 998_800}
        stats = await _stats(session_factory, account["user_id"])
        assert stats.tokens_consumed == 1200
        assert await _log_count(session_factory, account["user_id"]) == 1

    @pytest.mark.asyncio
    async def test_consume_up_to_limit(self, client, session_factory, account):
        await _set_usage(session_factory, account["user_id"], token_quota_limit=1000, tokens_consumed=900)

        exact = await client.post("/api/quota/consume", headers=account["headers"], json={
            "model": "m", "tokens": 100,
        })
        over = await client.post("/api/quota/consume", headers=account["headers"], json={
            "model": "m", "tokens": 1,
        })

        assert exact.status_code == status.HTTP_200_OK
        assert exact.json()["quota_remaining"] == 0
        assert over.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert over.json()["error"] == "QUOTA_EXCEEDED"

    @pytest.mark.asyncio
    async def test_rejected_charge_changes_nothing(self, client, session_factory, account):
        await _set_usage(session_factory, account["user_id"], token_quota_limit=1000, tokens_consumed=950)

        response = await client.post("/api/quota/consume", headers=account["headers"], json={
            "model": "m", "tokens": 100,
        })

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        stats = await _stats(session_factory, account["user_id"])
        assert stats.tokens_consumed == 950
        assert await _log_count(session_factory, account["user_id"]) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tokens", [10 ** 19, 2 ** 63, 2 ** 63 - 1])
    async def test_huge_charge_is_quota_exceeded(self, client, session_factory, account, tokens):
        response = await client.post("/api/quota/consume", headers=account["headers"], json={
            "model": "m", "tokens": tokens,
        })

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json()["error"] == "QUOTA_EXCEEDED"
        stats = await _stats(session_factory, account["user_id"])
        assert stats.tokens_consumed == 0
        assert await _log_count(session_factory, account["user_id"]) == 0

    @pytest.mark.asyncio
    async def test_charge_above_int32_is_logged(self, client, session_factory, account):
        await _set_usage(session_factory, account["user_id"], token_quota_limit=10 ** 12)

        response = await client.post("/api/quota/consume", headers=account["headers"], json={
            "model": "m", "tokens": 3_000_000_000,
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["quota_remaining"] == 10 ** 12 - 3_000_000_000
        history = await client.get("/api/quota/history", headers=account["headers"])
        assert history.json()["logs"][0]["tokens"] == 3_000_000_000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"model": "m", "tokens": 0},
        {"model": "m", "tokens": -5},
        {"model": "m", "tokens": "5"},
        {"model": "m", "tokens": 1.5},
        {"model": "", "tokens": 5},
        {"tokens": 5},
        {"model": "m"},
    ])
    async def test_invalid_consume_request(self, client, account, body):
        response = await client.post("/api/quota/consume", headers=account["headers"], json=body)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_service_rejects_non_positive_tokens(self, db_session, account):
        service = QuotaService(db_session)

        with pytest.raises(InputError):
            await service.consume(account["user_id"], "m", 0)
        with pytest.raises(InputError):
            await service.consume(account["user_id"], "m", True)

    @pytest.mark.asyncio
    async def test_consume_without_usage_row(self, db_session):
        with pytest.raises(NotFoundError):
            await QuotaService(db_session).consume("missing-user", "m", 10)

    @pytest.mark.asyncio
    async def test_concurrent_consumers_never_overrun(self, session_factory, account):
        user_id = account["user_id"]
        await _set_usage(session_factory, user_id, token_quota_limit=1000, tokens_consumed=0)

        async def attempt():
            async with session_factory() as session:
                try:
                    await QuotaService(session).consume(user_id, "m", 150)
                    return "ok"
                except QuotaExceededError:
                    return "exceeded"

        outcomes = await asyncio.gather(*(attempt() for _ in range(10)))

        assert outcomes.count("ok") == 6
        assert outcomes.count("exceeded") == 4
        stats = await _stats(session_factory, user_id)
        assert stats.tokens_consumed == 900
        assert await _log_count(session_factory, user_id) == 6


class TestRolloverOnConsume:
    """Consuming in an ended window"""

    @pytest.fixture
    async def ended_window(self, session_factory, account):
        await _set_usage(
            session_factory, account["user_id"],
            current_period_start=datetime(2024, 1, 1),
            current_period_end=datetime(2024, 2, 1),
            token_quota_limit=1000,
            tokens_consumed=1000,
        )
        return account["user_id"]

    @pytest.mark.asyncio
    async def test_consume_rolls_window_over(self, session_factory, ended_window):
        async with session_factory() as session:
            remaining = await QuotaService(session, rollover_on_consume=True).consume(
                ended_window, "m", 10, now=datetime(2024, 2, 2),
            )

        assert remaining == 990
        stats = await _stats(session_factory, ended_window)
        assert stats.current_period_start == datetime(2024, 2, 2)
        assert stats.current_period_end == datetime(2024, 3, 2)

    @pytest.mark.asyncio
    async def test_consume_without_rollover_uses_stale_window(self, session_factory, ended_window):
        async with session_factory() as session:
            with pytest.raises(QuotaExceededError):
                await QuotaService(session, rollover_on_consume=False).consume(
                    ended_window, "m", 10, now=datetime(2024, 2, 2),
                )

        stats = await _stats(session_factory, ended_window)
        assert stats.tokens_consumed == 1000
        assert stats.current_period_end == datetime(2024, 2, 1)


class TestHistory:
    """Consumption history"""

    @pytest.mark.asyncio
    async def test_history_newest_first(self, client, account):
        for model in ("first", "second", "third"):
            response = await client.post("/api/quota/consume", headers=account["headers"], json={
                "model": model, "tokens": 10,
            })
            assert response.status_code == status.HTTP_200_OK

        response = await client.get("/api/quota/history", headers=account["headers"])

        assert response.status_code == status.HTTP_200_OK
        logs = response.json()["logs"]
        assert [log["model_name"] for log in logs] == ["third", "second", "first"]
        assert all(log["user_id"] == account["user_id"] for log in logs)

    @pytest.mark.asyncio
    async def test_history_capped_at_100(self, client, session_factory, account):
        start = datetime(2024, 1, 1)
        async with session_factory() as session:
            for i in range(105):
                session.add(AccessLog(
                    user_id=account["user_id"],
                    model_name=f"m{i}",
                    tokens=1,
                    timestamp=start + timedelta(minutes=i),
                ))
            await session.commit()

        response = await client.get("/api/quota/history", headers=account["headers"])

        logs = response.json()["logs"]
        assert len(logs) == 100
        assert logs[0]["model_name"] == "m104"
        assert logs[-1]["model_name"] == "m5"

    @pytest.mark.asyncio
    async def test_history_is_per_user(self, client, account, register_user):
        other = await register_user("other@x.com", invite_code="TOPOO-2024-TEST-02")
        await client.post(
            "/api/quota/consume",
            headers={"Authorization": f"Bearer {other['token']}"},
            json={"model": "m", "tokens": 10},
        )

        response = await client.get("/api/quota/history", headers=account["headers"])

        assert response.json()["logs"] == []

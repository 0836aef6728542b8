# tests/test_invites.py
"""
Invite ledger tests
Tests: single use under concurrency, atomic account creation, seeding
"""

import asyncio
import pytest
from sqlalchemy import func, select

from app.core.exceptions import AccessError
from app.db.models.invite import InviteCode
from app.db.models.license import License
from app.db.models.user import GlobalUser
from app.db.repositories.invite_repository import InviteRepository
from app.db.seed import seed_invite_codes
from app.services.quota_service import QuotaService
from app.services.registration_service import RegistrationService


async def _count(session, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestInviteRepository:
    """Conditional invite consumption"""

    @pytest.mark.asyncio
    async def test_consume_once(self, db_session):
        invites = InviteRepository(db_session)

        first = await invites.try_consume("TOPOO-2024-TEST-01", "user-1")
        second = await invites.try_consume("TOPOO-2024-TEST-01", "user-2")
        await db_session.commit()

        assert first.applied is True
        assert second.applied is False
        assert second.reason == "already_used"
        invite = await db_session.get(InviteCode, "TOPOO-2024-TEST-01")
        assert invite.used_by == "user-1"

    @pytest.mark.asyncio
    async def test_unknown_code(self, db_session):
        result = await InviteRepository(db_session).try_consume("NOPE", "user-1")

        assert result.applied is False
        assert result.reason == "not_found"

    @pytest.mark.asyncio
    async def test_seed_skips_existing_codes(self, db_session):
        added = await seed_invite_codes(db_session, ["TOPOO-2024-TEST-01", "FRESH-CODE"])

        assert added == ["FRESH-CODE"]
        assert await _count(db_session, InviteCode) == 4


class TestConcurrentRegistration:
    """One invite, many simultaneous registrations"""

    @pytest.mark.asyncio
    async def test_exactly_one_registration_wins(self, session_factory, token_service):
        attempts = 5

        async def attempt(i):
            async with session_factory() as session:
                service = RegistrationService(session, token_service)
                try:
                    await service.register(
                        email=f"racer{i}@x.com",
                        password="secret1",
                        invite_code="TOPOO-VIP-8888",
                    )
                    return "ok"
                except AccessError as e:
                    return e.error

        outcomes = await asyncio.gather(*(attempt(i) for i in range(attempts)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("INVALID_INVITE_CODE") == attempts - 1

        async with session_factory() as session:
            assert await _count(session, GlobalUser) == 1
            winner = (await session.execute(select(GlobalUser))).scalar_one()
            invite = await session.get(InviteCode, "TOPOO-VIP-8888")
            assert invite.is_used is True
            assert invite.used_by == winner.id


class TestAtomicAccountCreation:
    """A failure part way through leaves nothing behind"""

    @pytest.mark.asyncio
    async def test_failed_entitlements_roll_back_invite_and_user(self, session_factory, token_service, monkeypatch):
        async def broken_entitlements(self, user_id, plan_tier="free", now=None):
            raise RuntimeError("usage table unavailable")

        monkeypatch.setattr(QuotaService, "ensure_entitlements", broken_entitlements)

        async with session_factory() as session:
            service = RegistrationService(session, token_service)
            with pytest.raises(RuntimeError):
                await service.register(
                    email="a@x.com",
                    password="secret1",
                    invite_code="TOPOO-2024-TEST-01",
                )

        async with session_factory() as session:
            assert await _count(session, GlobalUser) == 0
            assert await _count(session, License) == 0
            invite = await session.get(InviteCode, "TOPOO-2024-TEST-01")
            assert invite.is_used is False
            assert invite.used_by is None

    @pytest.mark.asyncio
    async def test_rejected_invite_creates_no_user(self, session_factory, token_service):
        async with session_factory() as session:
            service = RegistrationService(session, token_service)
            with pytest.raises(AccessError):
                await service.register(email="a@x.com", password="secret1", invite_code="NOPE")

        async with session_factory() as session:
            assert await _count(session, GlobalUser) == 0

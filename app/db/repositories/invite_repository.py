# app/db/repositories/invite_repository.py
from datetime import datetime
from typing import Iterable, List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.invite import InviteCode
from app.db.repositories.base import BaseRepository, WriteResult


class InviteRepository(BaseRepository[InviteCode]):
    """Single-use invite codes"""

    def __init__(self, session: AsyncSession):
        super().__init__(InviteCode, session)

    async def try_consume(
        self,
        code: str,
        consumer_user_id: str,
        now: Optional[datetime] = None,
    ) -> WriteResult:
        """
        Mark an unused code as used by ``consumer_user_id``.

        Guarded by ``is_used = false`` so that of several concurrent callers
        only one sees ``applied``. Does not commit.
        """
        result = await self.session.execute(
            update(InviteCode)
            .where(InviteCode.code == code)
            .where(InviteCode.is_used.is_(False))
            .values(is_used=True, used_by=consumer_user_id, used_at=now or datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return WriteResult(applied=True)

        existing = await self.session.execute(
            select(InviteCode.code).where(InviteCode.code == code)
        )
        if existing.scalar_one_or_none() is None:
            return WriteResult(applied=False, reason="not_found")
        return WriteResult(applied=False, reason="already_used")

    async def seed(self, codes: Iterable[str]) -> List[str]:
        """Insert codes that do not exist yet; returns the ones added"""
        added = []
        for code in codes:
            if await self.get(code) is None:
                self.session.add(InviteCode(code=code, is_used=False))
                added.append(code)
        await self.session.commit()
        return added

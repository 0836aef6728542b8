# app/db/repositories/usage_repository.py
import calendar
from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.usage import AccessLog, UsageStats
from app.db.repositories.base import BaseRepository, WriteResult


def next_period_end(start: datetime) -> datetime:
    """One calendar month after ``start``, clamped to the month's last day"""
    year, month = (start.year + 1, 1) if start.month == 12 else (start.year, start.month + 1)
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


class UsageRepository(BaseRepository[UsageStats]):
    """Usage counters and the access log

    None of these methods commit; QuotaService owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(UsageStats, session)

    async def get_stats(self, user_id: str, fresh: bool = False) -> Optional[UsageStats]:
        query = select(UsageStats).where(UsageStats.user_id == user_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def create_if_absent(
        self,
        user_id: str,
        token_quota_limit: int,
        now: Optional[datetime] = None,
    ) -> UsageStats:
        existing = await self.get_stats(user_id)
        if existing:
            return existing
        now = now or datetime.utcnow()
        return await self.create({
            "user_id": user_id,
            "current_period_start": now,
            "current_period_end": next_period_end(now),
            "token_quota_limit": token_quota_limit,
            "tokens_consumed": 0,
            "created_at": now,
            "updated_at": now,
        })

    async def rollover_if_expired(self, user_id: str, now: datetime) -> WriteResult:
        """
        Start a new window when the current one has ended.

        Guarded on the old end time so periods only move forward and two
        concurrent readers roll over once.
        """
        result = await self.session.execute(
            update(UsageStats)
            .where(UsageStats.user_id == user_id)
            .where(UsageStats.current_period_end <= now)
            .values(
                tokens_consumed=0,
                current_period_start=now,
                current_period_end=next_period_end(now),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return WriteResult(applied=True)
        return WriteResult(applied=False, reason="period_active")

    async def try_consume(self, user_id: str, tokens: int, now: datetime) -> WriteResult:
        """Add ``tokens`` only while the result stays within the limit"""
        result = await self.session.execute(
            update(UsageStats)
            .where(UsageStats.user_id == user_id)
            .where(UsageStats.tokens_consumed <= UsageStats.token_quota_limit - tokens)
            .values(
                tokens_consumed=UsageStats.tokens_consumed + tokens,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return WriteResult(applied=True)

        if await self.get_stats(user_id) is None:
            return WriteResult(applied=False, reason="not_found")
        return WriteResult(applied=False, reason="quota_exceeded")

    async def append_log(
        self,
        user_id: str,
        model_name: str,
        tokens: int,
        now: datetime,
        request_id: Optional[str] = None,
    ) -> AccessLog:
        log = AccessLog(
            user_id=user_id,
            model_name=model_name,
            tokens=tokens,
            timestamp=now,
            request_id=request_id,
        )
        self.session.add(log)
        await self.session.flush()
        return log

    async def get_logs(self, user_id: str, limit: int = 100) -> List[AccessLog]:
        result = await self.session.execute(
            select(AccessLog)
            .where(AccessLog.user_id == user_id)
            .order_by(AccessLog.timestamp.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

# app/services/quota_service.py
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.constants import DEFAULT_PLAN_TIER, monthly_token_quota
from app.core.exceptions import AccessError, InputError, NotFoundError, QuotaExceededError
from app.core.logging import logger
from app.db.models.license import License
from app.db.models.usage import AccessLog, UsageStats
from app.db.repositories.license_repository import LicenseRepository
from app.db.repositories.usage_repository import UsageRepository

# Largest value a BIGINT counter can hold
MAX_TOKEN_CHARGE = 2 ** 63 - 1


@dataclass
class QuotaView:
    license: License
    quota_limit: int
    quota_used: int
    period_start: datetime
    period_end: datetime


class QuotaService:
    """Monthly token budget per user, enforced against concurrent consumers"""

    def __init__(
        self,
        session: AsyncSession,
        product_code: Optional[str] = None,
        rollover_on_consume: Optional[bool] = None,
        history_limit: Optional[int] = None,
    ):
        self.session = session
        self.licenses = LicenseRepository(session)
        self.usage = UsageRepository(session)
        self.product_code = product_code or settings.QUOTA_PRODUCT_CODE
        self.rollover_on_consume = (
            settings.QUOTA_ROLLOVER_ON_CONSUME if rollover_on_consume is None else rollover_on_consume
        )
        self.history_limit = history_limit or settings.QUOTA_HISTORY_LIMIT

    async def ensure_entitlements(
        self,
        user_id: str,
        plan_tier: str = DEFAULT_PLAN_TIER.value,
        now: Optional[datetime] = None,
    ) -> UsageStats:
        """
        Create the default license and usage rows when missing.

        Flushes only; the caller commits together with its other writes.
        """
        now = now or datetime.utcnow()
        await self.licenses.create_if_absent(user_id, self.product_code, plan_tier, now=now)
        return await self.usage.create_if_absent(user_id, monthly_token_quota(plan_tier), now=now)

    async def get_quota(self, user_id: str, now: Optional[datetime] = None) -> QuotaView:
        """Current window for the user, rolling it over first if it has ended"""
        now = now or datetime.utcnow()

        active_license = await self.licenses.get_active(user_id, self.product_code)
        if not active_license:
            raise AccessError("No active license", error="NO_ACTIVE_LICENSE")

        stats = await self.usage.get_stats(user_id)
        if not stats:
            raise NotFoundError("No usage stats record found")

        if now >= stats.current_period_end:
            try:
                result = await self.usage.rollover_if_expired(user_id, now)
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise
            if result.applied:
                logger.info("Quota window rolled over", extra={"user_id": user_id})
            stats = await self.usage.get_stats(user_id, fresh=True)

        return QuotaView(
            license=active_license,
            quota_limit=stats.token_quota_limit,
            quota_used=stats.tokens_consumed,
            period_start=stats.current_period_start,
            period_end=stats.current_period_end,
        )

    async def consume(
        self,
        user_id: str,
        model: str,
        tokens: int,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Charge ``tokens`` against the user's budget and log the call.

        Returns the tokens remaining in the window.

        Raises:
            InputError: tokens not a positive integer, or empty model
            NotFoundError: no usage row for the user
            QuotaExceededError: the charge would go over the limit
        """
        if not isinstance(tokens, int) or isinstance(tokens, bool) or tokens <= 0:
            raise InputError("tokens must be a positive integer")
        if not model or not isinstance(model, str):
            raise InputError("model is required")
        if tokens > MAX_TOKEN_CHARGE:
            logger.info(f"Quota exceeded for oversized charge on {model}", extra={"user_id": user_id})
            raise QuotaExceededError()

        now = now or datetime.utcnow()
        try:
            if self.rollover_on_consume:
                await self.usage.rollover_if_expired(user_id, now)

            result = await self.usage.try_consume(user_id, tokens, now)
            if not result.applied:
                if result.reason == "not_found":
                    raise NotFoundError("No usage stats found")
                logger.info(
                    f"Quota exceeded for {tokens} tokens on {model}",
                    extra={"user_id": user_id, "request_id": request_id},
                )
                raise QuotaExceededError()

            await self.usage.append_log(user_id, model, tokens, now, request_id=request_id)
            stats = await self.usage.get_stats(user_id, fresh=True)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        return stats.token_quota_limit - stats.tokens_consumed

    async def history(self, user_id: str, limit: Optional[int] = None) -> List[AccessLog]:
        """Most recent consumption records first"""
        limit = min(limit or self.history_limit, self.history_limit)
        return await self.usage.get_logs(user_id, limit=limit)

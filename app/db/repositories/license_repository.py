# app/db/repositories/license_repository.py
from datetime import datetime
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.constants import LicenseStatus
from app.db.models.license import License
from app.db.repositories.base import BaseRepository


class LicenseRepository(BaseRepository[License]):
    """Repository for License operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(License, session)

    async def get_for_product(self, user_id: str, product_code: str) -> Optional[License]:
        result = await self.session.execute(
            select(License)
            .where(License.user_id == user_id)
            .where(License.product_code == product_code)
            .order_by(License.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active(self, user_id: str, product_code: str) -> Optional[License]:
        """Active license for (user, product); expired rows are ignored"""
        now = datetime.utcnow()
        result = await self.session.execute(
            select(License)
            .where(License.user_id == user_id)
            .where(License.product_code == product_code)
            .where(License.status == LicenseStatus.ACTIVE.value)
            .order_by(License.created_at.desc())
        )
        for row in result.scalars():
            if row.expires_at is None or row.expires_at > now:
                return row
        return None

    async def create_if_absent(
        self,
        user_id: str,
        product_code: str,
        plan_tier: str,
        now: Optional[datetime] = None,
    ) -> License:
        existing = await self.get_for_product(user_id, product_code)
        if existing:
            return existing
        now = now or datetime.utcnow()
        return await self.create({
            "user_id": user_id,
            "product_code": product_code,
            "plan_tier": plan_tier,
            "status": LicenseStatus.ACTIVE.value,
            "created_at": now,
            "updated_at": now,
        })

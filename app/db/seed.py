# app/db/seed.py
from typing import Iterable, List
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.constants import PRODUCT_CATALOG, DEFAULT_INVITE_CODES
from app.core.logging import logger
from app.db.models.license import Product
from app.db.repositories.invite_repository import InviteRepository


async def seed_products(session: AsyncSession) -> None:
    """Insert the static product catalog rows that are missing"""
    for entry in PRODUCT_CATALOG:
        if await session.get(Product, entry["code"]) is None:
            session.add(Product(**entry))
    await session.commit()


async def seed_invite_codes(session: AsyncSession, codes: Iterable[str] = DEFAULT_INVITE_CODES) -> List[str]:
    added = await InviteRepository(session).seed(codes)
    if added:
        logger.info(f"Seeded {len(added)} invite code(s)")
    return added

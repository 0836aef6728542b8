"""Create tables and seed invite codes.

Usage: python scripts/seed_data.py [CODE ...]
"""
import asyncio
import sys

from app.core.constants import DEFAULT_INVITE_CODES
from app.db.database import async_session_local, init_db, close_db
from app.db.seed import seed_invite_codes


async def seed_data(codes):
    await init_db()
    async with async_session_local() as session:
        added = await seed_invite_codes(session, codes)

    if added:
        print(f"Added invite codes: {', '.join(added)}")
    else:
        print("All invite codes already exist")
    await close_db()


if __name__ == "__main__":
    asyncio.run(seed_data(sys.argv[1:] or DEFAULT_INVITE_CODES))

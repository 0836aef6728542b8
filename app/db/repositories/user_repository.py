# app/db/repositories/user_repository.py
from datetime import datetime
from typing import Dict, Optional
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.constants import IdentityProviderName
from app.core.exceptions import InputError
from app.db.models.user import GlobalUser
from app.db.repositories.base import BaseRepository, WriteResult


class UserRepository(BaseRepository[GlobalUser]):
    """Repository for GlobalUser operations"""

    # provider name -> column holding that provider's subject id
    EXTERNAL_ID_COLUMNS = {
        IdentityProviderName.GOOGLE.value: "google_id",
        IdentityProviderName.GITHUB.value: "github_id",
    }

    def __init__(self, session: AsyncSession):
        super().__init__(GlobalUser, session)

    async def get_by_email(self, email: str) -> Optional[GlobalUser]:
        """Get user by email"""
        result = await self.session.execute(
            select(GlobalUser).where(GlobalUser.email == email)
        )
        return result.scalar_one_or_none()

    async def get_by_external_id(self, provider: str, external_id: str) -> Optional[GlobalUser]:
        """Account already linked to this provider id"""
        column = getattr(GlobalUser, self._external_id_column(provider))
        result = await self.session.execute(
            select(GlobalUser).where(column == external_id)
        )
        return result.scalar_one_or_none()

    async def create_user(
        self,
        email: str,
        password_hash: Optional[str] = None,
        salt: Optional[str] = None,
        external_ids: Optional[Dict[str, str]] = None,
        nickname: Optional[str] = None,
        avatar_url: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GlobalUser:
        """Insert a user row inside the caller's transaction"""
        now = now or datetime.utcnow()
        obj_in = {
            "email": email,
            "password_hash": password_hash,
            "salt": salt,
            "nickname": nickname,
            "avatar_url": avatar_url,
            "created_at": now,
            "updated_at": now,
        }
        if user_id:
            obj_in["id"] = user_id
        for provider, external_id in (external_ids or {}).items():
            if external_id:
                obj_in[self._external_id_column(provider)] = external_id
        return await self.create(obj_in)

    async def link_external_identity(
        self,
        user_id: str,
        provider: str,
        external_id: str,
        avatar_fallback: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WriteResult:
        """
        Attach a provider id to an existing account.

        The id is only set when the account has none for that provider;
        the avatar is only filled when it was empty.
        """
        column_name = self._external_id_column(provider)
        column = getattr(GlobalUser, column_name)

        result = await self.session.execute(
            update(GlobalUser)
            .where(GlobalUser.id == user_id)
            .where(column.is_(None))
            .values(
                {
                    column_name: external_id,
                    "avatar_url": func.coalesce(GlobalUser.avatar_url, avatar_fallback),
                    "updated_at": now or datetime.utcnow(),
                }
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return WriteResult(applied=True)
        return WriteResult(applied=False, reason="already_linked")

    async def refresh_user(self, user_id: str) -> Optional[GlobalUser]:
        result = await self.session.execute(
            select(GlobalUser)
            .where(GlobalUser.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _external_id_column(self, provider: str) -> str:
        try:
            return self.EXTERNAL_ID_COLUMNS[provider]
        except KeyError:
            raise InputError(f"Unsupported identity provider: {provider}")

# app/db/repositories/access_request_repository.py
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.access_request import AccessRequest
from app.db.repositories.base import BaseRepository


class AccessRequestRepository(BaseRepository[AccessRequest]):
    """Repository for beta access requests"""

    def __init__(self, session: AsyncSession):
        super().__init__(AccessRequest, session)

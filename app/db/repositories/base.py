# app/db/repositories/base.py
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Type, Optional
from sqlalchemy.ext.asyncio import AsyncSession

ModelType = TypeVar("ModelType")


@dataclass
class WriteResult:
    """Outcome of a guarded "apply if still valid" write"""
    applied: bool
    reason: Optional[str] = None


class BaseRepository(Generic[ModelType]):
    """Base repository with common CRUD operations

    Writes flush by default and leave the commit to the caller, so several
    repositories can take part in one transaction. Pass ``commit=True`` for
    a standalone write.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    async def get(self, id: Any) -> Optional[ModelType]:
        """Get by primary key"""
        return await self.session.get(self.model, id)

    async def create(self, obj_in: dict, commit: bool = False) -> ModelType:
        """Create new record"""
        db_obj = self.model(**obj_in)
        self.session.add(db_obj)
        if commit:
            await self.session.commit()
            await self.session.refresh(db_obj)
        else:
            await self.session.flush()
        return db_obj

"""
Generic async read helpers shared by the onboarding services.
"""

from typing import Any, Dict, Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class CRUDBase(Generic[ModelType]):
    """
    Reusable async lookups for any SQLAlchemy model.

    Writes stay in the services so each saga step controls its own commit.

    Usage::

        teams = CRUDBase(Team, db)
        team = await teams.get(team_id)
        personal = await teams.first(created_by=user_id, is_personal_team=True)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession) -> None:
        self.model = model
        self.db = db

    def _filtered(self, stmt, filters: Dict[str, Any]):
        for key, value in filters.items():
            stmt = stmt.where(getattr(self.model, key) == value)
        return stmt

    async def get(self, id: UUID, fresh: bool = False) -> Optional[ModelType]:
        """Fetch by primary key; ``fresh`` bypasses the identity map."""
        stmt = select(self.model).where(self.model.id == id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def first(self, **filters: Any) -> Optional[ModelType]:
        result = await self.db.execute(self._filtered(select(self.model), filters).limit(1))
        return result.scalars().first()

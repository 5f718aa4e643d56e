"""Generic async repository for SQLAlchemy 2.0."""
from __future__ import annotations

import uuid
from typing import Any, ClassVar, Generic, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

ModelT = TypeVar("ModelT")


def as_uuid(value: Any) -> Optional[uuid.UUID]:
    """Tenant ids travel as strings; columns are UUID. Invalid ids map to None."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class BaseRepository(Generic[ModelT]):
    model: ClassVar[type]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, id: uuid.UUID) -> Optional[ModelT]:
        return await self.session.get(self.model, id)  # type: ignore[return-value]

    async def first_where(self, **filters: Any) -> Optional[ModelT]:
        stmt = select(self.model).filter_by(**filters).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()  # type: ignore[return-value]

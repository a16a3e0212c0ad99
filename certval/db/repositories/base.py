"""
Generic async repository keyed by certificate number.

Both store tables are addressed by cert_no rather than by primary key.
"""

from typing import Generic, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certval.db.engine import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Async read operations shared by the store repositories."""

    order_column = "created_at"

    def __init__(self, model: Type[ModelT]):
        self.model = model

    async def get_by_cert_no(self, db: AsyncSession, cert_no: str) -> Optional[ModelT]:
        """Most recent row for cert_no, or None."""
        col = getattr(self.model, self.order_column)
        result = await db.execute(
            select(self.model)
            .where(self.model.cert_no == cert_no)
            .order_by(col.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


"""Validated report (decision) repository."""

from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certval.db.models import ValidatedReport
from certval.db.repositories.base import BaseRepository


class ValidationRepository(BaseRepository[ValidatedReport]):
    order_column = "approved_at"

    def __init__(self):
        super().__init__(ValidatedReport)

    async def get_calibration_id(self, db: AsyncSession, cert_no: str) -> Optional[str]:
        record = await self.get_by_cert_no(db, cert_no)
        return record.calibration_id if record else None

    async def create(self, db: AsyncSession, **values) -> ValidatedReport:
        """
        Insert a decision. Flushed, not committed.

        Raises sqlalchemy.exc.IntegrityError when cert_no is already decided.
        """
        obj = ValidatedReport(**values)
        db.add(obj)
        await db.flush()
        await db.refresh(obj)
        return obj

    async def list_cert_nos(self, db: AsyncSession, status: Optional[str] = None) -> Sequence[str]:
        stmt = select(ValidatedReport.cert_no)
        if status:
            stmt = stmt.where(ValidatedReport.status == status)
        result = await db.execute(stmt)
        return result.scalars().all()

    async def set_client_feedback(
        self,
        db: AsyncSession,
        record: ValidatedReport,
        client_feedback: str,
    ) -> ValidatedReport:
        record.client_feedback = client_feedback
        await db.flush()
        await db.refresh(record)
        return record


validation_repo = ValidationRepository()

"""Evaluation report repository."""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from certval.db.models import EvaluationReport
from certval.db.repositories.base import BaseRepository


class EvaluationRepository(BaseRepository[EvaluationReport]):
    def __init__(self):
        super().__init__(EvaluationReport)

    async def get_calibration_id(self, db: AsyncSession, cert_no: str) -> Optional[str]:
        report = await self.get_by_cert_no(db, cert_no)
        return report.calibration_id if report else None

    async def set_created_at(
        self,
        db: AsyncSession,
        report: EvaluationReport,
        created_at: datetime,
    ) -> EvaluationReport:
        """Rewrite created_at. Flushed, not committed."""
        report.created_at = created_at
        await db.flush()
        return report


evaluation_repo = EvaluationRepository()

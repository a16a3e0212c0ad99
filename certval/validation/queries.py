"""
Read-side helpers for the validation dashboard.

None of these change a decision. The recommendation save only annotates
an APPROVED record with client feedback.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from certval.db.repositories.evaluation import evaluation_repo
from certval.db.repositories.validation import validation_repo
from certval.errors import RecordNotFound, ValidationInputError
from certval.validation.schemas import DecisionStatus, ValidatedReportOut


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; the store writes UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def validation_status(db: AsyncSession, cert_no: str) -> dict:
    record = await validation_repo.get_by_cert_no(db, cert_no)
    if record is None:
        return {"validated": False, "status": None}
    data = ValidatedReportOut.model_validate(record).model_dump(mode="json", by_alias=True)
    data.pop("cert_no")
    return {"validated": True, **data}


async def can_reapprove(db: AsyncSession, cert_no: str) -> dict:
    """
    Whether a rejected certificate has been re-evaluated since the rejection.

    Advisory only: the decision itself stays terminal.
    """
    record = await validation_repo.get_by_cert_no(db, cert_no)
    if record is None:
        return {"can_reapprove": False, "reason": "No validation record found"}
    if record.status == DecisionStatus.APPROVED:
        return {"can_reapprove": False, "reason": "Certificate is already approved"}
    if record.status != DecisionStatus.REJECTED:
        return {"can_reapprove": False, "reason": "Certificate is not in rejected status"}

    evaluation = await evaluation_repo.get_by_cert_no(db, cert_no)
    if evaluation is None:
        return {"can_reapprove": False, "reason": "No evaluation found for this certificate"}

    rejected_at = _as_utc(record.approved_at)
    evaluated_at = _as_utc(evaluation.created_at)
    newer = evaluated_at > rejected_at
    return {
        "can_reapprove": newer,
        "reason": (
            "A new evaluation has been generated since the previous rejection"
            if newer
            else "No newer evaluation found since rejection"
        ),
        "rejection_date": rejected_at.isoformat(),
        "latest_evaluation_date": evaluated_at.isoformat(),
    }


async def validated_cert_nos(db: AsyncSession, status: Optional[str] = None) -> list[str]:
    # Unknown status values are ignored rather than rejected
    if status not in (DecisionStatus.APPROVED, DecisionStatus.REJECTED):
        status = None
    return list(await validation_repo.list_cert_nos(db, status))


async def save_recommendation(db: AsyncSession, cert_no: str, client_feedback: str) -> ValidatedReportOut:
    record = await validation_repo.get_by_cert_no(db, cert_no)
    if record is None:
        raise RecordNotFound("Validation record not found", details={"cert_no": cert_no})
    if record.status != DecisionStatus.APPROVED:
        raise ValidationInputError("Recommendation can only be saved for approved reports")
    record = await validation_repo.set_client_feedback(db, record, client_feedback)
    await db.commit()
    return ValidatedReportOut.model_validate(record)

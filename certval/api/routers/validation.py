"""
Validation API Endpoints.

POST /api/validation/reject                 — reject a certificate (Phoenix first)
POST /api/validation/approve                — approve a certificate (Phoenix first)
GET  /api/validation/status                 — decision recorded for a certificate
GET  /api/validation/can-reapprove          — re-evaluated since rejection?
GET  /api/validation/cert-nos               — certificate numbers with a decision
POST /api/validation/recommendation/save    — attach client feedback to an approval

Errors are raised as CertValError and rendered by the registered handler as
{"error": ..., "code": ..., **details}.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from certval.api.deps import get_coordinator, get_db, get_reviewer
from certval.config import settings
from certval.errors import ValidationInputError
from certval.validation import queries
from certval.validation.coordinator import DecisionCoordinator, require_cert_no
from certval.validation.schemas import (
    ApproveRequest,
    RejectRequest,
    SaveRecommendationRequest,
)

router = APIRouter(prefix=f"{settings.api_prefix}/validation", tags=["validation"])


@router.post("/reject")
async def reject_certificate(
    body: RejectRequest,
    db: AsyncSession = Depends(get_db),
    reviewer: str = Depends(get_reviewer),
    coordinator: DecisionCoordinator = Depends(get_coordinator),
):
    """Reject in Phoenix, re-queue the evaluation, record the decision."""
    outcome = await coordinator.reject(db, body, reviewer)
    return outcome.to_response()


@router.post("/approve")
async def approve_certificate(
    body: ApproveRequest,
    db: AsyncSession = Depends(get_db),
    reviewer: str = Depends(get_reviewer),
    coordinator: DecisionCoordinator = Depends(get_coordinator),
):
    """Approve in Phoenix, then record the decision."""
    outcome = await coordinator.approve(db, body, reviewer)
    return outcome.to_response()


@router.get("/status")
async def get_validation_status(
    cert_no: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await queries.validation_status(db, require_cert_no(cert_no))


@router.get("/can-reapprove")
async def get_can_reapprove(
    cert_no: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await queries.can_reapprove(db, require_cert_no(cert_no))


@router.get("/cert-nos")
async def list_validated_cert_nos(
    status: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "certNos": await queries.validated_cert_nos(db, status)}


@router.post("/recommendation/save")
async def save_recommendation(
    body: SaveRecommendationRequest,
    db: AsyncSession = Depends(get_db),
    reviewer: str = Depends(get_reviewer),
):
    if not (body.cert_no or "").strip() or body.client_feedback is None:
        raise ValidationInputError("cert_no and client_feedback are required")
    record = await queries.save_recommendation(db, body.cert_no.strip(), body.client_feedback)
    return {"success": True, "data": record.model_dump(mode="json", by_alias=True)}

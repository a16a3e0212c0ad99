"""
Decision Coordinator — applies a reviewer's APPROVE/REJECT across Phoenix and
the certificate store.

The two systems share no transaction, so ordering carries the consistency:

    validate -> already decided? -> resolve CalibrationId -> comment
             -> Phoenix call -> [reject: re-queue signal] -> insert decision
             -> webhook (detached)

Phoenix is the source of truth for whether a certificate was actually
approved or rejected upstream: nothing is written locally unless the Phoenix
call succeeded. A local failure after that point cannot be rolled back
upstream and is logged as partial_failure.

The already-decided check runs before the Phoenix call so a repeated request
does not reach Phoenix twice. It is only a fast path; the unique constraint
on validated_reports.cert_no decides races between concurrent requests.

The reads before the Phoenix call are rolled back before it is made, so no
pooled connection sits idle in a transaction while Phoenix answers.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from certval.config import Settings, settings as default_settings
from certval.db.models import ValidatedReport
from certval.db.repositories.evaluation import EvaluationRepository, evaluation_repo
from certval.db.repositories.validation import ValidationRepository, validation_repo
from certval.errors import AlreadyDecided, PersistenceError, ValidationInputError
from certval.services.phoenix_client import PhoenixError
from certval.validation.error_codes import (
    CATEGORIES,
    sanitize_error_category,
    validate_error_category,
)
from certval.validation.justification import fallback_justification, synthesize_justification
from certval.validation.notifier import DecisionNotifier, build_notification
from certval.validation.requeue import shift_back_years
from certval.validation.resolver import CalibrationIdResolver
from certval.validation.schemas import (
    ApproveRequest,
    DecisionOutcome,
    DecisionStatus,
    RejectRequest,
    ValidatedReportOut,
)
from certval.validation.upstream import map_phoenix_error

logger = structlog.get_logger(__name__)

REJECT_MESSAGE = (
    "Report rejected successfully. Feedback saved and re-evaluation has been triggered."
)
APPROVE_MESSAGE = "Report approved successfully"


@dataclass(frozen=True)
class DecisionConfig:
    """Process-wide knobs the coordinator needs, passed in explicitly."""

    error_list_id: str = "1"
    webhook_enabled: bool = False
    webhook_url: str = ""
    webhook_timeout_seconds: float = 5.0
    report_base_url: str = "http://localhost:3000"

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "DecisionConfig":
        return cls(
            error_list_id=cfg.phoenix_error_list_id,
            webhook_enabled=cfg.validation_webhook_enabled,
            webhook_url=cfg.validation_webhook_url,
            webhook_timeout_seconds=cfg.validation_webhook_timeout_seconds,
            report_base_url=cfg.report_base_url,
        )


def require_cert_no(cert_no: Optional[str]) -> str:
    cleaned = (cert_no or "").strip()
    if not cleaned:
        raise ValidationInputError("Certificate number is required")
    return cleaned


class DecisionCoordinator:
    """Runs the approve and reject transitions for one certificate at a time."""

    def __init__(
        self,
        phoenix,
        config: DecisionConfig,
        resolver: Optional[CalibrationIdResolver] = None,
        notifier: Optional[DecisionNotifier] = None,
        evaluations: EvaluationRepository = evaluation_repo,
        validations: ValidationRepository = validation_repo,
    ):
        self.phoenix = phoenix
        self.config = config
        self.evaluations = evaluations
        self.validations = validations
        self.resolver = resolver or CalibrationIdResolver(phoenix, evaluations, validations)
        self.notifier = notifier or DecisionNotifier(
            enabled=config.webhook_enabled,
            url=config.webhook_url,
            timeout=config.webhook_timeout_seconds,
        )

    # ── Reject ─────────────────────────────────────────────────────────

    async def reject(self, db: AsyncSession, request: RejectRequest, reviewer: str) -> DecisionOutcome:
        cert_no = require_cert_no(request.cert_no)
        log = logger.bind(cert_no=cert_no, reviewer=reviewer, decision="reject")

        categories = {field: getattr(request, field) for field in CATEGORIES}
        if all(value is None for value in categories.values()):
            raise ValidationInputError(
                "At least one error category must be specified for rejection"
            )
        for field, (label, enumeration) in CATEGORIES.items():
            validate_error_category(label, categories[field], enumeration)

        await self._ensure_undecided(db, cert_no)
        calibration_id = await self.resolver.resolve(db, cert_no, request.calibration_id)

        comment = (request.comment or "").strip()
        if not comment:
            comment = await self._synthesize_comment(db, cert_no)
        await self._end_read(db)

        try:
            await self.phoenix.reject_calibration(
                calibration_id=calibration_id,
                error_list_id=self.config.error_list_id,
                comment=comment,
            )
        except PhoenixError as e:
            log.warning("phoenix_reject_refused", calibration_id=calibration_id, error=e.message)
            raise map_phoenix_error(e, calibration_id) from e

        log.info("phoenix_reject_applied", calibration_id=calibration_id)

        try:
            await self._requeue_evaluation(db, cert_no)
            record = await self.validations.create(
                db,
                cert_no=cert_no,
                status=DecisionStatus.REJECTED.value,
                approved_by=reviewer,
                calibration_id=calibration_id,
                **{
                    field: sanitize_error_category(CATEGORIES[field][0], value)
                    for field, value in categories.items()
                },
            )
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise await self._conflict(db, cert_no, log) from e
        except PersistenceError as e:
            await db.rollback()
            log.error("partial_failure", calibration_id=calibration_id, stage="requeue", error=e.message)
            raise
        except SQLAlchemyError as e:
            await db.rollback()
            log.error("partial_failure", calibration_id=calibration_id, stage="insert", error=str(e))
            raise PersistenceError(
                "Failed to save rejection record",
                details={"phoenix_rejected": True, "cert_no": cert_no},
            ) from e

        log.info("decision_recorded", status=record.status, calibration_id=calibration_id)
        self._notify(record)
        return DecisionOutcome(
            record=ValidatedReportOut.model_validate(record),
            comment=comment,
            message=REJECT_MESSAGE,
        )

    # ── Approve ────────────────────────────────────────────────────────

    async def approve(self, db: AsyncSession, request: ApproveRequest, reviewer: str) -> DecisionOutcome:
        cert_no = require_cert_no(request.cert_no)
        log = logger.bind(cert_no=cert_no, reviewer=reviewer, decision="approve")

        await self._ensure_undecided(db, cert_no)
        calibration_id = await self.resolver.resolve(db, cert_no, request.calibration_id)

        revision_comment = (request.revision_comment or "").strip() or f"Certificate {cert_no} approved"
        await self._end_read(db)

        try:
            await self.phoenix.approve_calibration(
                calibration_id=calibration_id,
                revision_comment=revision_comment,
                justification_comment=request.justification_comment,
                ai_analysis=request.ai_analysis,
            )
        except PhoenixError as e:
            log.warning("phoenix_approve_refused", calibration_id=calibration_id, error=e.message)
            raise map_phoenix_error(e, calibration_id) from e

        log.info("phoenix_approve_applied", calibration_id=calibration_id)

        try:
            record = await self.validations.create(
                db,
                cert_no=cert_no,
                status=DecisionStatus.APPROVED.value,
                approved_by=reviewer,
                calibration_id=calibration_id,
                tolerance_errors=None,
                cmc_errors=None,
                requirements_errors=None,
            )
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise await self._conflict(db, cert_no, log) from e
        except SQLAlchemyError as e:
            await db.rollback()
            log.error("partial_failure", calibration_id=calibration_id, stage="insert", error=str(e))
            raise PersistenceError(
                "Failed to save approval record",
                details={"phoenix_approved": True, "cert_no": cert_no},
            ) from e

        log.info("decision_recorded", status=record.status, calibration_id=calibration_id)
        self._notify(record)
        return DecisionOutcome(
            record=ValidatedReportOut.model_validate(record),
            comment=revision_comment,
            message=APPROVE_MESSAGE,
        )

    # ── Steps ──────────────────────────────────────────────────────────

    async def _ensure_undecided(self, db: AsyncSession, cert_no: str) -> None:
        try:
            existing = await self.validations.get_by_cert_no(db, cert_no)
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to check validation status") from e
        if existing is not None:
            raise AlreadyDecided(cert_no, existing.status)

    async def _end_read(self, db: AsyncSession) -> None:
        """Close the read transaction so no connection is held across the Phoenix call."""
        try:
            await db.rollback()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to release database connection") from e

    async def _synthesize_comment(self, db: AsyncSession, cert_no: str) -> str:
        try:
            evaluation = await self.evaluations.get_by_cert_no(db, cert_no)
        except SQLAlchemyError as e:
            logger.warning("justification_payload_unavailable", cert_no=cert_no, error=str(e))
            return fallback_justification(cert_no)
        payload = evaluation.json_data if evaluation is not None else None
        return synthesize_justification(payload, cert_no)

    async def _requeue_evaluation(self, db: AsyncSession, cert_no: str) -> None:
        """Age the latest evaluation by two years so the orchestrator re-runs it."""
        evaluation = await self.evaluations.get_by_cert_no(db, cert_no)
        if evaluation is None:
            raise PersistenceError(
                "Evaluation report not found for this certificate",
                details={"phoenix_rejected": True, "cert_no": cert_no},
            )
        previous = evaluation.created_at
        try:
            await self.evaluations.set_created_at(db, evaluation, shift_back_years(previous))
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to update evaluation report timestamp for revalidation",
                details={"phoenix_rejected": True, "cert_no": cert_no},
            ) from e
        logger.info(
            "evaluation_requeued",
            cert_no=cert_no,
            previous_created_at=previous.isoformat(),
            created_at=evaluation.created_at.isoformat(),
        )

    async def _conflict(self, db: AsyncSession, cert_no: str, log) -> AlreadyDecided:
        """Lost the insert race: report the winner's status."""
        existing_status = None
        try:
            existing = await self.validations.get_by_cert_no(db, cert_no)
            existing_status = existing.status if existing else None
        except SQLAlchemyError:
            log.warning("conflict_status_lookup_failed")
        log.warning("decision_insert_conflict", existing_status=existing_status)
        return AlreadyDecided(cert_no, existing_status)

    def _notify(self, record: ValidatedReport) -> None:
        self.notifier.notify(
            build_notification(
                cert_no=record.cert_no,
                user=record.approved_by,
                decided_at=record.approved_at,
                report_base_url=self.config.report_base_url,
            )
        )

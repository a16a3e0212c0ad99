"""
Certificate store SQLAlchemy models.

Both tables are owned by the Supabase project shared with the upstream
evaluation pipeline. This service reads evaluation_reports, rewrites only
its created_at column, and appends to validated_reports.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from certval.db.compat import JSONType
from certval.db.engine import Base


def _genuuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EvaluationReport(Base):
    """One evaluation run for a certificate, produced upstream.

    created_at doubles as the recency marker the batch orchestrator polls:
    moving it into the past re-queues the certificate for evaluation.
    """

    __tablename__ = "evaluation_reports"
    __table_args__ = (
        Index("ix_evaluation_reports_cert_no_created", "cert_no", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    cert_no: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    json_data: Mapped[Optional[dict]] = mapped_column(JSONType())
    calibration_id: Mapped[Optional[str]] = mapped_column("CalibrationId", String(128))


class ValidatedReport(Base):
    """
    The reviewer's decision for a certificate.

    The unique constraint on cert_no is the authoritative at-most-one guard;
    concurrent decisions race on this insert.
    """

    __tablename__ = "validated_reports"
    __table_args__ = (
        UniqueConstraint("cert_no", name="uq_validated_reports_cert_no"),
        Index("ix_validated_reports_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    cert_no: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # APPROVED | REJECTED
    approved_by: Mapped[str] = mapped_column(String(255), nullable=False)
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    calibration_id: Mapped[Optional[str]] = mapped_column("CalibrationId", String(128))

    tolerance_errors: Mapped[Optional[dict]] = mapped_column(JSONType())
    cmc_errors: Mapped[Optional[dict]] = mapped_column(JSONType())
    requirements_errors: Mapped[Optional[dict]] = mapped_column(JSONType())

    client_feedback: Mapped[Optional[str]] = mapped_column(Text)

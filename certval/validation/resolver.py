"""
CalibrationId resolution.

Phoenix and the certificate store disagree on which field is authoritative
depending on how a certificate entered the pipeline (upload vs. batch
import), so the id is looked up through a fixed fallback chain:

    1. caller-supplied value
    2. evaluation_reports.CalibrationId
    3. validated_reports.CalibrationId (certificates re-queued after a decision)
    4. Phoenix certificate detail, scanning known field spellings

Failures in 2-4 move on to the next source. Only exhaustion is an error.
"""

from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from certval.db.repositories.evaluation import EvaluationRepository, evaluation_repo
from certval.db.repositories.validation import ValidationRepository, validation_repo
from certval.errors import IdentifierNotFound

logger = structlog.get_logger(__name__)

# Order matters: first non-empty match wins.
PHOENIX_ID_FIELDS = (
    "CalibrationId",
    "CalibrationID",
    "calibrationId",
    "calibration_id",
    "ServiceItemId",
    "serviceItemId",
)


def _clean(value: Any) -> Optional[str]:
    """Non-empty stripped string, or None. Numeric ids are stringified."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def extract_calibration_id(details: Any) -> Optional[str]:
    """Scan a Phoenix detail record for the first usable identifier field."""
    if not isinstance(details, dict):
        return None
    for field in PHOENIX_ID_FIELDS:
        found = _clean(details.get(field))
        if found:
            return found
    return None


class CalibrationIdResolver:
    """Resolves a cert_no to the Phoenix CalibrationId."""

    def __init__(
        self,
        phoenix,
        evaluations: EvaluationRepository = evaluation_repo,
        validations: ValidationRepository = validation_repo,
    ):
        self.phoenix = phoenix
        self.evaluations = evaluations
        self.validations = validations

    async def resolve(
        self,
        db: AsyncSession,
        cert_no: str,
        supplied_id: Optional[str] = None,
    ) -> str:
        """Return the CalibrationId or raise IdentifierNotFound."""
        supplied = _clean(supplied_id)
        if supplied:
            logger.info("calibration_id_resolved", cert_no=cert_no, source="request")
            return supplied

        sources = (
            ("evaluation_report", self._from_evaluation),
            ("validated_report", self._from_validation),
            ("phoenix", self._from_phoenix),
        )
        for source, lookup in sources:
            try:
                found = await lookup(db, cert_no)
            except Exception as e:
                logger.warning(
                    "calibration_id_lookup_failed",
                    cert_no=cert_no,
                    source=source,
                    error=str(e),
                )
                continue
            if found:
                logger.info("calibration_id_resolved", cert_no=cert_no, source=source)
                return found

        logger.warning("calibration_id_not_found", cert_no=cert_no)
        raise IdentifierNotFound(cert_no)

    async def _from_evaluation(self, db: AsyncSession, cert_no: str) -> Optional[str]:
        return _clean(await self.evaluations.get_calibration_id(db, cert_no))

    async def _from_validation(self, db: AsyncSession, cert_no: str) -> Optional[str]:
        return _clean(await self.validations.get_calibration_id(db, cert_no))

    async def _from_phoenix(self, db: AsyncSession, cert_no: str) -> Optional[str]:
        details = await self.phoenix.get_certificate_details(cert_no)
        remote_cert_no = _clean(details.get("CertNo")) if isinstance(details, dict) else None
        if remote_cert_no and remote_cert_no.lower() != cert_no.strip().lower():
            logger.warning(
                "phoenix_cert_no_mismatch",
                cert_no=cert_no,
                phoenix_cert_no=remote_cert_no,
            )
            return None
        return extract_calibration_id(details)

"""
Tests for the decision coordinator.

Covers:
- Reject: Phoenix first, evaluation re-queued, decision recorded, webhook
- Upstream failure leaves the store untouched
- Input errors stop before Phoenix
- At most one decision per certificate (pre-check and insert race)
- Local failure after Phoenix succeeded
- Approve
"""

from datetime import datetime
from unittest.mock import ANY

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from certval.db.models import ValidatedReport
from certval.db.repositories.evaluation import EvaluationRepository, evaluation_repo
from certval.db.repositories.validation import ValidationRepository, validation_repo
from certval.errors import (
    AlreadyDecided,
    ErrorCode,
    IdentifierNotFound,
    PersistenceError,
    UpstreamBadRequest,
    UpstreamNotFound,
    UpstreamServerError,
    ValidationInputError,
)
from certval.services.phoenix_client import PhoenixError
from certval.validation.coordinator import DecisionCoordinator
from certval.validation.schemas import ApproveRequest, RejectRequest

REVIEWER = "reviewer@example.com"


def _reject(**overrides) -> RejectRequest:
    body = {
        "cert_no": "CAL-001",
        "tolerance_errors": {"codes": ["Tolerance_applied_fail"]},
    }
    body.update(overrides)
    return RejectRequest.model_validate(body)


async def _decision_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(ValidatedReport))).scalar_one()


async def _created_at(db, cert_no: str) -> datetime:
    db.expire_all()
    report = await evaluation_repo.get_by_cert_no(db, cert_no)
    return report.created_at.replace(tzinfo=None)


# ── Reject ─────────────────────────────────────────────────────────────


async def test_reject_applies_phoenix_then_store(db, coordinator, phoenix, notifier, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")

    outcome = await coordinator.reject(db, _reject(), REVIEWER)

    phoenix.reject_calibration.assert_awaited_once_with(
        calibration_id="EXT-9",
        error_list_id="1",
        comment="Rejection recorded for certificate CAL-001",
    )
    record = outcome.record
    assert record.status == "REJECTED"
    assert record.calibration_id == "EXT-9"
    assert record.approved_by == REVIEWER
    assert record.tolerance_errors == {"codes": ["Tolerance_applied_fail"]}
    assert record.cmc_errors is None
    assert outcome.comment == "Rejection recorded for certificate CAL-001"

    assert await _created_at(db, "CAL-001") == datetime(2022, 3, 1, 10, 0)
    assert await _decision_count(db) == 1

    notifier.notify.assert_called_once()
    sent = notifier.notify.call_args.args[0]
    assert sent.cert_no == "CAL-001"
    assert sent.user == REVIEWER
    assert sent.report_url == "https://dashboard.example.com/dashboard/report-viewer/CAL-001"


async def test_reject_response_shape(db, coordinator, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    body = (await coordinator.reject(db, _reject(), REVIEWER)).to_response()

    assert body["success"] is True
    assert body["message"].startswith("Report rejected successfully")
    assert body["data"]["CalibrationId"] == "EXT-9"
    assert body["data"]["status"] == "REJECTED"
    assert body["phoenix_comment"] == "Rejection recorded for certificate CAL-001"


async def test_supplied_calibration_id_and_comment(db, coordinator, phoenix, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")

    outcome = await coordinator.reject(
        db, _reject(CalibrationId="OVERRIDE-1", comment="  Wrong range  "), REVIEWER
    )

    phoenix.reject_calibration.assert_awaited_once_with(
        calibration_id="OVERRIDE-1", error_list_id="1", comment="Wrong range"
    )
    assert outcome.record.calibration_id == "OVERRIDE-1"


async def test_reject_synthesizes_comment_from_evaluation(db, coordinator, phoenix, add_evaluation):
    await add_evaluation(
        "CAL-001",
        calibration_id="EXT-9",
        json_data={"cmc_validate_agents": {"message": "Uncertainty below CMC"}},
    )

    await coordinator.reject(db, _reject(), REVIEWER)

    assert phoenix.reject_calibration.await_args.kwargs["comment"] == (
        "CMC issues detected: Uncertainty below CMC"
    )


async def test_stores_sanitized_categories(db, coordinator, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    request = _reject(
        tolerance_errors=None,
        requirements_errors={"codes": ["another_reason", "traceability_fail"], "another_reason": " Seal "},
    )

    outcome = await coordinator.reject(db, request, REVIEWER)

    assert outcome.record.tolerance_errors is None
    assert outcome.record.requirements_errors == {
        "codes": ["another_reason", "traceability_fail"],
        "another_reason": "Seal",
    }


async def test_upstream_404_leaves_store_untouched(db, coordinator, phoenix, notifier, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    phoenix.reject_calibration.side_effect = PhoenixError(
        "Phoenix rejection failed (HTTP 404): not found", status_code=404
    )

    with pytest.raises(UpstreamNotFound) as exc_info:
        await coordinator.reject(db, _reject(), REVIEWER)

    assert exc_info.value.status_code == 404
    assert exc_info.value.details["CalibrationId"] == "EXT-9"
    assert await _decision_count(db) == 0
    assert await _created_at(db, "CAL-001") == datetime(2024, 3, 1, 10, 0)
    notifier.notify.assert_not_called()


async def test_upstream_500_is_502(db, coordinator, phoenix, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    phoenix.reject_calibration.side_effect = PhoenixError("boom (HTTP 500)", status_code=500)

    with pytest.raises(UpstreamServerError) as exc_info:
        await coordinator.reject(db, _reject(), REVIEWER)
    assert exc_info.value.status_code == 502


async def test_missing_justification_stops_before_phoenix(db, coordinator, phoenix, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    request = _reject(tolerance_errors={"codes": ["another_reason"], "another_reason": ""})

    with pytest.raises(ValidationInputError) as exc_info:
        await coordinator.reject(db, request, REVIEWER)

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == ErrorCode.MISSING_JUSTIFICATION
    phoenix.reject_calibration.assert_not_awaited()
    phoenix.get_certificate_details.assert_not_awaited()


async def test_reject_needs_a_category(db, coordinator, phoenix):
    with pytest.raises(ValidationInputError, match="At least one error category"):
        await coordinator.reject(db, RejectRequest(cert_no="CAL-001"), REVIEWER)
    phoenix.reject_calibration.assert_not_awaited()


@pytest.mark.parametrize("cert_no", [None, "", "   "])
async def test_cert_no_required(db, coordinator, cert_no):
    with pytest.raises(ValidationInputError, match="Certificate number is required"):
        await coordinator.reject(db, _reject(cert_no=cert_no), REVIEWER)


async def test_unresolvable_calibration_id(db, coordinator, phoenix):
    with pytest.raises(IdentifierNotFound) as exc_info:
        await coordinator.reject(db, _reject(), REVIEWER)
    assert exc_info.value.status_code == 400
    assert exc_info.value.code == ErrorCode.CALIBRATION_ID_NOT_FOUND
    phoenix.reject_calibration.assert_not_awaited()


# ── At most one decision ───────────────────────────────────────────────


async def test_second_reject_conflicts_without_phoenix_call(db, coordinator, phoenix, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")

    await coordinator.reject(db, _reject(), REVIEWER)
    with pytest.raises(AlreadyDecided) as exc_info:
        await coordinator.reject(db, _reject(), REVIEWER)

    assert exc_info.value.status_code == 409
    assert exc_info.value.details["existing_status"] == "REJECTED"
    assert phoenix.reject_calibration.await_count == 1
    assert await _decision_count(db) == 1


async def test_reject_after_approve_conflicts(db, coordinator, phoenix, add_evaluation, add_decision):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    await add_decision("CAL-001", status="APPROVED")

    with pytest.raises(AlreadyDecided) as exc_info:
        await coordinator.reject(db, _reject(), REVIEWER)
    assert exc_info.value.details["existing_status"] == "APPROVED"
    phoenix.reject_calibration.assert_not_awaited()


class StalePrecheckRepository(ValidationRepository):
    """Misses the existing decision on the first lookup, like a concurrent request would."""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    async def get_by_cert_no(self, db, cert_no):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return await super().get_by_cert_no(db, cert_no)


async def test_insert_race_maps_to_conflict(db, phoenix, notifier, decision_config, add_evaluation, add_decision):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    await add_decision("CAL-001", status="APPROVED")
    coordinator = DecisionCoordinator(
        phoenix=phoenix,
        config=decision_config,
        notifier=notifier,
        validations=StalePrecheckRepository(),
    )

    with pytest.raises(AlreadyDecided) as exc_info:
        await coordinator.reject(db, _reject(CalibrationId="EXT-9"), REVIEWER)

    assert exc_info.value.details["existing_status"] == "APPROVED"
    phoenix.reject_calibration.assert_awaited_once()
    # re-queue rolled back with the failed insert
    assert await _created_at(db, "CAL-001") == datetime(2024, 3, 1, 10, 0)
    assert await _decision_count(db) == 1
    notifier.notify.assert_not_called()


# ── Local failure after Phoenix ────────────────────────────────────────


async def test_missing_evaluation_after_phoenix_is_persistence_error(db, coordinator, phoenix, notifier):
    with pytest.raises(PersistenceError) as exc_info:
        await coordinator.reject(db, _reject(CalibrationId="EXT-9"), REVIEWER)

    assert exc_info.value.status_code == 500
    assert exc_info.value.details["phoenix_rejected"] is True
    phoenix.reject_calibration.assert_awaited_once()
    assert await _decision_count(db) == 0
    notifier.notify.assert_not_called()


# ── Approve ────────────────────────────────────────────────────────────


async def test_approve_records_decision(db, coordinator, phoenix, notifier, add_evaluation):
    await add_evaluation("CAL-010", calibration_id="EXT-10")

    outcome = await coordinator.approve(db, ApproveRequest(cert_no="CAL-010"), REVIEWER)

    phoenix.approve_calibration.assert_awaited_once_with(
        calibration_id="EXT-10",
        revision_comment="Certificate CAL-010 approved",
        justification_comment=None,
        ai_analysis=None,
    )
    assert outcome.record.status == "APPROVED"
    assert outcome.record.tolerance_errors is None
    assert outcome.comment == "Certificate CAL-010 approved"
    # approval does not re-queue
    assert await _created_at(db, "CAL-010") == datetime(2024, 3, 1, 10, 0)
    notifier.notify.assert_called_once_with(ANY)


async def test_approve_passes_reviewer_text(db, coordinator, phoenix):
    request = ApproveRequest.model_validate({
        "cert_no": "CAL-011",
        "CalibrationId": "EXT-11",
        "revision_comment": "Rev B",
        "justification_comment": "Checked manually",
        "ai_analysis": "All points within tolerance",
    })

    await coordinator.approve(db, request, REVIEWER)

    phoenix.approve_calibration.assert_awaited_once_with(
        calibration_id="EXT-11",
        revision_comment="Rev B",
        justification_comment="Checked manually",
        ai_analysis="All points within tolerance",
    )


async def test_approve_upstream_400(db, coordinator, phoenix):
    phoenix.approve_calibration.side_effect = PhoenixError(
        "Phoenix approval failed (HTTP 400): already approved", status_code=400
    )
    with pytest.raises(UpstreamBadRequest) as exc_info:
        await coordinator.approve(db, ApproveRequest(cert_no="CAL-012", CalibrationId="EXT-12"), REVIEWER)
    assert exc_info.value.status_code == 400
    assert exc_info.value.code == ErrorCode.UPSTREAM_BAD_REQUEST
    assert await validation_repo.get_by_cert_no(db, "CAL-012") is None


class FailingInsertRepository(ValidationRepository):
    async def create(self, db, **values):
        raise SQLAlchemyError("disk I/O error")


class FailingTimestampRepository(EvaluationRepository):
    async def set_created_at(self, db, report, created_at):
        raise SQLAlchemyError("statement timeout")


async def test_insert_failure_after_phoenix_reject(db, phoenix, notifier, decision_config, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    coordinator = DecisionCoordinator(
        phoenix=phoenix,
        config=decision_config,
        notifier=notifier,
        validations=FailingInsertRepository(),
    )

    with pytest.raises(PersistenceError) as exc_info:
        await coordinator.reject(db, _reject(), REVIEWER)

    assert exc_info.value.status_code == 500
    assert exc_info.value.details == {"phoenix_rejected": True, "cert_no": "CAL-001"}
    phoenix.reject_calibration.assert_awaited_once()
    assert await _decision_count(db) == 0
    # re-queue rolled back with the failed insert
    assert await _created_at(db, "CAL-001") == datetime(2024, 3, 1, 10, 0)
    notifier.notify.assert_not_called()


async def test_requeue_failure_after_phoenix_reject(db, phoenix, notifier, decision_config, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    coordinator = DecisionCoordinator(
        phoenix=phoenix,
        config=decision_config,
        notifier=notifier,
        evaluations=FailingTimestampRepository(),
    )

    with pytest.raises(PersistenceError) as exc_info:
        await coordinator.reject(db, _reject(), REVIEWER)

    assert exc_info.value.status_code == 500
    assert exc_info.value.details["phoenix_rejected"] is True
    assert "revalidation" in exc_info.value.message
    phoenix.reject_calibration.assert_awaited_once()
    assert await _decision_count(db) == 0
    assert await _created_at(db, "CAL-001") == datetime(2024, 3, 1, 10, 0)
    notifier.notify.assert_not_called()


async def test_insert_failure_after_phoenix_approve(db, phoenix, notifier, decision_config):
    coordinator = DecisionCoordinator(
        phoenix=phoenix,
        config=decision_config,
        notifier=notifier,
        validations=FailingInsertRepository(),
    )

    with pytest.raises(PersistenceError) as exc_info:
        await coordinator.approve(db, ApproveRequest(cert_no="CAL-013", CalibrationId="EXT-13"), REVIEWER)

    assert exc_info.value.status_code == 500
    assert exc_info.value.details == {"phoenix_approved": True, "cert_no": "CAL-013"}
    phoenix.approve_calibration.assert_awaited_once()
    assert await _decision_count(db) == 0


async def test_approve_insert_race_maps_to_conflict(db, phoenix, notifier, decision_config, add_decision):
    await add_decision("CAL-014", status="REJECTED")
    coordinator = DecisionCoordinator(
        phoenix=phoenix,
        config=decision_config,
        notifier=notifier,
        validations=StalePrecheckRepository(),
    )

    with pytest.raises(AlreadyDecided) as exc_info:
        await coordinator.approve(db, ApproveRequest(cert_no="CAL-014", CalibrationId="EXT-14"), REVIEWER)

    assert exc_info.value.status_code == 409
    assert exc_info.value.details["existing_status"] == "REJECTED"
    phoenix.approve_calibration.assert_awaited_once()
    assert await _decision_count(db) == 1
    notifier.notify.assert_not_called()


# ── Connection handling ────────────────────────────────────────────────


async def test_no_transaction_open_during_phoenix_calls(db, coordinator, phoenix, add_evaluation):
    await add_evaluation("CAL-001", calibration_id="EXT-9")
    await add_evaluation("CAL-015", calibration_id="EXT-15")
    seen = []
    phoenix.reject_calibration.side_effect = lambda **kwargs: seen.append(db.in_transaction())
    phoenix.approve_calibration.side_effect = lambda **kwargs: seen.append(db.in_transaction())

    await coordinator.reject(db, _reject(), REVIEWER)
    await coordinator.approve(db, ApproveRequest(cert_no="CAL-015"), REVIEWER)

    assert seen == [False, False]

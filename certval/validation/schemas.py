"""
Decision workflow schemas — request bodies, stored decision, responses.

Field names follow the dashboard's wire format (cert_no, CalibrationId,
tolerance_errors, ...), so the frontend and webhook consumers are unchanged.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class DecisionStatus(StrEnum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ErrorCategoryIn(BaseModel):
    """Reviewer-selected reasons for one category, as submitted."""

    # Loosely typed so malformed input is reported by the validator as 400
    codes: Any = None
    another_reason: Any = None


class RejectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Optional so a missing cert_no is reported as 400 like every other input error
    cert_no: Optional[str] = None
    calibration_id: Optional[str] = Field(default=None, alias="CalibrationId")
    comment: Optional[str] = None
    # Raw JSON; coerced by validation.error_codes.as_error_category
    tolerance_errors: Any = None
    cmc_errors: Any = None
    requirements_errors: Any = None


class ApproveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cert_no: Optional[str] = None
    calibration_id: Optional[str] = Field(default=None, alias="CalibrationId")
    revision_comment: Optional[str] = None
    justification_comment: Optional[str] = None
    ai_analysis: Optional[str] = None


class SaveRecommendationRequest(BaseModel):
    cert_no: Optional[str] = None
    client_feedback: Optional[str] = None


class ValidatedReportOut(BaseModel):
    """A stored decision as returned to the dashboard."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    cert_no: str
    status: DecisionStatus
    approved_by: str
    approved_at: datetime
    calibration_id: Optional[str] = Field(default=None, serialization_alias="CalibrationId")
    tolerance_errors: Optional[dict] = None
    cmc_errors: Optional[dict] = None
    requirements_errors: Optional[dict] = None
    client_feedback: Optional[str] = None


class DecisionResponse(BaseModel):
    success: bool = True
    message: str
    data: ValidatedReportOut
    phoenix_comment: str


class DecisionNotification(BaseModel):
    """Webhook body sent after a decision is committed."""

    cert_no: str
    user: str
    timestamp: str
    report_url: str


class DecisionOutcome(BaseModel):
    """What the coordinator hands back to the router."""

    record: ValidatedReportOut
    comment: str
    message: str

    def to_response(self) -> dict[str, Any]:
        return DecisionResponse(
            message=self.message,
            data=self.record,
            phoenix_comment=self.comment,
        ).model_dump(mode="json", by_alias=True)

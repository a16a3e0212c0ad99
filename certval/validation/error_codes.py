"""
Rejection reason codes and their validator.

Each category (tolerance, CMC, requirements) has a closed set of codes. The
wire values are shared with the dashboard and downstream consumers; the
misspelled requirement codes are historical and must not be corrected.
"""

from enum import StrEnum
from typing import Any, Optional, Type

from certval.errors import ErrorCode, ValidationInputError
from certval.validation.schemas import ErrorCategoryIn

ANOTHER_REASON = "another_reason"


class ToleranceErrorCode(StrEnum):
    ERROR_PDF_EXTRACTION = "error_pdf_extraction"
    TOLERANCE_APPLIED_FAIL = "Tolerance_applied_fail"
    SPEC_TOLERANCE_APPLIED_FAIL = "spec_tolerance_applied_fail"
    UNIT_CONVERSION_FAIL = "unit_conversion_fail"
    ANOTHER_REASON = ANOTHER_REASON


class CmcErrorCode(StrEnum):
    ERROR_PDF_EXTRACTION = "error_pdf_extraction"
    MATCH_EQUIPMENT_FAIL = "match_equipment_fail"
    MATCH_PARAMETER_FAIL = "match_parameter_fail"
    UNIT_CONVERSION_FAIL = "unit_conversion_fail"
    ANOTHER_REASON = ANOTHER_REASON


class RequirementsErrorCode(StrEnum):
    ERROR_PDF_EXTRACTION = "error_pdf_extraction"
    UNIT_CONVERSION_FAIL = "unit_conversion_fail"
    TRACEABILITY_FAIL = "traceability_fail"
    MATCH_GROUP_REQUIREMENT_FAILED = "match_group_requeirment_failed"
    MAPPING_REQUIREMENTS_FAIL = "mapping_requeirments_fail"
    COMPLIANT_REQUIREMENT_FAIL = "compliant_requeirment_fail"
    WRONG_JUSTIFICATION = "wrong_justification"
    ANOTHER_REASON = ANOTHER_REASON


# field name on the request -> (label used in messages, enumeration)
CATEGORIES: dict[str, tuple[str, Type[StrEnum]]] = {
    "tolerance_errors": ("Tolerance", ToleranceErrorCode),
    "cmc_errors": ("CMC", CmcErrorCode),
    "requirements_errors": ("Requirements", RequirementsErrorCode),
}


def _empty_codes(category: str) -> ValidationInputError:
    return ValidationInputError(
        f"{category} errors must include at least one error code",
        code=ErrorCode.EMPTY_CODES,
        details={"category": category},
    )


def _reason_text(submitted: ErrorCategoryIn) -> str:
    reason = submitted.another_reason
    return reason.strip() if isinstance(reason, str) else ""


def as_error_category(category: str, submitted: Any) -> Optional[ErrorCategoryIn]:
    """Coerce a raw category from the request body; anything but an object is EMPTY_CODES."""
    if submitted is None or isinstance(submitted, ErrorCategoryIn):
        return submitted
    if isinstance(submitted, dict):
        return ErrorCategoryIn.model_validate(submitted)
    raise _empty_codes(category)


def validate_error_category(
    category: str,
    submitted: Any,
    enumeration: Type[StrEnum],
) -> None:
    """
    Check one category of rejection reasons.

    A missing category is valid. Otherwise raises ValidationInputError with
    code EMPTY_CODES, UNKNOWN_CODE or MISSING_JUSTIFICATION.
    """
    submitted = as_error_category(category, submitted)
    if submitted is None:
        return

    codes = submitted.codes
    if not isinstance(codes, list) or not codes:
        raise _empty_codes(category)

    allowed = {member.value for member in enumeration}
    for code in codes:
        if not isinstance(code, str) or code not in allowed:
            raise ValidationInputError(
                f"Invalid {category} error code: {code}",
                code=ErrorCode.UNKNOWN_CODE,
                details={"category": category, "invalid_code": code},
            )

    if ANOTHER_REASON in codes and not _reason_text(submitted):
        raise ValidationInputError(
            f'{category} "another_reason" requires a description',
            code=ErrorCode.MISSING_JUSTIFICATION,
            details={"category": category},
        )


def sanitize_error_category(category: str, submitted: Any) -> Optional[dict]:
    """Storage form of a validated category: trimmed another_reason, omitted when empty."""
    submitted = as_error_category(category, submitted)
    if submitted is None:
        return None
    stored: dict = {"codes": list(submitted.codes or [])}
    reason = _reason_text(submitted)
    if reason:
        stored["another_reason"] = reason
    return stored

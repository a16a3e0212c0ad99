"""
Rejection comment synthesis.

When a reviewer rejects without typing a comment, Phoenix still needs one.
It is composed from the stored evaluation payload, most relevant failure
first:

    requirements  >  tolerance  >  CMC  >  generic fallback

The payload has changed shape several times upstream, so every level tries
a list of alternative keys and every tier falls through on any error.
"""

import json
from typing import Any, Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)

_MISSING = object()


def _dig(data: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts; _MISSING when absent."""
    node = data
    for key in path.split("."):
        if not isinstance(node, dict) or key not in node:
            return _MISSING
        node = node[key]
    return node


def _first(data: Any, paths: Iterable[str]) -> Any:
    """First present, truthy value among alternative paths, else None."""
    for path in paths:
        value = _dig(data, path)
        if value is not _MISSING and value:
            return value
    return None


def _status(item: Any, key: str) -> str:
    if not isinstance(item, dict):
        return ""
    return str(item.get(key) or "").strip().lower()


# ── Tiers ──────────────────────────────────────────────────────────────


def requirements_justification(payload: dict) -> Optional[str]:
    requirements = _first(payload, (
        "validate_requeirments",
        "validate_requirements",
        "WizardRequirements",
        "result.WizardRequirements",
    ))
    groups = _first(requirements, ("evaluation_by_group",)) if requirements else None
    if not groups:
        groups = _first(payload, ("evaluation_by_group", "result.evaluation_by_group"))
    if not isinstance(groups, dict):
        return None

    total = 0
    first_group: Optional[str] = None
    first_failure: Optional[dict] = None
    for group_key, group in groups.items():
        reqs = group.get("RequirementsValidation") if isinstance(group, dict) else None
        failed = [r for r in reqs or [] if _status(r, "ValidationStatus") == "non-compliant"]
        if not failed:
            continue
        total += len(failed)
        if first_group is None:
            first_group, first_failure = str(group_key), failed[0]

    if not total:
        return None

    label = (first_group or "requirements").replace("_", " ")
    message = f"{total} requirement(s) failed — group: {label}."
    notes = first_failure.get("Notes") if isinstance(first_failure, dict) else None
    if notes:
        message += f" Notes: {notes}"
    return message.strip()


def tolerance_justification(payload: dict) -> Optional[str]:
    tolerance = _first(payload, (
        "validate_tolerance",
        "result.pipeline_results",
        "pipeline_results",
    ))
    checks = _first(tolerance, ("tolerance_checks",)) if tolerance else None
    if not checks:
        checks = _first(payload, ("result.tolerance_checks",))
    if not isinstance(checks, list):
        return None

    for check in checks:
        if _status(check, "status") not in ("fail", "failed"):
            continue
        description = check.get("description") or "Tolerance check failed"
        spec = f" (spec: {check['specification']})" if check.get("specification") else ""
        note = f" — {check['notes']}" if check.get("notes") else ""
        return f"Tolerance failures detected: {description}{spec}{note}"
    return None


def cmc_justification(payload: dict) -> Optional[str]:
    cmc = _first(payload, ("cmc_validate_agents", "result.cmc")) or {}
    message = cmc.get("message") if isinstance(cmc, dict) else None
    if not (isinstance(message, str) and message.strip()):
        message = payload.get("message")
    if isinstance(message, str) and message.strip():
        return f"CMC issues detected: {message.strip()}"
    return None


TIERS = (
    ("requirements", requirements_justification),
    ("tolerance", tolerance_justification),
    ("cmc", cmc_justification),
)


def fallback_justification(cert_no: str) -> str:
    return f"Rejection recorded for certificate {cert_no}"


def synthesize_justification(payload: Any, cert_no: str) -> str:
    """Compose a one-line rejection comment from an evaluation payload."""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            logger.debug("justification_payload_unparseable", cert_no=cert_no)
            payload = None

    if isinstance(payload, dict):
        for tier, build in TIERS:
            try:
                message = build(payload)
            except Exception as e:
                logger.debug("justification_tier_failed", cert_no=cert_no, tier=tier, error=str(e))
                continue
            if message:
                logger.info("justification_synthesized", cert_no=cert_no, tier=tier)
                return message

    return fallback_justification(cert_no)

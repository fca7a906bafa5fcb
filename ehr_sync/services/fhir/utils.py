import logging

from fhir.resources.R4B.bundle import Bundle, BundleEntryResponse
from fhir.resources.R4B.operationoutcome import OperationOutcome

from ehr_sync.models.fhir.types import BundleError, ERROR_SEVERITIES

logger = logging.getLogger(__name__)

CREATED_STATUSES = (200, 201)


def collect_errors(bundle: Bundle) -> list[BundleError]:
    """
    Collect errors from bundle
    """
    errs: list[BundleError] = []
    if not bundle.entry:
        return errs

    for idx, entry in enumerate(bundle.entry):
        resp = entry.response  # type: ignore[attr-defined]
        if not resp:
            continue

        status_code = parse_status_code(resp)
        if status_code and status_code < 400:
            continue

        errs.extend(_build_errors_from_response(idx, status_code, resp))

    return errs


def parse_status_code(resp: BundleEntryResponse) -> int | None:
    """Extract status code if possible, else None."""
    try:
        return int(str(resp.status).strip().split()[0])
    except (ValueError, AttributeError, IndexError):
        return None


def _build_errors_from_response(
    idx: int, status_code: int | None, resp: BundleEntryResponse
) -> list[BundleError]:
    outcome = resp.outcome
    if not outcome:
        return [
            BundleError(
                entry=idx,
                status=status_code or 0,
                code="unknown",
                severity="error",
                diagnostics="",
            )
        ]

    if not isinstance(outcome, OperationOutcome):
        raise ValueError("Outcome is not of type OperationOutcome")

    return [
        BundleError(
            entry=idx,
            status=status_code or 0,
            code=str(issue.code) or "",
            severity=issue.severity,
            diagnostics=issue.diagnostics or "",
        )
        for issue in outcome.issue
        if issue.severity in ERROR_SEVERITIES
    ]

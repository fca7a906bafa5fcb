import logging
from typing import Any, Dict
from fhir.resources.R4B.bundle import (
    Bundle,
    BundleEntry,
    BundleEntryResponse,
    BundleLink,
)
from fhir.resources.R4B.operationoutcome import OperationOutcome
from pydantic import ValidationError

logger = logging.getLogger(__name__)


def create_bundle_link(data: Dict[str, Any]) -> BundleLink:
    return BundleLink.model_construct(**data)


def create_entry_response(data: Dict[str, Any]) -> BundleEntryResponse:
    values = dict(data)
    outcome = values.pop("outcome", None)
    if isinstance(outcome, dict):
        try:
            values["outcome"] = OperationOutcome.model_validate(outcome)
        except ValidationError:
            logger.warning("Ignoring malformed OperationOutcome in bundle response: %s", outcome)
    return BundleEntryResponse.model_construct(**values)


def create_bundle_entry(data: Dict[str, Any]) -> BundleEntry:
    """
    Build an entry without validating its resource. Resources stay plain dicts, since the
    payloads we read back come from vendors and target stores that do not always conform.
    """
    values: Dict[str, Any] = {}
    if "fullUrl" in data:
        values["fullUrl"] = data["fullUrl"]

    if "resource" in data:
        values["resource"] = data["resource"]

    if "response" in data:
        values["response"] = create_entry_response(data["response"])

    return BundleEntry.model_construct(**values)


def create_bundle(data: Dict[str, Any], strict: bool = False) -> Bundle:
    if strict:
        return Bundle.model_validate(data)

    values: Dict[str, Any] = {"type": data.get("type", "")}

    if "link" in data:
        values["link"] = [create_bundle_link(link) for link in data["link"]]

    if "entry" in data:
        values["entry"] = [create_bundle_entry(entry) for entry in data["entry"]]

    if "total" in data:
        values["total"] = int(data["total"])
    return Bundle.model_construct(**values)


def get_resources(data: Dict[str, Any] | None) -> list[Dict[str, Any]]:
    """
    Returns the resources of a searchset response, skipping entries without one.
    """
    if not data or data.get("resourceType") != "Bundle":
        return []
    bundle = create_bundle(data)
    return [
        entry.resource  # type: ignore[attr-defined]
        for entry in bundle.entry or []
        if isinstance(entry.resource, dict)  # type: ignore[attr-defined]
    ]

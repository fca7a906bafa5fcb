import logging
import re

from yarl import URL

from ehr_sync.models.fhir.types import ResourceLocation

logger = logging.getLogger(__name__)

_RESOURCE_TYPE = re.compile(r"^[A-Z][A-Za-z]+$")
_RESOURCE_ID = re.compile(r"^[A-Za-z0-9\-.]{1,64}$")


def parse_location(value: str | None) -> ResourceLocation | None:
    """
    Parses a Location header, a full resource URL or a relative reference into its
    resource type, id and optional version. Accepts for example:

        https://host/fhir/Condition/abc/_history/1
        https://host/fhir/Encounter/xyz
        Patient/123

    Returns None when the value does not end in a ``<Type>/<id>`` pair.
    """
    if not value:
        return None

    path = URL(value.strip()).path if "://" in value else value.strip().split("?")[0]
    segments = [s for s in path.split("/") if s]

    version = None
    if "_history" in segments:
        idx = segments.index("_history")
        if idx + 1 < len(segments):
            version = segments[idx + 1]
        segments = segments[:idx]

    if len(segments) < 2:
        logger.debug("Cannot parse location: %s", value)
        return None

    resource_type, resource_id = segments[-2], segments[-1]
    if not _RESOURCE_TYPE.match(resource_type) or not _RESOURCE_ID.match(resource_id):
        logger.debug("Cannot parse location: %s", value)
        return None

    return ResourceLocation(resource_type=resource_type, id=resource_id, version=version)


def reference_id(reference: str | None, resource_type: str) -> str | None:
    """
    Returns the id of a reference such as ``Patient/123`` when it points to the given type.
    """
    location = parse_location(reference)
    if location is None or location.resource_type != resource_type:
        return None
    return location.id


def make_reference(resource_type: str, resource_id: str) -> str:
    return f"{resource_type}/{resource_id}"

from typing import Literal, NamedTuple
from enum import Enum
from pydantic import BaseModel

HttpValidVerbs = Literal["GET", "POST", "PATCH", "PUT", "HEAD", "DELETE"]

ERROR_SEVERITIES = {"error", "fatal"}

LOINC_SYSTEM = "http://loinc.org"
LOINC_DISCHARGE_SUMMARY = "18842-5"
LOINC_DISCHARGE_INSTRUCTIONS = ("74213-0", "8653-8")


class BundleError(BaseModel):
    entry: int
    status: int
    code: str
    severity: str
    diagnostics: str


class ResourceLocation(NamedTuple):
    resource_type: str
    id: str
    version: str | None = None


class EncounterResources(Enum):
    ENCOUNTER = "Encounter"
    DOCUMENT_REFERENCE = "DocumentReference"
    MEDICATION_REQUEST = "MedicationRequest"
    CONDITION = "Condition"
    APPOINTMENT = "Appointment"
    BINARY = "Binary"

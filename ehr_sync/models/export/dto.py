from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class MappingAction(str, Enum):
    FOUND = "found"
    CREATED = "created"
    FAILED = "failed"


class DuplicateStatus(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PatientMapping(CamelModel):
    source_patient_id: str
    target_patient_id: str | None = None
    action: MappingAction
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.action != MappingAction.FAILED and self.target_patient_id is not None


class DuplicateCheck(CamelModel):
    is_duplicate: bool
    target_patient_id: str | None = None


class ExportMetadata(CamelModel):
    export_timestamp: str = Field(default_factory=utc_timestamp)
    vendor: str
    patient_mapping: MappingAction | None = None
    duplicate_check: DuplicateStatus | None = None
    content_type: str | None = None
    original_size: int | None = None


class ExportResult(CamelModel):
    success: bool
    source_document_id: str | None = None
    target_binary_id: str | None = None
    target_document_reference_id: str | None = None
    target_composition_id: str | None = None
    source_patient_id: str | None = None
    target_patient_id: str | None = None
    encounter_id: str | None = None
    error: str | None = None
    metadata: ExportMetadata


class TransformedBinary(BaseModel):
    """Binary payload ready for the target store: always base64 unless the source already was."""

    data: str
    content_type: str
    size: int


class EncounterBundle(BaseModel):
    medication_requests: list[dict[str, Any]] = Field(default_factory=list)
    appointments: list[dict[str, Any]] = Field(default_factory=list)
    conditions: list[dict[str, Any]] = Field(default_factory=list)

    def resources(self) -> list[dict[str, Any]]:
        return [*self.medication_requests, *self.appointments, *self.conditions]

    def is_empty(self) -> bool:
        return not (self.medication_requests or self.appointments or self.conditions)


class ResourceIds(CamelModel):
    document_references: list[str] = Field(default_factory=list)
    medication_requests: list[str] = Field(default_factory=list)
    appointments: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)
    binaries: list[str] = Field(default_factory=list)

    def total(self) -> int:
        return (
            len(self.document_references)
            + len(self.medication_requests)
            + len(self.appointments)
            + len(self.conditions)
            + len(self.binaries)
        )


class EncounterExportMetadata(CamelModel):
    export_timestamp: str = Field(default_factory=utc_timestamp)
    vendor: str
    patient_mapping: MappingAction | None = None
    duplicate_check: DuplicateStatus | None = None
    resources_processed: int = 0


class EncounterExportResult(CamelModel):
    success: bool
    source_encounter_id: str | None = None
    target_encounter_id: str | None = None
    source_patient_id: str | None = None
    target_patient_id: str | None = None
    resource_ids: ResourceIds = Field(default_factory=ResourceIds)
    composition_id: str | None = None
    error: str | None = None
    metadata: EncounterExportMetadata


class PatientEncounterExportResult(CamelModel):
    success: bool
    source_patient_id: str
    target_patient_id: str | None = None
    encounters: list[EncounterExportResult] = Field(default_factory=list)
    error: str | None = None


class BinaryRetrievalResult(CamelModel):
    success: bool
    binary: dict[str, Any] | None = None
    document_reference: dict[str, Any] | None = None
    composition: dict[str, Any] | None = None
    error: str | None = None


class DocumentExportRequest(CamelModel):
    document_id: str
    encounter_id: str | None = None


class EncounterExportRequest(CamelModel):
    patient_id: str

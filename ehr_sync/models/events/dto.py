from typing import Any, Literal

from pydantic import Field

from ehr_sync.models.export.dto import CamelModel, utc_timestamp


class DocumentExportEvent(CamelModel):
    source_document_id: str | None
    tenant_id: str
    patient_id: str | None
    status: Literal["success", "failed"]
    error: str | None = None
    metadata: dict[str, Any] | None = None
    export_timestamp: str = Field(default_factory=utc_timestamp)


class EncounterExportEvent(CamelModel):
    tenant_id: str
    patient_id: str | None
    status: Literal["success", "failed"]
    source_encounter_id: str | None
    target_encounter_id: str | None
    composition_id: str | None
    counts: dict[str, int] = Field(default_factory=dict)
    export_timestamp: str = Field(default_factory=utc_timestamp)

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EhrVendor(str, Enum):
    CERNER = "cerner"
    EPIC = "epic"


class AuthType(str, Enum):
    SYSTEM = "system"
    PROVIDER = "provider"


class EhrCapabilities(BaseModel):
    vendor: EhrVendor
    supports_delete: bool
    supports_update: bool
    max_search_count: int | None = None
    supported_resources: list[str] = Field(default_factory=list)


class TokenState(BaseModel):
    access_token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class BinaryDocument(BaseModel):
    id: str
    content_type: str
    data: str | bytes | None = None
    size: int = 0
    error: str | None = None
    # Vendor error payload when the fetch was rejected
    outcome: dict[str, Any] | None = None


class DocumentContent(BaseModel):
    content_type: str | None = None
    url: str | None = None
    data: str | None = None
    title: str | None = None
    size: int | None = None


class SourceDocument(BaseModel):
    id: str
    status: str | None = None
    type: dict[str, Any] | None = None
    patient_id: str | None = None
    encounter_id: str | None = None
    date: str | None = None
    authors: list[str] = Field(default_factory=list)
    content: list[DocumentContent] = Field(default_factory=list)

    def type_codes(self) -> list[str]:
        if not self.type:
            return []
        return [str(c.get("code")) for c in self.type.get("coding", []) if c.get("code")]

import base64
import logging
from typing import Any, Dict

from ehr_sync.models.ehr.types import SourceDocument
from ehr_sync.models.export.dto import TransformedBinary
from ehr_sync.models.fhir.types import LOINC_DISCHARGE_INSTRUCTIONS, LOINC_DISCHARGE_SUMMARY
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.ehr.vendor_adapter import VendorAdapter
from ehr_sync.services.fhir.tags import correlation_meta_tag, exported_from_tag, make_tag

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def is_text(content_type: str) -> bool:
    return content_type.lower().startswith("text/")


def to_base64(data: str | bytes, content_type: str) -> str:
    """
    Text payloads and raw bytes are base64 encoded. Other string payloads are inline
    attachment data, which FHIR already carries as base64.
    """
    if isinstance(data, bytes):
        return base64.b64encode(data).decode("ascii")
    if is_text(content_type):
        return base64.b64encode(data.encode("utf-8")).decode("ascii")
    return data


def document_type_tag(document: SourceDocument) -> Dict[str, Any]:
    for code in document.type_codes():
        if code == LOINC_DISCHARGE_SUMMARY:
            break
        if code in LOINC_DISCHARGE_INSTRUCTIONS:
            return make_tag("discharge-instructions", "Discharge Instructions")
    return make_tag("discharge-summary", "Discharge Summary")


class BinaryTransformer:
    """
    Downloads the first attachment of a source document and normalizes it for storage as
    a target Binary.
    """

    def download(
        self, adapter: VendorAdapter, document: SourceDocument, ctx: TenantContext
    ) -> TransformedBinary | None:
        if not document.content:
            logger.error("No content found in source document %s", document.id)
            return None

        content = document.content[0]
        content_type = content.content_type or DEFAULT_CONTENT_TYPE

        if content.data:
            logger.info(
                "Using inline data of document %s (%s bytes, %s)",
                document.id,
                content.size or 0,
                content_type,
            )
            return TransformedBinary(
                data=to_base64(content.data, content_type),
                content_type=content_type,
                size=content.size or 0,
            )

        if not content.url:
            logger.error("No attachment data or url in source document %s", document.id)
            return None

        binary_id = content.url.rstrip("/").split("/")[-1]
        if not binary_id:
            logger.error("Could not extract Binary id from url %s", content.url)
            return None

        binary = adapter.fetch_binary_document(binary_id, ctx, content_type)
        if binary is None:
            logger.error("Failed to download Binary/%s", binary_id)
            return None
        if binary.error or binary.data is None:
            logger.warning("Binary/%s has invalid data: %s", binary_id, binary.error)
            return None

        binary_content_type = binary.content_type or content_type
        logger.info(
            "Downloaded Binary/%s (%s bytes, %s)", binary_id, binary.size, binary_content_type
        )
        return TransformedBinary(
            data=to_base64(binary.data, binary_content_type),
            content_type=binary_content_type,
            size=binary.size,
        )

    @staticmethod
    def build_binary_resource(
        binary: TransformedBinary, document: SourceDocument, vendor: str
    ) -> Dict[str, Any]:
        return {
            "resourceType": "Binary",
            "contentType": binary.content_type,
            "data": binary.data,
            "meta": {
                "tag": [
                    document_type_tag(document),
                    exported_from_tag(vendor),
                    correlation_meta_tag(vendor, document.id),
                ]
            },
        }

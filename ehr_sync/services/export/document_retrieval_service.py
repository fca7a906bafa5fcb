import logging
from typing import Any, Dict

from ehr_sync.exceptions import TargetStoreError
from ehr_sync.models.export.dto import BinaryRetrievalResult
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.api.target_store_api import TargetStoreApi
from ehr_sync.services.api.target_store_provider import TargetStoreProvider
from ehr_sync.services.fhir.references import reference_id

logger = logging.getLogger(__name__)


class RetrievalError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def _summary(resource: Dict[str, Any] | None, *fields: str) -> Dict[str, Any] | None:
    if resource is None:
        return None
    return {f: resource[f] for f in ("id", *fields) if f in resource}


class DocumentRetrievalService:
    """
    Reads an exported document back from the target store, starting from either its
    DocumentReference or its Composition.
    """

    def __init__(self, target_store_provider: TargetStoreProvider) -> None:
        self.__target_store_provider = target_store_provider

    def get_binary(
        self,
        ctx: TenantContext,
        document_reference_id: str | None = None,
        composition_id: str | None = None,
    ) -> BinaryRetrievalResult:
        if not document_reference_id and not composition_id:
            return BinaryRetrievalResult(
                success=False,
                error="Either documentReferenceId or compositionId must be provided",
            )

        store = self.__target_store_provider.get_client(ctx)
        document_reference: Dict[str, Any] | None = None
        composition: Dict[str, Any] | None = None

        try:
            if document_reference_id:
                document_reference = self.__read(
                    store, "DocumentReference", document_reference_id,
                    "DocumentReference not found or invalid",
                )
            else:
                composition = self.__read(
                    store, "Composition", str(composition_id), "Composition not found or invalid"
                )
                document_reference = self.__read(
                    store, "DocumentReference", self.__first_document_reference(composition),
                    "Referenced DocumentReference not found or invalid",
                )

            binary_id = self.__binary_id(document_reference)
            binary = self.__read(store, "Binary", binary_id, "Binary resource not found or invalid")
        except RetrievalError as e:
            logger.error("Binary retrieval failed: %s", e.message)
            return BinaryRetrievalResult(
                success=False,
                error=e.message,
                document_reference=document_reference,
                composition=composition,
            )
        except TargetStoreError as e:
            logger.error("Binary retrieval failed: %s", e)
            return BinaryRetrievalResult(
                success=False,
                error=str(e),
                document_reference=document_reference,
                composition=composition,
            )

        logger.info("Fetched Binary/%s from target store", binary.get("id"))
        return BinaryRetrievalResult(
            success=True,
            binary={
                "id": binary.get("id"),
                "contentType": binary.get("contentType"),
                "data": binary.get("data"),
                "size": len(binary.get("data") or ""),
                "meta": binary.get("meta"),
            },
            document_reference=_summary(document_reference, "status", "type", "subject", "date", "content"),
            composition=_summary(composition, "status", "type", "subject", "date", "title", "section"),
        )

    @staticmethod
    def __read(
        store: TargetStoreApi, resource_type: str, resource_id: str, error: str
    ) -> Dict[str, Any]:
        resource = store.read(resource_type, resource_id)
        if not resource or resource.get("resourceType") != resource_type:
            raise RetrievalError(error)
        return resource

    @staticmethod
    def __first_document_reference(composition: Dict[str, Any]) -> str:
        sections = composition.get("section") or []
        if not sections:
            raise RetrievalError("No sections found in Composition")

        entries = sections[0].get("entry") or []
        if not entries:
            raise RetrievalError("No entries found in Composition section")

        doc_ref_id = reference_id(entries[0].get("reference"), "DocumentReference")
        if doc_ref_id is None:
            raise RetrievalError("No DocumentReference found in Composition entry")
        return doc_ref_id

    @staticmethod
    def __binary_id(document_reference: Dict[str, Any]) -> str:
        content = document_reference.get("content") or []
        if not content:
            raise RetrievalError("No content found in DocumentReference")

        url = (content[0].get("attachment") or {}).get("url")
        if not url:
            raise RetrievalError("No attachment URL found in DocumentReference")

        binary_id = reference_id(url, "Binary")
        if binary_id is None:
            raise RetrievalError("Invalid Binary URL format")
        return binary_id

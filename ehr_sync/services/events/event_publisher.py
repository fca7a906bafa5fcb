from abc import ABC, abstractmethod
import logging

from ehr_sync.models.events.dto import DocumentExportEvent, EncounterExportEvent

logger = logging.getLogger(__name__)


class EventPublisher(ABC):
    """
    Fire-and-forget publication of export outcomes. Implementations may raise; callers go
    through ``publish_document_event`` / ``publish_encounter_event`` which never do.
    """

    @abstractmethod
    def _publish(self, channel: str, payload: str) -> None:
        ...

    @abstractmethod
    def is_healthy(self) -> bool:
        ...

    def __init__(self, document_channel: str, encounter_channel: str) -> None:
        self.document_channel = document_channel
        self.encounter_channel = encounter_channel

    def publish_document_event(self, event: DocumentExportEvent) -> bool:
        return self.__safe_publish(
            self.document_channel, event.model_dump_json(by_alias=True, exclude_none=True)
        )

    def publish_encounter_event(self, event: EncounterExportEvent) -> bool:
        return self.__safe_publish(
            self.encounter_channel, event.model_dump_json(by_alias=True, exclude_none=True)
        )

    def __safe_publish(self, channel: str, payload: str) -> bool:
        try:
            self._publish(channel, payload)
            return True
        except Exception:
            # Publishing must never fail the export itself
            logger.exception("Failed to publish event to %s", channel)
            return False


class LoggingEventPublisher(EventPublisher):
    """
    Used when no broker is configured. Events only end up in the log.
    """

    def _publish(self, channel: str, payload: str) -> None:
        logger.info("Event on %s: %s", channel, payload)

    def is_healthy(self) -> bool:
        return True

import logging

from ehr_sync.config import ConfigEvents
from ehr_sync.services.events.event_publisher import EventPublisher, LoggingEventPublisher
from ehr_sync.services.events.redis_publisher import RedisEventPublisher

logger = logging.getLogger(__name__)


class EventPublisherProvider:
    """
    Creates the event publisher from configuration.

    - If a Redis broker is configured *and* reachable, publish there.
    - Otherwise fall back to logging the events.
    """

    def __init__(self, config: ConfigEvents) -> None:
        self.__config = config

    def create(self) -> EventPublisher:
        if self.__config.host is not None and self.__config.port is not None:
            publisher = RedisEventPublisher(
                host=self.__config.host,
                port=self.__config.port,
                document_channel=self.__config.document_channel,
                encounter_channel=self.__config.encounter_channel,
                ssl=self.__config.ssl,
                ssl_keyfile=self.__config.key,
                ssl_certfile=self.__config.cert,
                ssl_ca_certs=self.__config.cafile,
                ssl_check_hostname=self.__config.check_hostname,
            )
            if publisher.is_healthy():
                logger.info("Publishing export events to Redis at %s:%s", self.__config.host, self.__config.port)
                return publisher

            logger.warning("Event broker configured but unhealthy; falling back to log-only events")

        return LoggingEventPublisher(
            document_channel=self.__config.document_channel,
            encounter_channel=self.__config.encounter_channel,
        )

from redis import ConnectionError, Redis

from ehr_sync.services.events.event_publisher import EventPublisher


class RedisEventPublisher(EventPublisher):
    """
    Publishes export events on Redis pub/sub channels.
    """

    def __init__(
        self,
        host: str,
        port: int,
        document_channel: str,
        encounter_channel: str,
        ssl: bool = False,
        ssl_keyfile: str | None = None,
        ssl_ca_certs: str | None = None,
        ssl_certfile: str | None = None,
        ssl_check_hostname: bool = True,
    ) -> None:
        super().__init__(document_channel=document_channel, encounter_channel=encounter_channel)
        self.__redis = Redis(
            host=host,
            port=port,
            db=0,
            ssl=ssl,
            ssl_keyfile=ssl_keyfile,
            ssl_certfile=ssl_certfile,
            ssl_ca_certs=ssl_ca_certs,
            ssl_check_hostname=ssl_check_hostname,
        )

    def _publish(self, channel: str, payload: str) -> None:
        self.__redis.publish(channel, payload)

    def is_healthy(self) -> bool:
        try:
            return bool(self.__redis.ping())
        except ConnectionError:
            return False

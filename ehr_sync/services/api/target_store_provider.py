import logging
import threading

from ehr_sync.config import ConfigTargetStore
from ehr_sync.exceptions import ConfigurationError
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.api.authenticators.authenticator import Authenticator
from ehr_sync.services.api.target_store_api import TargetStoreApi
from ehr_sync.services.tenant_provider.tenant_provider import TenantProvider

logger = logging.getLogger(__name__)


class TargetStoreProvider:
    """
    Resolves the target store client of a tenant. Clients are shared per endpoint URL.
    """

    def __init__(
        self,
        config: ConfigTargetStore,
        tenant_provider: TenantProvider,
        auth: Authenticator,
        default_base_url: str | None = None,
    ) -> None:
        self.__config = config
        self.__tenant_provider = tenant_provider
        self.__auth = auth
        self.__default_base_url = default_base_url
        self.__clients: dict[str, TargetStoreApi] = {}
        self.__lock = threading.Lock()

    def get_client(self, ctx: TenantContext) -> TargetStoreApi:
        tenant = self.__tenant_provider.get_tenant(ctx.tenant_id)
        base_url = tenant.target_store.base_url if tenant.target_store else self.__default_base_url
        if not base_url:
            raise ConfigurationError(
                f"No target store configured for tenant {ctx.tenant_id}"
            )

        with self.__lock:
            client = self.__clients.get(base_url)
            if client is None:
                logger.info("Creating target store client for %s", base_url)
                client = TargetStoreApi(
                    base_url=base_url,
                    timeout=self.__config.timeout,
                    backoff=self.__config.backoff,
                    retries=self.__config.retries,
                    auth=self.__auth,
                    mtls_cert=self.__config.mtls_client_cert_path,
                    mtls_key=self.__config.mtls_client_key_path,
                    mtls_ca=self.__config.mtls_ca_path,
                )
                self.__clients[base_url] = client
            return client

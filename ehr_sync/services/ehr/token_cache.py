import logging
import threading
import time
from typing import Callable

from ehr_sync.models.ehr.types import TokenState

logger = logging.getLogger(__name__)

REFRESH_SKEW_SECONDS = 60
DEFAULT_TOKEN_LIFETIME_SECONDS = 45 * 60

TokenKey = tuple[str, str]


def compute_expiry(expires_in: float | None, now: float) -> float:
    """
    Expiry instant for a freshly issued token. The refresh skew is taken off the lifetime
    reported by the vendor, but never more than half of it, so short-lived tokens are still
    usable right after they are issued. Vendors that omit ``expires_in`` get a fixed lifetime.
    """
    if expires_in is None:
        return now + DEFAULT_TOKEN_LIFETIME_SECONDS
    lifetime = max(0.0, expires_in)
    return now + lifetime - min(REFRESH_SKEW_SECONDS, lifetime / 2)


class TokenCache:
    """
    Access tokens keyed by (tenant id, vendor).

    A refresh for one key runs while holding that key's lock, so concurrent callers wait
    for the single refresh in flight and then reuse its token. Other keys are not blocked.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.__clock = clock
        self.__tokens: dict[TokenKey, TokenState] = {}
        self.__locks: dict[TokenKey, threading.Lock] = {}
        self.__guard = threading.Lock()

    def now(self) -> float:
        return self.__clock()

    def get_valid(self, key: TokenKey) -> TokenState | None:
        token = self.__tokens.get(key)
        if token is not None and token.is_valid(self.now()):
            return token
        return None

    def ensure(
        self, key: TokenKey, refresh: Callable[[], TokenState | None]
    ) -> TokenState | None:
        token = self.get_valid(key)
        if token is not None:
            return token

        with self.__lock_for(key):
            # Another caller may have refreshed while we waited
            token = self.get_valid(key)
            if token is not None:
                return token

            logger.info("Refreshing access token for tenant %s (%s)", *key)
            token = refresh()
            if token is None:
                self.__tokens.pop(key, None)
                return None

            self.__tokens[key] = token
            return token

    def invalidate(self, key: TokenKey) -> None:
        self.__tokens.pop(key, None)

    def invalidate_tenant(self, tenant_id: str) -> None:
        for key in [k for k in self.__tokens if k[0] == tenant_id]:
            self.__tokens.pop(key, None)

    def __lock_for(self, key: TokenKey) -> threading.Lock:
        with self.__guard:
            lock = self.__locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self.__locks[key] = lock
            return lock

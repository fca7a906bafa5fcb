from contextlib import contextmanager
from datetime import timedelta
import time
from typing import Any, Callable, Awaitable, Generator

import statsd
from statsd.client.timer import Timer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from ehr_sync.config import get_config


class Stats:
    def timing(self, key: str, value: int) -> None:
        raise NotImplementedError

    def inc(self, key: str, count: int = 1, rate: int = 1) -> None:
        raise NotImplementedError

    def timer(self, key: str) -> Timer:
        raise NotImplementedError

    def outcome(self, key: str, success: bool) -> None:
        """
        Counts a finished unit of work under ``<key>.success`` or ``<key>.failed``.
        """
        self.inc(f"{key}.{'success' if success else 'failed'}")


class NoopStats(Stats):
    def timing(self, key: str, value: int) -> None:
        pass

    def inc(self, key: str, count: int = 1, rate: int = 1) -> None:
        pass

    def timer(self, key: str) -> Timer:
        @contextmanager
        def noop_context_manager() -> Generator[Any, Any, Any]:
            yield

        return noop_context_manager()  # type: ignore[return-value]


class MemoryClient:
    """
    Keeps metrics in a dict, for stats enabled without a statsd host and for tests.
    Counters hold a number, timings a list of milliseconds.
    """

    def __init__(self) -> None:
        self.memory: dict[str, Any] = {}

    def timer(self, stat: str, rate: int = 1) -> Timer:
        return Timer(self, stat, rate)

    def timing(self, stat: str, delta: timedelta | float, rate: int = 1) -> None:
        if isinstance(delta, timedelta):
            delta = delta.total_seconds() * 1000.0
        self.memory.setdefault(stat, []).append(delta)

    def incr(self, stat: str, count: int = 1, rate: int = 1) -> None:
        self.memory[stat] = self.memory.get(stat, 0) + count

    def get_memory(self) -> dict[str, Any]:
        return self.memory


class Statsd(Stats):
    def __init__(self, client: statsd.StatsClient | MemoryClient):
        self.client = client

    def timing(self, key: str, value: int) -> None:
        self.client.timing(key, value)

    def inc(self, key: str, count: int = 1, rate: int = 1) -> None:
        self.client.incr(key, count, rate)

    def timer(self, key: str) -> Timer:
        return self.client.timer(key)


_STATS: Stats = NoopStats()


def setup_stats() -> None:
    config = get_config()

    if config.stats.enabled is False:
        return
    client = (
        MemoryClient()
        if not config.stats.host
        else statsd.StatsClient(config.stats.host, config.stats.port or 8125, prefix=config.stats.module_name)
    )
    global _STATS
    _STATS = Statsd(client)


def get_stats() -> Stats:
    return _STATS


class StatsdMiddleware(BaseHTTPMiddleware):
    """
    Counts requests per method and path, and responses per status code. Records the
    response time of every request.
    """

    def __init__(self, app: ASGIApp, module_name: str):
        super().__init__(app)
        self.module_name = module_name

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        stats = get_stats()
        stats.inc(f"{self.module_name}.http.request.{request.method.lower()}.{request.url.path}")

        start_time = time.monotonic()
        response = await call_next(request)
        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        stats.inc(f"{self.module_name}.http.status.{response.status_code}")
        stats.timing(f"{self.module_name}.http.response_time", elapsed_ms)
        return response

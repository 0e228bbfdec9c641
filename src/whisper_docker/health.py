"""
Liveness probing for the inference service.

A probe is a single short GET against the health path. Failure to probe is
data, not an exception: connection errors, non-2xx responses and timeouts all
reduce to False.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass

import aiohttp

from whisper_docker.models import ServiceEndpoint

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one liveness probe."""

    healthy: bool
    base_url: str
    checked_at: float  # time.monotonic()
    detail: str = ""


class HealthMonitor:
    """Issues liveness probes and remembers the most recent outcome."""

    def __init__(
        self,
        timeout: float = 5.0,
        max_age: float = 30.0,
        path: str = HEALTH_PATH,
    ):
        """
        Initialize the monitor.

        Args:
            timeout: Per-probe timeout in seconds
            max_age: Seconds after which a probe result no longer counts
            path: Health endpoint path on the service
        """
        self.timeout = timeout
        self.max_age = max_age
        self.path = path
        self._last: ProbeResult | None = None
        self._lock = threading.Lock()

    @property
    def last_probe(self) -> ProbeResult | None:
        with self._lock:
            return self._last

    async def probe(self, endpoint: ServiceEndpoint) -> bool:
        """
        Check whether the service at endpoint answers its health path.

        Never raises; every failure is reported as False.
        """
        url = endpoint.url(self.path)
        logger.debug(f"Health check: {url}")
        healthy = False
        detail = ""

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as resp:
                    healthy = 200 <= resp.status < 300
                    detail = f"HTTP {resp.status}"
                    if not healthy:
                        logger.warning(f"Health check failed with status {resp.status}")

        except aiohttp.ClientConnectorError as e:
            detail = f"connection error: {e}"
            logger.warning(f"Health check could not connect to {endpoint.base_url}: {e}")

        except asyncio.TimeoutError:
            detail = f"timeout after {self.timeout}s"
            logger.warning(f"Health check timeout to {endpoint.base_url}")

        except aiohttp.ClientError as e:
            detail = f"{type(e).__name__}: {e}"
            logger.warning(f"Health check failed: {detail}")

        except Exception as e:
            detail = f"{type(e).__name__}: {e}"
            logger.error(f"Health check failed: {detail}")
            logger.debug("Full traceback:", exc_info=True)

        self._record(ProbeResult(healthy, endpoint.base_url, time.monotonic(), detail))
        return healthy

    def _record(self, result: ProbeResult) -> None:
        with self._lock:
            self._last = result

    def is_healthy(self, endpoint: ServiceEndpoint | None) -> bool:
        """
        Fail-closed availability check based on the most recent probe.

        True only if the latest probe targeted this endpoint, succeeded, and
        is not older than max_age.
        """
        if endpoint is None:
            return False
        last = self.last_probe
        if last is None or last.base_url != endpoint.base_url:
            return False
        if time.monotonic() - last.checked_at > self.max_age:
            return False
        return last.healthy

    def reset(self) -> None:
        """Forget probe history (called on lifecycle transitions)."""
        with self._lock:
            self._last = None

"""
Endpoint discovery for the inference service.

The container publishes its HTTP port on a dynamically assigned host port, so
the base URL is only known after the service is running. The resolver turns
the orchestration backend's ServiceInfo into a ServiceEndpoint exactly once per
Running transition; that value stays authoritative until the next transition.
"""

import logging
import threading

from whisper_docker.errors import EndpointUnavailable
from whisper_docker.models import ServiceEndpoint, ServiceInfo

logger = logging.getLogger(__name__)


class EndpointResolver:
    """Derives the service endpoint from orchestration metadata."""

    def __init__(self, scheme: str = "http"):
        self.scheme = scheme
        self._current: ServiceEndpoint | None = None
        self._lock = threading.Lock()

    @property
    def current(self) -> ServiceEndpoint | None:
        """The most recently resolved endpoint, or None when not running."""
        with self._lock:
            return self._current

    def resolve(self, service_info: ServiceInfo) -> ServiceEndpoint:
        """
        Resolve the endpoint from the service's published ports.

        The first port in the list is always the primary endpoint.

        Args:
            service_info: Report from the orchestration backend

        Returns:
            A new ServiceEndpoint (previous values are never modified)

        Raises:
            EndpointUnavailable: If no usable port is reported
        """
        ports = tuple(service_info.ports or ())
        if not ports:
            name = service_info.container_name or "service"
            raise EndpointUnavailable(f"{name} reports no exposed ports")

        port = ports[0]
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port <= 65535:
            raise EndpointUnavailable(f"Service reported an invalid port: {port!r}")

        endpoint = ServiceEndpoint(host=service_info.host, port=port, scheme=self.scheme)
        with self._lock:
            self._current = endpoint

        if len(ports) > 1:
            logger.debug(f"Multiple ports reported {ports}, using first: {port}")
        logger.info(f"Service endpoint resolved: {endpoint.base_url}")
        return endpoint

    def clear(self) -> None:
        """Forget the current endpoint (service stopped or failed)."""
        with self._lock:
            self._current = None

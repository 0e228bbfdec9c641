"""
Orchestration backend contract.

The lifecycle controller never talks to Docker directly; it drives whatever
backend it was constructed with. Backend methods are blocking and fallible:
the controller runs them off the event loop and wraps every call.
"""

import logging
from typing import Protocol, runtime_checkable

from whisper_docker.config import parse_base_url
from whisper_docker.models import OrchestrationStatus, ServiceInfo

logger = logging.getLogger(__name__)


@runtime_checkable
class OrchestrationBackend(Protocol):
    """Operations the lifecycle controller needs from a container engine."""

    def start_service(self) -> bool: ...

    def stop_service(self) -> bool: ...

    def get_service_status(self) -> OrchestrationStatus: ...

    def get_service_info(self) -> ServiceInfo: ...


class ExternalServiceBackend:
    """
    Backend for a service that is already running somewhere else.

    Used when a direct base_url is configured: there is nothing to start or
    stop, and the endpoint comes from the URL instead of a container.
    """

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")
        self.scheme, self.host, self.port = parse_base_url(self.base_url)

    def start_service(self) -> bool:
        logger.info(f"Using externally managed service at {self.base_url}")
        return True

    def stop_service(self) -> bool:
        logger.info("Externally managed service is left running")
        return True

    def get_service_status(self) -> OrchestrationStatus:
        return OrchestrationStatus(running=True, health="unknown")

    def get_service_info(self) -> ServiceInfo:
        return ServiceInfo(ports=(self.port,), host=self.host)

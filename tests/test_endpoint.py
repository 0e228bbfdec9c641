"""Tests for endpoint resolution from published service ports."""

from __future__ import annotations

import pytest

from whisper_docker.endpoint import EndpointResolver
from whisper_docker.errors import EndpointUnavailable
from whisper_docker.models import ServiceInfo


def test_resolve_uses_first_port() -> None:
    resolver = EndpointResolver()

    endpoint = resolver.resolve(ServiceInfo(ports=(9001, 9002)))

    assert endpoint.base_url == "http://localhost:9001"
    assert resolver.current is endpoint


def test_resolve_keeps_reported_host_and_scheme() -> None:
    resolver = EndpointResolver(scheme="https")

    endpoint = resolver.resolve(ServiceInfo(ports=(8443,), host="gpu-box"))

    assert endpoint.base_url == "https://gpu-box:8443"
    assert endpoint.url("/transcribe") == "https://gpu-box:8443/transcribe"


def test_resolve_without_ports_raises() -> None:
    resolver = EndpointResolver()

    with pytest.raises(EndpointUnavailable, match="no exposed ports"):
        resolver.resolve(ServiceInfo(ports=(), container_name="whisper-service"))

    assert resolver.current is None


@pytest.mark.parametrize("port", [0, -1, 65536, True, "9000"])
def test_resolve_rejects_invalid_first_port(port) -> None:
    resolver = EndpointResolver()

    with pytest.raises(EndpointUnavailable):
        resolver.resolve(ServiceInfo(ports=(port, 9000)))


def test_each_resolution_produces_a_new_endpoint() -> None:
    resolver = EndpointResolver()

    first = resolver.resolve(ServiceInfo(ports=(9000,)))
    second = resolver.resolve(ServiceInfo(ports=(49153,)))

    assert first.port == 9000
    assert second.port == 49153
    assert resolver.current is second


def test_clear_forgets_endpoint() -> None:
    resolver = EndpointResolver()
    resolver.resolve(ServiceInfo(ports=(9000,)))

    resolver.clear()

    assert resolver.current is None

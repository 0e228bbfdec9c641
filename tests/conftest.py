"""Shared fakes for the provider tests."""

from __future__ import annotations

import time

import pytest

from whisper_docker.models import (
    OrchestrationStatus,
    ServiceEndpoint,
    ServiceInfo,
    ServiceState,
    ServiceStatus,
)


class FakeBackend:
    """In-memory orchestration backend with call counters."""

    def __init__(
        self,
        ports: tuple[int, ...] = (9000,),
        host: str = "localhost",
        health: str = "healthy",
        start_delay: float = 0.0,
        start_result: bool = True,
        start_error: Exception | None = None,
        stop_error: Exception | None = None,
        status_error: str | None = None,
    ) -> None:
        self.ports = ports
        self.host = host
        self.health = health
        self.start_delay = start_delay
        self.start_result = start_result
        self.start_error = start_error
        self.stop_error = stop_error
        self.status_error = status_error
        self.running = False
        self.calls = {"start": 0, "stop": 0, "status": 0, "info": 0}

    def start_service(self) -> bool:
        self.calls["start"] += 1
        if self.start_delay:
            time.sleep(self.start_delay)
        if self.start_error is not None:
            raise self.start_error
        if self.start_result:
            self.running = True
        return self.start_result

    def stop_service(self) -> bool:
        self.calls["stop"] += 1
        if self.stop_error is not None:
            raise self.stop_error
        self.running = False
        return True

    def get_service_status(self) -> OrchestrationStatus:
        self.calls["status"] += 1
        return OrchestrationStatus(
            running=self.running,
            health=self.health if self.running else "unknown",
            error=self.status_error,
        )

    def get_service_info(self) -> ServiceInfo:
        self.calls["info"] += 1
        return ServiceInfo(ports=self.ports, host=self.host, container_name="whisper-test")


class StaticService:
    """Status source with a fixed (but mutable) state and endpoint."""

    def __init__(
        self,
        state: ServiceState = ServiceState.RUNNING,
        endpoint: ServiceEndpoint | None = ServiceEndpoint("localhost", 9000),
    ) -> None:
        self.state = state
        self.endpoint = endpoint
        self.reads = 0

    def snapshot(self) -> ServiceStatus:
        self.reads += 1
        return ServiceStatus(state=self.state, endpoint=self.endpoint)


class FakeResponse:
    def __init__(self, status: int = 200, body: str | bytes = "") -> None:
        self.status = status
        self.body = body.encode("utf-8") if isinstance(body, str) else body

    async def read(self) -> bytes:
        return self.body

    async def text(self, errors: str = "strict") -> str:
        return self.body.decode("utf-8", errors)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False


class FakeSession:
    """
    Stand-in for aiohttp.ClientSession.

    Each request pops the next outcome: a FakeResponse is returned, an
    exception is raised.
    """

    def __init__(self, outcomes) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[tuple[str, str]] = []
        self.closed = False

    def _next(self, method: str, url: str):
        self.requests.append((method, url))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def post(self, url, **kwargs):
        return self._next("POST", url)

    def get(self, url, **kwargs):
        return self._next("GET", url)

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        await self.close()
        return False


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def running_service() -> StaticService:
    return StaticService()


@pytest.fixture(autouse=True)
def isolated_config_dir(tmp_path, monkeypatch):
    """Keep config-dir lookups inside the test's temp directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    monkeypatch.setattr("whisper_docker.config.get_config_dir", lambda: config_dir)
    monkeypatch.setattr("whisper_docker.docker_backend.get_config_dir", lambda: config_dir)
    monkeypatch.setattr("whisper_docker.logging_config.get_config_dir", lambda: config_dir)
    monkeypatch.setattr("whisper_docker.__main__.get_config_dir", lambda: config_dir)
    return config_dir

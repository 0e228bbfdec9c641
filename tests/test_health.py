"""Tests for liveness probing."""

from __future__ import annotations

import asyncio
import time

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from whisper_docker.health import HealthMonitor, ProbeResult
from whisper_docker.models import ServiceEndpoint

from conftest import FakeSession


async def _probe_real_server(status: int) -> tuple[bool, HealthMonitor, ServiceEndpoint]:
    async def handle(_request: web.Request) -> web.Response:
        return web.json_response({"status": "ok" if status == 200 else "error"}, status=status)

    app = web.Application()
    app.router.add_get("/health", handle)
    server = TestServer(app)
    await server.start_server()
    try:
        endpoint = ServiceEndpoint(server.host, server.port)
        monitor = HealthMonitor(timeout=2.0)
        healthy = await monitor.probe(endpoint)
    finally:
        await server.close()
    return healthy, monitor, endpoint


def test_probe_healthy_on_2xx() -> None:
    healthy, monitor, endpoint = asyncio.run(_probe_real_server(200))

    assert healthy is True
    assert monitor.last_probe.healthy is True
    assert monitor.last_probe.base_url == endpoint.base_url
    assert monitor.is_healthy(endpoint) is True


def test_probe_unhealthy_on_5xx() -> None:
    healthy, monitor, endpoint = asyncio.run(_probe_real_server(500))

    assert healthy is False
    assert monitor.last_probe.detail == "HTTP 500"
    assert monitor.is_healthy(endpoint) is False


def test_probe_timeout_is_reported_not_raised(monkeypatch) -> None:
    session = FakeSession([asyncio.TimeoutError()])
    monkeypatch.setattr(
        "whisper_docker.health.aiohttp.ClientSession", lambda **_kwargs: session
    )
    monitor = HealthMonitor(timeout=0.5)

    healthy = asyncio.run(monitor.probe(ServiceEndpoint("localhost", 9000)))

    assert healthy is False
    assert "timeout" in monitor.last_probe.detail
    assert session.requests == [("GET", "http://localhost:9000/health")]


def test_probe_connection_error_is_reported_not_raised(monkeypatch) -> None:
    session = FakeSession([aiohttp.ClientConnectionError("refused")])
    monkeypatch.setattr(
        "whisper_docker.health.aiohttp.ClientSession", lambda **_kwargs: session
    )
    monitor = HealthMonitor()

    assert asyncio.run(monitor.probe(ServiceEndpoint("localhost", 9000))) is False
    assert monitor.last_probe.healthy is False


def test_is_healthy_fails_closed_without_probe() -> None:
    monitor = HealthMonitor()

    assert monitor.is_healthy(ServiceEndpoint("localhost", 9000)) is False
    assert monitor.is_healthy(None) is False


def test_is_healthy_rejects_probe_for_other_endpoint() -> None:
    monitor = HealthMonitor()
    monitor._record(ProbeResult(True, "http://localhost:9000", time.monotonic()))

    assert monitor.is_healthy(ServiceEndpoint("localhost", 9000)) is True
    assert monitor.is_healthy(ServiceEndpoint("localhost", 9001)) is False


def test_is_healthy_rejects_stale_probe() -> None:
    monitor = HealthMonitor(max_age=30.0)
    monitor._record(ProbeResult(True, "http://localhost:9000", time.monotonic() - 31.0))

    assert monitor.is_healthy(ServiceEndpoint("localhost", 9000)) is False


def test_reset_forgets_probe_history() -> None:
    monitor = HealthMonitor()
    monitor._record(ProbeResult(True, "http://localhost:9000", time.monotonic()))

    monitor.reset()

    assert monitor.last_probe is None

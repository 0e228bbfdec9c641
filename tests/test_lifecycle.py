"""Tests for the service lifecycle state machine."""

from __future__ import annotations

import asyncio
import time

from whisper_docker.errors import EndpointUnavailable, LifecycleError
from whisper_docker.health import HealthMonitor, ProbeResult
from whisper_docker.lifecycle import ServiceLifecycleController
from whisper_docker.models import ServiceState

from conftest import FakeBackend


class ScriptedMonitor(HealthMonitor):
    """Health monitor that replays a fixed sequence of probe outcomes."""

    def __init__(self, outcomes: list[bool]) -> None:
        super().__init__()
        self.outcomes = list(outcomes)
        self.probes = 0

    async def probe(self, endpoint) -> bool:
        self.probes += 1
        healthy = self.outcomes.pop(0)
        self._record(ProbeResult(healthy, endpoint.base_url, time.monotonic()))
        return healthy


def _controller(backend: FakeBackend, **kwargs) -> ServiceLifecycleController:
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("startup_timeout", 1.0)
    return ServiceLifecycleController(backend, **kwargs)


def test_initial_state_is_unknown(fake_backend: FakeBackend) -> None:
    status = _controller(fake_backend).snapshot()

    assert status.state is ServiceState.UNKNOWN
    assert status.endpoint is None


def test_start_resolves_endpoint_and_runs(fake_backend: FakeBackend) -> None:
    controller = _controller(fake_backend)

    result = asyncio.run(controller.start())

    assert result.success is True
    assert result.error is None
    assert result.status.state is ServiceState.RUNNING
    assert result.status.endpoint.base_url == "http://localhost:9000"
    assert controller.resolver.current == result.status.endpoint
    assert fake_backend.calls["start"] == 1
    assert fake_backend.calls["info"] == 1


def test_concurrent_starts_call_backend_once() -> None:
    backend = FakeBackend(start_delay=0.05)
    controller = _controller(backend)

    async def _run():
        return await asyncio.gather(controller.start(), controller.start())

    first, second = asyncio.run(_run())

    assert backend.calls["start"] == 1
    assert first.success and second.success
    assert first.status == second.status
    assert first.status.state is ServiceState.RUNNING


def test_concurrent_failed_starts_call_backend_once() -> None:
    backend = FakeBackend(start_delay=0.05, start_result=False)
    controller = _controller(backend)

    async def _run():
        return await asyncio.gather(controller.start(), controller.start())

    first, second = asyncio.run(_run())

    assert backend.calls["start"] == 1
    assert not first.success and not second.success
    assert first is second
    assert controller.snapshot().state is ServiceState.ERROR


def test_start_after_failed_start_retries_backend() -> None:
    backend = FakeBackend(start_result=False)
    controller = _controller(backend)

    async def _run():
        failed = await controller.start()
        backend.start_result = True
        return failed, await controller.start()

    failed, retried = asyncio.run(_run())

    assert not failed.success
    assert retried.success
    assert backend.calls["start"] == 2


def test_start_queued_behind_stop_runs_its_own_attempt() -> None:
    backend = FakeBackend(start_delay=0.05)
    controller = _controller(backend)

    async def _run():
        return await asyncio.gather(controller.start(), controller.stop(), controller.start())

    first, stopped, last = asyncio.run(_run())

    assert first.success and stopped.success and last.success
    assert backend.calls["start"] == 2
    assert controller.snapshot().state is ServiceState.RUNNING


def test_start_when_running_is_a_no_op(fake_backend: FakeBackend) -> None:
    controller = _controller(fake_backend)

    async def _run():
        await controller.start()
        return await controller.start()

    result = asyncio.run(_run())

    assert result.success is True
    assert "already running" in result.message
    assert fake_backend.calls["start"] == 1


def test_start_without_ports_fails_with_endpoint_unavailable() -> None:
    backend = FakeBackend(ports=())
    controller = _controller(backend)

    result = asyncio.run(controller.start())

    assert result.success is False
    assert isinstance(result.error, EndpointUnavailable)
    assert result.status.state is ServiceState.ERROR
    assert result.status.endpoint is None
    assert "no exposed ports" in result.status.error


def test_backend_exception_becomes_error_state() -> None:
    backend = FakeBackend(start_error=RuntimeError("docker exploded"))
    controller = _controller(backend)

    result = asyncio.run(controller.start())

    assert result.success is False
    assert isinstance(result.error, LifecycleError)
    assert isinstance(result.error.cause, RuntimeError)
    assert "docker exploded" in result.status.error
    assert controller.snapshot().state is ServiceState.ERROR


def test_backend_lifecycle_error_keeps_message() -> None:
    backend = FakeBackend(start_error=LifecycleError("Docker is not installed"))
    controller = _controller(backend)

    result = asyncio.run(controller.start())

    assert result.success is False
    assert result.status.error == "Docker is not installed"


def test_backend_refusing_to_start_fails() -> None:
    backend = FakeBackend(start_result=False)
    controller = _controller(backend)

    result = asyncio.run(controller.start())

    assert result.success is False
    assert controller.snapshot().state is ServiceState.ERROR
    assert backend.calls["info"] == 0


def test_readiness_timeout_fails() -> None:
    backend = FakeBackend(health="unhealthy")
    controller = _controller(backend, startup_timeout=0.05)

    result = asyncio.run(controller.start())

    assert result.success is False
    assert "did not become ready" in result.status.error
    assert backend.calls["status"] >= 2


def test_status_error_during_startup_fails() -> None:
    backend = FakeBackend(status_error="Container whisper-service exited")
    controller = _controller(backend)

    result = asyncio.run(controller.start())

    assert result.success is False
    assert "exited" in result.status.error


def test_start_after_error_recovers() -> None:
    backend = FakeBackend(ports=())
    controller = _controller(backend)

    async def _run():
        failed = await controller.start()
        backend.ports = (49153,)
        return failed, await controller.start()

    failed, recovered = asyncio.run(_run())

    assert failed.success is False
    assert recovered.success is True
    assert recovered.status.state is ServiceState.RUNNING
    assert recovered.status.endpoint.port == 49153
    assert recovered.status.error is None


def test_stop_is_idempotent(fake_backend: FakeBackend) -> None:
    controller = _controller(fake_backend)

    async def _run():
        await controller.start()
        first = await controller.stop()
        second = await controller.stop()
        return first, second

    first, second = asyncio.run(_run())

    assert first.success and second.success
    assert second.message == "Service already stopped"
    assert fake_backend.calls["stop"] == 1
    assert controller.snapshot().state is ServiceState.STOPPED
    assert controller.resolver.current is None


def test_stop_failure_becomes_error_state() -> None:
    backend = FakeBackend(stop_error=LifecycleError("Failed to stop service: boom"))
    controller = _controller(backend)

    async def _run():
        await controller.start()
        return await controller.stop()

    result = asyncio.run(_run())

    assert result.success is False
    assert result.status.state is ServiceState.ERROR
    assert result.status.error == "Failed to stop service: boom"


def test_refresh_detects_vanished_service(fake_backend: FakeBackend) -> None:
    controller = _controller(fake_backend)

    async def _run():
        await controller.start()
        fake_backend.running = False
        return await controller.refresh()

    status = asyncio.run(_run())

    assert status.state is ServiceState.ERROR
    assert "stopped unexpectedly" in status.error
    assert status.endpoint is None


def test_refresh_leaves_running_service_alone(fake_backend: FakeBackend) -> None:
    controller = _controller(fake_backend)

    async def _run():
        await controller.start()
        return await controller.refresh()

    assert asyncio.run(_run()).state is ServiceState.RUNNING


def test_health_probes_switch_between_running_and_degraded(fake_backend: FakeBackend) -> None:
    monitor = ScriptedMonitor([False, True])
    controller = _controller(fake_backend, monitor=monitor)

    async def _run():
        await controller.start()
        await controller.check_health()
        degraded = controller.snapshot()
        await controller.check_health()
        return degraded, controller.snapshot()

    degraded, recovered = asyncio.run(_run())

    assert degraded.state is ServiceState.DEGRADED
    assert degraded.healthy is False
    assert recovered.state is ServiceState.RUNNING
    assert recovered.healthy is True


def test_check_health_skips_probe_when_not_running(fake_backend: FakeBackend) -> None:
    monitor = ScriptedMonitor([])
    controller = _controller(fake_backend, monitor=monitor)

    assert asyncio.run(controller.check_health()) is False
    assert monitor.probes == 0


def test_is_available_requires_running_and_fresh_healthy_probe(
    fake_backend: FakeBackend,
) -> None:
    monitor = ScriptedMonitor([True, False])
    controller = _controller(fake_backend, monitor=monitor)

    async def _run():
        before_start = await controller.is_available(probe=False)
        await controller.start()
        without_probe = await controller.is_available(probe=False)
        healthy = await controller.is_available()
        unhealthy = await controller.is_available()
        return before_start, without_probe, healthy, unhealthy

    before_start, without_probe, healthy, unhealthy = asyncio.run(_run())

    assert before_start is False
    assert without_probe is False
    assert healthy is True
    assert unhealthy is False


def test_background_health_checks_run_and_stop(fake_backend: FakeBackend) -> None:
    monitor = ScriptedMonitor([True] * 100)
    controller = _controller(fake_backend, monitor=monitor)

    async def _run():
        await controller.start()
        controller.start_health_checks(0.01)
        await asyncio.sleep(0.05)
        await controller.aclose()
        return monitor.probes

    probes = asyncio.run(_run())

    assert probes >= 1
    assert controller._health_task is None

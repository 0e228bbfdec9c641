"""
Lifecycle management for the containerized inference service.

ServiceLifecycleController drives an orchestration backend through
start/stop, resolves the service endpoint on every Running transition, and
keeps health state consistent with the service's running state.

Concurrency:
- Status and endpoint live behind a threading.Lock, so snapshot() is always a
  consistent (state, endpoint) pair.
- Transitions are serialized by an asyncio.Lock; concurrent start() calls
  collapse into a single backend call.
- Health probes never take the transition lock.
"""

import asyncio
import contextlib
import logging
import threading
import time

from whisper_docker.endpoint import EndpointResolver
from whisper_docker.errors import EndpointUnavailable, LifecycleError, WhisperProviderError
from whisper_docker.health import HealthMonitor
from whisper_docker.models import (
    LifecycleResult,
    OrchestrationStatus,
    ServiceEndpoint,
    ServiceState,
    ServiceStatus,
)
from whisper_docker.orchestration import OrchestrationBackend

logger = logging.getLogger(__name__)

_LIVE_STATES = (ServiceState.RUNNING, ServiceState.DEGRADED)


class ServiceLifecycleController:
    """Owns the service state machine, the endpoint resolver and the health monitor."""

    def __init__(
        self,
        backend: OrchestrationBackend,
        resolver: EndpointResolver | None = None,
        monitor: HealthMonitor | None = None,
        startup_timeout: float = 120.0,
        poll_interval: float = 1.0,
    ):
        """
        Initialize the controller.

        Args:
            backend: Orchestration backend that runs the service
            resolver: Endpoint resolver (created if omitted)
            monitor: Health monitor (created if omitted)
            startup_timeout: Seconds to wait for the backend to report ready
            poll_interval: Seconds between readiness polls
        """
        self.backend = backend
        self.resolver = resolver or EndpointResolver()
        self.monitor = monitor or HealthMonitor()
        self.startup_timeout = startup_timeout
        self.poll_interval = poll_interval

        self._state = ServiceState.UNKNOWN
        self._endpoint: ServiceEndpoint | None = None
        self._error: str | None = None
        self._state_lock = threading.Lock()
        self._transition_lock: asyncio.Lock | None = None
        self._transition_loop: asyncio.AbstractEventLoop | None = None
        self._health_task: asyncio.Task | None = None
        # Completed start/stop transitions, and the last start as (count, result)
        self._transitions = 0
        self._last_start: tuple[int, LifecycleResult] | None = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def snapshot(self) -> ServiceStatus:
        """Atomic, read-only view of state, endpoint and health."""
        with self._state_lock:
            state, endpoint, error = self._state, self._endpoint, self._error

        healthy = None
        checked_at = None
        last = self.monitor.last_probe
        if endpoint is not None and last is not None and last.base_url == endpoint.base_url:
            healthy = last.healthy
            checked_at = last.checked_at
        return ServiceStatus(
            state=state,
            endpoint=endpoint,
            error=error,
            healthy=healthy,
            checked_at=checked_at,
        )

    def get_status(self) -> ServiceStatus:
        """Alias of snapshot() matching the provider surface."""
        return self.snapshot()

    def _set_state(
        self,
        state: ServiceState,
        endpoint: ServiceEndpoint | None = None,
        error: str | None = None,
    ) -> None:
        with self._state_lock:
            previous = self._state
            self._state = state
            self._endpoint = endpoint
            self._error = error
        if previous is not state:
            logger.info(f"Service state: {previous.value} -> {state.value}")

    def _get_transition_lock(self) -> asyncio.Lock:
        # asyncio.Lock binds to the loop that first waits on it
        loop = asyncio.get_running_loop()
        if self._transition_lock is None or self._transition_loop is not loop:
            self._transition_lock = asyncio.Lock()
            self._transition_loop = loop
        return self._transition_lock

    def _fail(
        self, message: str, error: WhisperProviderError | None = None
    ) -> LifecycleResult:
        self.resolver.clear()
        self.monitor.reset()
        self._set_state(ServiceState.ERROR, error=message)
        logger.error(message)
        return LifecycleResult(
            False,
            message,
            self.snapshot(),
            error or LifecycleError(message),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self) -> LifecycleResult:
        """
        Start the service and resolve its endpoint.

        Idempotent: returns success without touching the backend when the
        service is already running. Never raises for backend failures; they
        are recorded as ERROR and returned in the result. Callers that queued
        behind an attempt that completed with nothing in between share its
        result, so concurrent starts reach the backend once even on failure.
        """
        seen = self._transitions
        async with self._get_transition_lock():
            last = self._last_start
            if last is not None and last[0] == self._transitions == seen + 1:
                logger.debug("start() joined the attempt that just completed")
                return last[1]

            current = self.snapshot()
            if current.state in _LIVE_STATES:
                logger.debug("start() ignored, service already running")
                return LifecycleResult(
                    True, f"Service already running at {current.endpoint.base_url}", current
                )

            result = await self._start_service()
            self._transitions += 1
            self._last_start = (self._transitions, result)
            return result

    async def _start_service(self) -> LifecycleResult:
        """One start attempt; the caller holds the transition lock."""
        self.resolver.clear()
        self.monitor.reset()
        self._set_state(ServiceState.STARTING)

        try:
            started = await asyncio.to_thread(self.backend.start_service)
            if not started:
                return self._fail("Orchestration backend refused to start the service")

            await self._wait_until_ready()
            info = await asyncio.to_thread(self.backend.get_service_info)
            endpoint = self.resolver.resolve(info)

        except EndpointUnavailable as e:
            return self._fail(f"Service started but has no endpoint: {e}", e)
        except LifecycleError as e:
            return self._fail(e.message, e)
        except asyncio.CancelledError:
            self._fail("Service start was cancelled")
            raise
        except Exception as e:
            logger.debug("Full traceback:", exc_info=True)
            message = f"Service start failed: {type(e).__name__}: {e}"
            return self._fail(message, LifecycleError(message, cause=e))

        self._set_state(ServiceState.RUNNING, endpoint=endpoint)
        return LifecycleResult(
            True, f"Service running at {endpoint.base_url}", self.snapshot()
        )

    async def _wait_until_ready(self) -> None:
        """Poll the backend until it reports the service running and not unhealthy."""
        deadline = time.monotonic() + self.startup_timeout
        last_status: OrchestrationStatus | None = None

        while True:
            status = await asyncio.to_thread(self.backend.get_service_status)
            if status.error:
                raise LifecycleError(f"Service failed to start: {status.error}")
            if status.running and status.health != "unhealthy":
                return
            if status != last_status:
                logger.debug(
                    f"Waiting for service (running={status.running}, health={status.health})"
                )
                last_status = status
            if time.monotonic() >= deadline:
                raise LifecycleError(
                    f"Service did not become ready within {self.startup_timeout:.0f}s "
                    f"(running={status.running}, health={status.health})"
                )
            await asyncio.sleep(self.poll_interval)

    async def stop(self) -> LifecycleResult:
        """
        Stop the service.

        Idempotent: stopping a stopped service is a no-op success.
        """
        async with self._get_transition_lock():
            # A start queued behind this stop must run its own attempt
            self._transitions += 1
            current = self.snapshot()
            if current.state is ServiceState.STOPPED:
                return LifecycleResult(True, "Service already stopped", current)

            self.resolver.clear()
            self.monitor.reset()
            self._set_state(ServiceState.STOPPING)

            try:
                stopped = await asyncio.to_thread(self.backend.stop_service)
            except LifecycleError as e:
                return self._fail(e.message, e)
            except asyncio.CancelledError:
                self._fail("Service stop was cancelled")
                raise
            except Exception as e:
                logger.debug("Full traceback:", exc_info=True)
                message = f"Service stop failed: {type(e).__name__}: {e}"
                return self._fail(message, LifecycleError(message, cause=e))

            if not stopped:
                return self._fail("Orchestration backend refused to stop the service")

            self._set_state(ServiceState.STOPPED)
            return LifecycleResult(True, "Service stopped", self.snapshot())

    async def refresh(self) -> ServiceStatus:
        """
        Reconcile with the backend's view of the service.

        A service that disappeared underneath a RUNNING/DEGRADED controller is
        moved to ERROR. Other states are left alone.
        """
        if self.snapshot().state not in _LIVE_STATES:
            return self.snapshot()

        try:
            status = await asyncio.to_thread(self.backend.get_service_status)
        except Exception as e:
            logger.warning(f"Could not query service status: {type(e).__name__}: {e}")
            return self.snapshot()

        if not status.running:
            async with self._get_transition_lock():
                if self.snapshot().state in _LIVE_STATES:
                    self._fail(
                        "Service stopped unexpectedly"
                        + (f": {status.error}" if status.error else "")
                    )
        return self.snapshot()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def check_health(self) -> bool:
        """
        Probe the current endpoint and move between RUNNING and DEGRADED.

        Returns False without probing when the service is not running.
        """
        status = self.snapshot()
        if status.state not in _LIVE_STATES or status.endpoint is None:
            return False

        healthy = await self.monitor.probe(status.endpoint)

        with self._state_lock:
            # Only apply if no transition happened while the probe was in flight
            if self._endpoint is status.endpoint and self._state in _LIVE_STATES:
                new_state = ServiceState.RUNNING if healthy else ServiceState.DEGRADED
                if new_state is not self._state:
                    logger.info(f"Service state: {self._state.value} -> {new_state.value}")
                    self._state = new_state
        return healthy

    async def is_available(self, probe: bool = True) -> bool:
        """
        True when the service is RUNNING and the most recent probe succeeded.

        Args:
            probe: Run a fresh probe first; otherwise rely on the last result,
                treating a stale or missing probe as unavailable
        """
        if probe:
            await self.check_health()
        status = self.snapshot()
        return status.state is ServiceState.RUNNING and self.monitor.is_healthy(
            status.endpoint
        )

    def start_health_checks(self, interval: float) -> asyncio.Task:
        """Run check_health() every interval seconds on a background task."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.stop_health_checks()
        self._health_task = asyncio.get_running_loop().create_task(
            self._health_loop(interval), name="whisper-health-checks"
        )
        return self._health_task

    async def _health_loop(self, interval: float) -> None:
        while True:
            await self.check_health()
            await asyncio.sleep(interval)

    def stop_health_checks(self) -> None:
        if self._health_task is not None:
            self._health_task.cancel()
            self._health_task = None

    async def aclose(self) -> None:
        """Cancel background health checks and wait for the task to finish."""
        task, self._health_task = self._health_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

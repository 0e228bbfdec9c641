"""
Docker Compose orchestration backend.

Starts, stops and inspects the Whisper service container through the docker
CLI, and discovers the host port Docker published for the service.
"""

import logging
import os
import platform
import shutil
import subprocess
from pathlib import Path

from whisper_docker.config import DockerConfig, get_config_dir
from whisper_docker.errors import LifecycleError
from whisper_docker.models import OrchestrationStatus, ServiceInfo

logger = logging.getLogger(__name__)

COMPOSE_FILENAMES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")


class DockerComposeBackend:
    """
    Manages the Whisper service container with docker compose.

    The compose file is expected to publish the service's internal port on a
    dynamic host port (e.g. ``ports: ["9000"]``); the assigned port is read
    back with ``docker port`` after start.
    """

    def __init__(self, config: DockerConfig | None = None):
        """
        Initialize the backend.

        Args:
            config: Docker settings. compose_dir defaults to
                <config dir>/whisper-service
        """
        self.config = config or DockerConfig()
        self.compose_dir = self.config.compose_dir or get_config_dir() / "whisper-service"
        self.system = platform.system()

    def _run_command(
        self,
        args: list[str],
        cwd: Path | None = None,
        timeout: float | None = 60,
    ) -> subprocess.CompletedProcess:
        """
        Run a command and return the result.

        Args:
            args: Command arguments
            cwd: Working directory
            timeout: Timeout in seconds (None for no timeout)
        """
        # Hide console window on Windows
        startupinfo = None
        if self.system == "Windows":
            startupinfo = subprocess.STARTUPINFO()
            startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
            startupinfo.wShowWindow = subprocess.SW_HIDE

        return subprocess.run(
            args,
            cwd=cwd,
            env=os.environ.copy(),
            capture_output=True,
            text=True,
            timeout=timeout,
            startupinfo=startupinfo,
        )

    def is_docker_available(self) -> tuple[bool, str]:
        """
        Check if Docker is installed and running.

        Returns:
            Tuple of (available, message)
        """
        if not shutil.which("docker"):
            return False, "Docker is not installed"

        try:
            result = self._run_command(["docker", "info"])
            if result.returncode != 0:
                return False, "Docker daemon is not running"
            return True, "Docker is available"
        except subprocess.TimeoutExpired:
            return False, "Docker command timed out"
        except OSError as e:
            return False, f"Docker check failed: {e}"

    def _find_compose_file(self) -> Path | None:
        for name in COMPOSE_FILENAMES:
            candidate = self.compose_dir / name
            if candidate.exists():
                return candidate
        return None

    def _preflight(self) -> None:
        available, msg = self.is_docker_available()
        if not available:
            raise LifecycleError(msg)
        if not self._find_compose_file():
            raise LifecycleError(
                f"No compose file found in {self.compose_dir}. "
                f"Expected one of: {', '.join(COMPOSE_FILENAMES)}"
            )

    def start_service(self) -> bool:
        """Run ``docker compose up -d`` for the service."""
        self._preflight()
        logger.info(f"Starting {self.config.service_name} from {self.compose_dir}...")

        # No timeout - the first run may pull the image, which can take a long time
        result = self._run_command(
            ["docker", "compose", "up", "-d", self.config.service_name],
            cwd=self.compose_dir,
            timeout=None,
        )
        if result.returncode != 0:
            error_msg = result.stderr.strip() if result.stderr else "Unknown error"
            raise LifecycleError(f"Failed to start service: {error_msg}")
        return True

    def stop_service(self) -> bool:
        """Stop the service container."""
        available, msg = self.is_docker_available()
        if not available:
            raise LifecycleError(msg)

        if self._find_compose_file():
            logger.info(f"Stopping {self.config.service_name}...")
            result = self._run_command(
                ["docker", "compose", "stop", self.config.service_name],
                cwd=self.compose_dir,
            )
        else:
            logger.info("Compose file not found, stopping container directly...")
            result = self._run_command(["docker", "stop", self.config.container_name])

        if result.returncode != 0:
            error_msg = result.stderr.strip() if result.stderr else "Unknown error"
            raise LifecycleError(f"Failed to stop service: {error_msg}")
        return True

    def get_service_status(self) -> OrchestrationStatus:
        """Report whether the container runs and what Docker thinks of its health."""
        result = self._run_command(
            [
                "docker",
                "inspect",
                self.config.container_name,
                "--format",
                "{{.State.Status}}|{{if .State.Health}}{{.State.Health.Status}}{{end}}",
            ]
        )
        if result.returncode != 0:
            error_msg = result.stderr.strip() if result.stderr else "container not found"
            return OrchestrationStatus(running=False, error=error_msg)

        state, _, health = result.stdout.strip().partition("|")
        if state in ("exited", "dead"):
            return OrchestrationStatus(
                running=False, error=f"Container {self.config.container_name} {state}"
            )
        # Docker reports "starting" while the healthcheck has not settled yet
        if health not in ("healthy", "unhealthy"):
            health = "unknown"
        return OrchestrationStatus(running=state == "running", health=health)

    def get_service_info(self) -> ServiceInfo:
        """Read the host ports Docker published for the service's internal port."""
        result = self._run_command(
            [
                "docker",
                "port",
                self.config.container_name,
                f"{self.config.internal_port}/tcp",
            ]
        )
        if result.returncode != 0:
            error_msg = result.stderr.strip() if result.stderr else "Unknown error"
            raise LifecycleError(f"Failed to read published ports: {error_msg}")

        return ServiceInfo(
            ports=parse_port_mappings(result.stdout),
            host=self.config.host,
            container_name=self.config.container_name,
        )

    def get_logs(self, lines: int = 300) -> str:
        """
        Get recent service logs.

        Args:
            lines: Number of log lines to retrieve (default: 300)
        """
        try:
            result = self._run_command(
                ["docker", "logs", "--tail", str(lines), self.config.container_name]
            )
            return result.stdout if result.returncode == 0 else result.stderr
        except (OSError, subprocess.TimeoutExpired) as e:
            return f"Failed to get logs: {e}"


def parse_port_mappings(output: str) -> tuple[int, ...]:
    """
    Parse ``docker port`` output into host ports.

    Docker prints one binding per line, e.g. ``0.0.0.0:49153`` and
    ``[::]:49153``. Duplicates across address families are collapsed and the
    first-seen order is kept.
    """
    ports: list[int] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or ":" not in line:
            continue
        port_text = line.rsplit(":", 1)[1]
        if not port_text.isdigit():
            logger.debug(f"Ignoring unparseable port binding: {line}")
            continue
        port = int(port_text)
        if port not in ports:
            ports.append(port)
    return tuple(ports)

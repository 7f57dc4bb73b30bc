"""Docker Engine / Docker Desktop backend."""

from __future__ import annotations

import os
from pathlib import PurePosixPath, PureWindowsPath
from typing import Mapping, Optional

import docker
from docker import DockerClient
from docker.errors import DockerException

from rfswift.config import DEFAULT_PING_TIMEOUT
from rfswift.errors import RSEngineError, RSEngineUnavailable, RSUnsupportedPlatform

from .base import Engine, EngineKind, run_service_command
from .detect import binary_exists, current_system, detect_docker_socket, ping_client, socket_file_exists


class DockerEngine(Engine):
    """Docker engine reached through DOCKER_HOST or the platform socket."""

    kind = EngineKind.DOCKER
    supports_direct_config_edit = True

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        system: Optional[str] = None,
        ping_timeout: int = DEFAULT_PING_TIMEOUT,
    ):
        self._environ = os.environ if environ is None else environ
        self._system = system or current_system()
        self._ping_timeout = ping_timeout

    @property
    def name(self) -> str:
        return "Docker"

    def is_available(self) -> bool:
        """Binary installed and a daemon socket present (or answering a ping)."""
        if not binary_exists("docker"):
            return False

        socket_path = self.get_socket_path()
        if socket_path and socket_file_exists(socket_path):
            return True

        # DOCKER_HOST explicitly set, trust the user
        if self._environ.get("DOCKER_HOST"):
            return True

        # Docker Desktop does not always expose a visible socket file
        if self._system in ("darwin", "windows"):
            return self.is_service_running()
        return False

    def is_service_running(self) -> bool:
        """Ping the Docker daemon API."""
        try:
            client = self.get_client(timeout=self._ping_timeout)
        except RSEngineUnavailable:
            return False
        try:
            return ping_client(client)
        finally:
            client.close()

    def get_client(self, timeout: Optional[int] = None) -> DockerClient:
        """Return a Docker SDK client, honouring DOCKER_HOST like ``docker.from_env``."""
        kwargs = {"version": "auto"}
        if timeout:
            kwargs["timeout"] = timeout
        try:
            if self._environ.get("DOCKER_HOST"):
                return docker.DockerClient.from_env(environment=dict(self._environ), **kwargs)
            return docker.DockerClient(base_url=self.get_socket_path(), **kwargs)
        except DockerException as e:
            raise RSEngineUnavailable(f"Failed to connect to Docker daemon at {self.get_socket_path()}: {e}")

    def get_socket_path(self) -> str:
        return detect_docker_socket(self._environ, self._system)

    def start_service(self) -> None:
        """Start the Docker daemon."""
        if self._system == "linux":
            run_service_command(["sudo", "systemctl", "start", "docker"])
        elif self._system == "darwin":
            run_service_command(["open", "-a", "Docker"])
        elif self._system == "windows":
            run_service_command(["powershell", "Start-Service", "Docker"])
        else:
            raise RSUnsupportedPlatform(f"Unsupported operating system: {self._system}")

    def restart_service(self) -> None:
        """Restart the Docker daemon."""
        if self._system == "linux":
            run_service_command(["sudo", "systemctl", "restart", "docker"])
        elif self._system == "darwin":
            run_service_command([
                "osascript", "-e",
                'do shell script "brew services restart docker" with administrator privileges',
            ])
        elif self._system == "windows":
            run_service_command(["powershell", "Restart-Service", "Docker"])
        else:
            raise RSUnsupportedPlatform(f"Unsupported operating system: {self._system}")

    def host_config_path(self, container_id: str) -> str:
        """Docker's on-disk hostconfig.json of a container."""
        if self._system == "windows":
            path = str(PureWindowsPath(self.storage_root(), "containers", container_id, "hostconfig.json"))
        else:
            path = str(PurePosixPath(self.storage_root(), "containers", container_id, "hostconfig.json"))
        if not os.path.exists(path):
            raise RSEngineError(f"File not found: {path}")
        return path

    def config_v2_path(self, container_id: str) -> str:
        """Docker's on-disk config.v2.json of a container."""
        return self.host_config_path(container_id).replace("hostconfig.json", "config.v2.json", 1)

    def storage_root(self) -> str:
        if self._system == "windows":
            return "C:\\ProgramData\\docker"
        return "/var/lib/docker"

"""Podman backend, spoken to through its Docker-compatible API."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Callable, Mapping, Optional

import docker
from docker import DockerClient
from docker.errors import DockerException
from podman import PodmanClient
from podman.errors import PodmanError
from requests.exceptions import RequestException

from rfswift.config import DEFAULT_PING_TIMEOUT
from rfswift.errors import RSEngineError, RSEngineUnavailable, RSUnsupportedPlatform
from rfswift.utils.messages import print_info

from .base import Engine, EngineKind, run_service_command
from .detect import (
    CommandRunner,
    binary_exists,
    current_system,
    detect_podman_socket,
    effective_uid,
    is_podman_machine_running,
    ping_client,
    run_command,
    socket_file_exists,
)

logger = logging.getLogger(__name__)

SOCKET_ACTIVATION_DELAY = 0.5
MACHINE_START_DELAY = 2.0
MACHINE_RESTART_DELAY = 1.0


class PodmanEngine(Engine):
    """Podman engine, rootless or rootful, native or inside a Podman machine.

    The socket address and rootless flag are detected once and cached; only an
    explicit ``redetect()`` (used after a machine start) recomputes them.
    """

    kind = EngineKind.PODMAN
    supports_direct_config_edit = False

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        system: Optional[str] = None,
        uid: Optional[int] = None,
        runner: CommandRunner = run_command,
        sleep: Callable[[float], None] = time.sleep,
        ping_timeout: int = DEFAULT_PING_TIMEOUT,
    ):
        self._environ = os.environ if environ is None else environ
        self._system = system or current_system()
        self._uid = effective_uid() if uid is None else uid
        self._runner = runner
        self._sleep = sleep
        self._ping_timeout = ping_timeout
        self._socket: str = ""
        self._rootless: bool = False
        self._detected = False

    @property
    def name(self) -> str:
        mode = "rootless" if self.rootless else "rootful"
        return f"Podman ({mode})"

    @property
    def rootless(self) -> bool:
        self._ensure_detected()
        return self._rootless

    def _ensure_detected(self) -> None:
        if self._detected:
            return
        self.redetect()

    def redetect(self) -> None:
        """Recompute the cached socket/rootless pair."""
        self._socket, self._rootless = detect_podman_socket(
            self._environ, self._system, self._uid, self._runner
        )
        self._detected = True
        logger.debug("podman socket %s (rootless=%s)", self._socket, self._rootless)

    def is_available(self) -> bool:
        """Binary installed and the API socket reachable, activating it once if needed."""
        if not binary_exists("podman"):
            return False

        socket_path = self.get_socket_path()
        if not socket_path:
            return False

        if self._system == "windows" or not socket_path.startswith("unix://"):
            return self.is_service_running()

        if socket_file_exists(socket_path):
            return True
        if self._try_activate_socket():
            self._sleep(SOCKET_ACTIVATION_DELAY)
            return socket_file_exists(self.get_socket_path())
        return False

    def is_service_running(self) -> bool:
        """Ping the Podman API through the Docker-compatible endpoint."""
        try:
            client = self.get_client(timeout=self._ping_timeout)
        except RSEngineUnavailable:
            return False
        try:
            return ping_client(client)
        finally:
            client.close()

    def get_client(self, timeout: Optional[int] = None) -> DockerClient:
        """Return a Docker SDK client pointed at the Podman socket."""
        socket_path = self.get_socket_path()
        if not socket_path:
            raise RSEngineUnavailable(
                "Podman socket not found, enable it with: systemctl --user enable --now podman.socket"
            )
        kwargs = {"version": "auto"}
        if timeout:
            kwargs["timeout"] = timeout
        try:
            return docker.DockerClient(base_url=socket_path, **kwargs)
        except DockerException as e:
            raise RSEngineUnavailable(f"Failed to connect to Podman service at {socket_path}: {e}")

    def get_socket_path(self) -> str:
        self._ensure_detected()
        return self._socket

    def start_service(self) -> None:
        """Start the Podman API socket (or the Podman machine)."""
        if self._system == "linux":
            if self.rootless:
                try:
                    run_service_command(["systemctl", "--user", "start", "podman.socket"])
                except RSEngineError:
                    print_info("Starting Podman API service directly...")
                    subprocess.Popen(
                        ["podman", "system", "service", "--time=0"],
                        stdin=subprocess.DEVNULL,
                        stdout=subprocess.DEVNULL,
                        stderr=subprocess.DEVNULL,
                        start_new_session=True,
                    )
                return
            run_service_command(["sudo", "systemctl", "start", "podman.socket"])
        elif self._system in ("darwin", "windows"):
            run_service_command(["podman", "machine", "start"])
            self.redetect()
        else:
            raise RSUnsupportedPlatform(f"Unsupported operating system: {self._system}")

    def restart_service(self) -> None:
        """Restart the Podman API socket (or the Podman machine)."""
        if self._system == "linux":
            if self.rootless:
                try:
                    run_service_command(["systemctl", "--user", "restart", "podman.socket"])
                except RSEngineError:
                    run_service_command(["systemctl", "--user", "restart", "podman.service"])
                return
            run_service_command(["sudo", "systemctl", "restart", "podman.socket"])
        elif self._system in ("darwin", "windows"):
            try:
                run_service_command(["podman", "machine", "stop"])
            except RSEngineError as e:
                logger.debug("podman machine stop: %s", e)
            self._sleep(MACHINE_RESTART_DELAY)
            run_service_command(["podman", "machine", "start"])
            self.redetect()
        else:
            raise RSUnsupportedPlatform(f"Unsupported operating system: {self._system}")

    def host_config_path(self, container_id: str) -> str:
        """Podman's userdata/config.json; read-only, editing it has no effect."""
        path = os.path.join(self.storage_root(), "overlay-containers", container_id, "userdata", "config.json")
        if not os.path.exists(path):
            raise RSEngineError(
                f"Podman container config not found: {path}\n"
                "  Podman does not support direct config editing, recreate the container instead."
            )
        return path

    def config_v2_path(self, container_id: str) -> str:
        """The OCI spec file, falling back to config.json."""
        spec_path = os.path.join(self.storage_root(), "overlay-containers", container_id, "userdata", "spec")
        if os.path.exists(spec_path):
            return spec_path
        return self.host_config_path(container_id)

    def storage_root(self) -> str:
        root = self._query_storage_root()
        if root:
            return root
        if self.rootless:
            home = self._environ.get("HOME") or os.path.expanduser("~")
            return os.path.join(home, ".local", "share", "containers", "storage")
        return "/var/lib/containers/storage"

    def _query_storage_root(self) -> str:
        """GraphRoot from the libpod API, then from the CLI."""
        socket_path = self.get_socket_path()
        if socket_path.startswith("unix://"):
            try:
                with PodmanClient(base_url=socket_path, timeout=self._ping_timeout) as client:
                    root = client.info().get("store", {}).get("graphRoot", "")
                if root:
                    return root
            except (PodmanError, RequestException, OSError, ValueError) as e:
                logger.debug("podman info via API failed: %s", e)

        out = self._runner(["podman", "info", "--format", "{{.Store.GraphRoot}}"])
        return out.strip() if out else ""

    def _try_activate_socket(self) -> bool:
        """One-shot activation: the systemd socket unit, or the Podman machine."""
        if self._system == "linux":
            if self.rootless:
                return self._runner(["systemctl", "--user", "start", "podman.socket"]) is not None
            return self._runner(["sudo", "systemctl", "start", "podman.socket"]) is not None

        if self._system in ("darwin", "windows"):
            if is_podman_machine_running(self._runner):
                return False
            print_info("Starting Podman machine...")
            try:
                run_service_command(["podman", "machine", "start"])
            except RSEngineError as e:
                logger.debug("podman machine start: %s", e)
                return False
            self._sleep(MACHINE_START_DELAY)
            self.redetect()
            return True
        return False

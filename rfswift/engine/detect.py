"""Endpoint discovery for the Docker and Podman engines.

Every function takes the environment, platform and uid as optional arguments so
detection can be exercised without touching the real process state. The only
state kept between calls lives in the engine objects that cache the result.
"""

from __future__ import annotations

import json
import logging
import os
import platform
import shutil
import stat
import subprocess
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Tuple

from docker.errors import DockerException
from requests.exceptions import RequestException

logger = logging.getLogger(__name__)

DOCKER_DEFAULT_SOCKET = "unix:///var/run/docker.sock"
DOCKER_WINDOWS_PIPE = "npipe:////./pipe/docker_engine"
PODMAN_WINDOWS_PIPE = "npipe:////./pipe/podman-machine-default"
PODMAN_ROOTFUL_SOCKETS = ("/run/podman/podman.sock", "/var/run/podman/podman.sock")

CommandRunner = Callable[[List[str]], Optional[str]]


def run_command(args: List[str], timeout: float = 10) -> Optional[str]:
    """Run a helper command and return its stdout, or None if it failed."""
    try:
        proc = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=True,
            timeout=timeout,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        logger.debug("%s failed: %s", " ".join(args), e)
        return None
    return proc.stdout.decode("utf-8", errors="ignore")


def current_system() -> str:
    """Lower-case OS name: linux, darwin or windows."""
    return platform.system().lower()


def effective_uid() -> Optional[int]:
    """Effective uid, None where the platform has no such notion."""
    geteuid = getattr(os, "geteuid", None)
    return geteuid() if geteuid else None


def binary_exists(name: str) -> bool:
    return shutil.which(name) is not None


def strip_scheme(path: str) -> str:
    for prefix in ("unix://", "npipe://"):
        if path.startswith(prefix):
            return path[len(prefix):]
    return path


def socket_file_exists(path: str) -> bool:
    """True only if ``path`` names a socket special file, not just any file."""
    try:
        mode = os.stat(strip_scheme(path)).st_mode
    except OSError:
        return False
    return stat.S_ISSOCK(mode)


def _home(environ: Mapping[str, str]) -> str:
    return environ.get("HOME") or str(Path.home())


def docker_socket_candidates(environ: Mapping[str, str]) -> List[str]:
    home = _home(environ)
    return [
        "/var/run/docker.sock",
        os.path.join(home, ".docker", "run", "docker.sock"),
        # Colima on macOS
        os.path.join(home, ".colima", "default", "docker.sock"),
    ]


def detect_docker_socket(
    environ: Optional[Mapping[str, str]] = None,
    system: Optional[str] = None,
) -> str:
    """Resolve the Docker daemon endpoint."""
    environ = os.environ if environ is None else environ
    system = system or current_system()

    host = environ.get("DOCKER_HOST")
    if host:
        return host
    if system == "windows":
        return DOCKER_WINDOWS_PIPE
    for sock in docker_socket_candidates(environ):
        if socket_file_exists(sock):
            return "unix://" + sock
    return DOCKER_DEFAULT_SOCKET


def detect_podman_socket(
    environ: Optional[Mapping[str, str]] = None,
    system: Optional[str] = None,
    uid: Optional[int] = None,
    runner: CommandRunner = run_command,
) -> Tuple[str, bool]:
    """Resolve the Podman API endpoint.

    Returns ``(uri, rootless)``. The rootless flag decides whether the service is
    controlled with ``systemctl --user`` or system wide.
    """
    environ = os.environ if environ is None else environ
    system = system or current_system()
    if uid is None:
        uid = effective_uid()
    rootless = uid != 0

    host = environ.get("CONTAINER_HOST")
    if host:
        return host, rootless

    host = environ.get("DOCKER_HOST", "")
    if host and "podman" in host:
        return host, rootless

    if system == "linux":
        return _detect_podman_socket_linux(environ, uid)
    if system == "darwin":
        return _detect_podman_socket_darwin(environ, uid, runner)
    if system == "windows":
        return _detect_podman_pipe_windows(runner)
    return "", False


def _detect_podman_socket_linux(environ: Mapping[str, str], uid: Optional[int]) -> Tuple[str, bool]:
    if uid != 0:
        runtime_dir = environ.get("XDG_RUNTIME_DIR") or f"/run/user/{uid}"
        candidates = [
            os.path.join(runtime_dir, "podman", "podman.sock"),
            os.path.join(runtime_dir, "podman.sock"),
        ]
        for sock in candidates:
            if socket_file_exists(sock):
                return "unix://" + sock, True
        # socket activation may create it on first connection
        return "unix://" + candidates[0], True

    for sock in PODMAN_ROOTFUL_SOCKETS:
        if socket_file_exists(sock):
            return "unix://" + sock, False
    return "unix://" + PODMAN_ROOTFUL_SOCKETS[0], False


def _detect_podman_socket_darwin(
    environ: Mapping[str, str],
    uid: Optional[int],
    runner: CommandRunner,
) -> Tuple[str, bool]:
    sock = query_podman_machine_connection(runner, "PodmanSocket")
    if sock:
        return "unix://" + sock, True

    machine_dir = os.path.join(_home(environ), ".local", "share", "containers", "podman", "machine")
    candidates = [
        os.path.join(machine_dir, "podman.sock"),
        os.path.join(machine_dir, "podman-machine-default", "podman.sock"),
        os.path.join(machine_dir, "qemu", "podman.sock"),
        f"/tmp/podman-run-{uid}/podman/podman.sock",
    ]
    for candidate in candidates:
        if socket_file_exists(candidate):
            return "unix://" + candidate, True
    return "unix://" + candidates[0], True


def _detect_podman_pipe_windows(runner: CommandRunner) -> Tuple[str, bool]:
    pipe = query_podman_machine_connection(runner, "PodmanPipe")
    if pipe:
        return "npipe://" + pipe.replace("\\", "/"), True
    return PODMAN_WINDOWS_PIPE, True


def parse_machine_inspect(output: str, key: str = "PodmanSocket") -> str:
    """Extract ``ConnectionInfo.<key>.Path`` from ``podman machine inspect``.

    Newer Podman prints a list of machines, older releases a single object.
    """
    try:
        data = json.loads(output)
    except ValueError:
        return ""

    if isinstance(data, list):
        machines = data
    elif isinstance(data, dict):
        machines = [data]
    else:
        return ""

    for machine in machines:
        if not isinstance(machine, dict):
            continue
        conn = machine.get("ConnectionInfo")
        if not isinstance(conn, dict):
            continue
        endpoint = conn.get(key)
        if isinstance(endpoint, dict) and endpoint.get("Path"):
            return str(endpoint["Path"])
    return ""


def query_podman_machine_connection(runner: CommandRunner = run_command, key: str = "PodmanSocket") -> str:
    out = runner(["podman", "machine", "inspect"])
    if not out:
        return ""
    return parse_machine_inspect(out, key)


def is_podman_machine_running(runner: CommandRunner = run_command) -> bool:
    out = runner(["podman", "machine", "list", "--format", "{{.Running}}"])
    if not out:
        return False
    return any(line.strip() == "true" for line in out.splitlines())


def ping_client(client) -> bool:
    """Protocol-level health check; the client carries its own short timeout."""
    try:
        return bool(client.ping())
    except (DockerException, RequestException, OSError) as e:
        logger.debug("ping failed: %s", e)
        return False

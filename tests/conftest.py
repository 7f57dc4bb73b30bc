from __future__ import annotations

import shutil
import subprocess
from typing import Optional

import pytest

from rfswift.engine.base import Engine, EngineKind


def _runtime_is_usable(candidate: str) -> bool:
    try:
        subprocess.run([candidate, "ps"], stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=True, timeout=5)
        return True
    except (OSError, subprocess.SubprocessError):
        return False


def get_available_runtime() -> Optional[str]:
    for name in ("docker", "podman"):
        if shutil.which(name) and _runtime_is_usable(name):
            return name
    return None


def require_container_runtime() -> str:
    runtime = get_available_runtime()
    if not runtime:
        pytest.skip("Container runtime (docker/podman) not available or not running")
    return runtime


class FakeEngine(Engine):
    """Engine double whose availability is fixed at construction."""

    def __init__(self, kind: EngineKind, available: bool, socket_path: str = ""):
        self.kind = kind
        self.supports_direct_config_edit = kind is EngineKind.DOCKER
        self._available = available
        self._socket = socket_path or f"unix:///run/{kind.value}.sock"
        self.availability_checks = 0

    @property
    def name(self) -> str:
        return self.kind.value.capitalize()

    def is_available(self) -> bool:
        self.availability_checks += 1
        return self._available

    def is_service_running(self) -> bool:
        return self._available

    def get_client(self, timeout=None):
        raise NotImplementedError

    def get_socket_path(self) -> str:
        return self._socket

    def start_service(self) -> None:
        pass

    def restart_service(self) -> None:
        pass

    def host_config_path(self, container_id: str) -> str:
        return f"/fake/{container_id}/hostconfig.json"

    def config_v2_path(self, container_id: str) -> str:
        return f"/fake/{container_id}/config.v2.json"

    def storage_root(self) -> str:
        return "/fake"


@pytest.fixture()
def fake_engines():
    """Factory for (docker_factory, podman_factory, created) with fixed availability."""

    def make(docker_up: bool, podman_up: bool):
        created = []

        def docker_factory():
            engine = FakeEngine(EngineKind.DOCKER, docker_up)
            created.append(engine)
            return engine

        def podman_factory():
            engine = FakeEngine(EngineKind.PODMAN, podman_up, "unix:///run/user/1000/podman/podman.sock")
            created.append(engine)
            return engine

        return docker_factory, podman_factory, created

    return make


@pytest.fixture()
def silence_messages(monkeypatch):
    """Capture user facing status lines instead of printing them."""
    lines = []
    import rfswift.utils.messages as messages

    monkeypatch.setattr(messages.console, "print", lambda *a, **k: lines.append(" ".join(str(x) for x in a)))
    return lines


@pytest.fixture()
def container_runtime() -> str:
    return require_container_runtime()

"""Base classes for the container engine abstraction."""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, List

from rfswift.errors import RSEngineError

if TYPE_CHECKING:
    from docker import DockerClient

# Suppress Docker SDK debug logs
logging.getLogger('docker.utils.config').setLevel(logging.WARNING)


def run_service_command(args: List[str], timeout: int = 120) -> None:
    """Run a service control command, raising with its stderr on failure."""
    try:
        subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=True, timeout=timeout)
    except FileNotFoundError as e:
        raise RSEngineError(f"{args[0]} is not installed: {e}")
    except subprocess.CalledProcessError as e:
        detail = e.stderr.decode("utf-8", errors="ignore").strip() if e.stderr else ""
        raise RSEngineError(f"{' '.join(args)} failed ({e.returncode}): {detail}")
    except subprocess.TimeoutExpired:
        raise RSEngineError(f"{' '.join(args)} timed out after {timeout}s")


class EngineKind(Enum):
    """Container engine backend."""
    DOCKER = "docker"
    PODMAN = "podman"
    AUTO = "auto"

    @classmethod
    def parse(cls, value: "str | EngineKind | None") -> "EngineKind":
        """Map a flag/config/env value to a kind; unknown values mean AUTO."""
        if isinstance(value, EngineKind):
            return value
        normalized = (value or "").strip().lower()
        for kind in cls:
            if kind.value == normalized:
                return kind
        return cls.AUTO


class Engine(ABC):
    """A container engine reachable through the Docker-compatible API.

    Both backends hand out a ``docker.DockerClient``; they differ in where the
    socket lives, how the service is controlled and how containers are stored.
    """

    kind: EngineKind
    supports_direct_config_edit: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable engine name."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """True when the binary is installed and an endpoint is reachable."""
        pass

    @abstractmethod
    def is_service_running(self) -> bool:
        """Ping the engine API."""
        pass

    @abstractmethod
    def get_client(self, timeout: "int | None" = None) -> "DockerClient":
        """Return a protocol client routed to this engine's endpoint."""
        pass

    @abstractmethod
    def get_socket_path(self) -> str:
        """Endpoint URI (unix://, npipe:// or tcp://)."""
        pass

    @abstractmethod
    def start_service(self) -> None:
        """Start the engine service."""
        pass

    @abstractmethod
    def restart_service(self) -> None:
        """Restart the engine service."""
        pass

    @abstractmethod
    def host_config_path(self, container_id: str) -> str:
        """Path of the on-disk host configuration of a container."""
        pass

    @abstractmethod
    def config_v2_path(self, container_id: str) -> str:
        """Path of the on-disk container configuration."""
        pass

    @abstractmethod
    def storage_root(self) -> str:
        """Root directory of the engine's storage."""
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.kind.value}>"

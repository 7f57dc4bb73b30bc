"""Process-wide engine selection.

The selector resolves the preferred engine once and hands the same instance to
every caller. ``set_preferred`` drops the cached instance so the next
``resolve`` detects again; clients already handed out keep working against the
engine they were built for.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Callable, Dict, MutableMapping, Optional

from docker import DockerClient

from rfswift.config import Config
from rfswift.utils.messages import print_info, print_warning

from .base import Engine, EngineKind
from .docker_engine import DockerEngine
from .podman_engine import PodmanEngine

logger = logging.getLogger(__name__)

ENGINE_ENV = "RFSWIFT_ENGINE"

EngineFactory = Callable[[], Engine]


def configured_docker_engine() -> Engine:
    return DockerEngine(ping_timeout=Config().ping_timeout)


def configured_podman_engine() -> Engine:
    return PodmanEngine(ping_timeout=Config().ping_timeout)


class EngineSelector:
    """Lazily resolves one Engine per process, safe under concurrent first calls."""

    def __init__(
        self,
        docker_factory: EngineFactory = configured_docker_engine,
        podman_factory: EngineFactory = configured_podman_engine,
        environ: Optional[MutableMapping[str, str]] = None,
        preferred: "EngineKind | str" = EngineKind.AUTO,
    ):
        self._docker_factory = docker_factory
        self._podman_factory = podman_factory
        self._environ = os.environ if environ is None else environ
        self._preferred = EngineKind.parse(preferred)
        self._engine: Optional[Engine] = None
        self._lock = threading.Lock()

    @property
    def preferred(self) -> EngineKind:
        return self._preferred

    def set_preferred(self, kind: "EngineKind | str | None") -> None:
        with self._lock:
            self._preferred = EngineKind.parse(kind)
            # Reset cached engine so the next resolve() re-detects
            self._engine = None

    def resolve(self) -> Engine:
        engine = self._engine
        if engine is not None:
            return engine

        with self._lock:
            # Double-check after acquiring the lock
            if self._engine is None:
                engine = self._detect()
                self._export_podman_host(engine)
                self._engine = engine
            return self._engine

    def new_client(self, timeout: Optional[int] = None) -> DockerClient:
        return self.resolve().get_client(timeout=timeout)

    def alternative(self) -> Engine:
        """A fresh instance of the engine that was not selected."""
        if self.resolve().kind is EngineKind.DOCKER:
            return self._podman_factory()
        return self._docker_factory()

    def _effective_preference(self) -> EngineKind:
        # Environment only overrides the built-in default, never an explicit choice
        if self._preferred is not EngineKind.AUTO:
            return self._preferred
        value = self._environ.get(ENGINE_ENV, "")
        if not value:
            return EngineKind.AUTO
        kind = EngineKind.parse(value)
        if kind is EngineKind.AUTO and value.strip().lower() != EngineKind.AUTO.value:
            print_warning(f"Unknown {ENGINE_ENV} value '{value}', falling back to auto")
        return kind

    def _detect(self) -> Engine:
        preference = self._effective_preference()
        docker_engine = self._docker_factory()
        podman_engine = self._podman_factory()
        logger.debug("detecting container engine (preference=%s)", preference.value)

        if preference is EngineKind.DOCKER:
            return self._pick(docker_engine, podman_engine, "explicit")
        if preference is EngineKind.PODMAN:
            return self._pick(podman_engine, docker_engine, "explicit")

        if docker_engine.is_available():
            print_info("Container engine: Docker (auto-detected)")
            return docker_engine
        if podman_engine.is_available():
            print_info("Container engine: Podman (auto-detected)")
            return podman_engine
        print_warning("No container engine detected, defaulting to Docker")
        return docker_engine

    def _pick(self, wanted: Engine, other: Engine, reason: str) -> Engine:
        wanted_label = wanted.kind.value.capitalize()
        other_label = other.kind.value.capitalize()
        if wanted.is_available():
            print_info(f"Container engine: {wanted_label} ({reason})")
            return wanted
        print_warning(f"{wanted_label} requested but not available, trying {other_label}...")
        if other.is_available():
            print_info(f"Container engine: {other_label} (fallback)")
            return other
        print_warning("No container engine available")
        # Operations on it fail with a descriptive engine error
        return wanted

    def _export_podman_host(self, engine: Engine) -> None:
        """Point DOCKER_HOST at Podman so env-built clients reach the same socket."""
        if engine.kind is not EngineKind.PODMAN:
            return
        socket_path = engine.get_socket_path()
        if socket_path and not self._environ.get("DOCKER_HOST"):
            self._environ["DOCKER_HOST"] = socket_path
            logger.debug("DOCKER_HOST set to %s", socket_path)


_default_selector = EngineSelector()


def default_selector() -> EngineSelector:
    return _default_selector


def get_engine() -> Engine:
    return _default_selector.resolve()


def set_preferred_engine(kind: "EngineKind | str | None") -> None:
    _default_selector.set_preferred(kind)


def new_engine_client(timeout: Optional[int] = None) -> DockerClient:
    return _default_selector.new_client(timeout=timeout)


def engine_info(selector: Optional[EngineSelector] = None) -> Dict[str, Any]:
    """Status of the active engine, and of the other one when it is usable."""
    selector = selector or _default_selector
    engine = selector.resolve()
    info: Dict[str, Any] = {
        "engine": engine.name,
        "type": engine.kind.value,
        "socket": engine.get_socket_path(),
        "available": engine.is_available(),
        "running": engine.is_service_running(),
        "direct_config_edit": engine.supports_direct_config_edit,
        "storage_root": engine.storage_root(),
    }
    other = selector.alternative()
    if other.is_available():
        info["alternative"] = f"{other.name} (available, use --engine {other.kind.value})"
    return info

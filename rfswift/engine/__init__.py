"""Container engine abstraction for Docker and Podman."""

from rfswift.engine.base import Engine, EngineKind
from rfswift.engine.docker_engine import DockerEngine
from rfswift.engine.podman_engine import PodmanEngine
from rfswift.engine.selector import (
    EngineSelector,
    default_selector,
    engine_info,
    get_engine,
    new_engine_client,
    set_preferred_engine,
)

__all__ = [
    "Engine",
    "EngineKind",
    "DockerEngine",
    "PodmanEngine",
    "EngineSelector",
    "default_selector",
    "engine_info",
    "get_engine",
    "new_engine_client",
    "set_preferred_engine",
]

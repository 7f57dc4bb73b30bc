from __future__ import annotations

import pytest

from rfswift.engine import docker_engine, podman_engine
from rfswift.engine.base import EngineKind
from rfswift.engine.docker_engine import DockerEngine
from rfswift.engine.podman_engine import PodmanEngine
from rfswift.engine.selector import EngineSelector, configured_docker_engine, configured_podman_engine
from rfswift.errors import RSUnsupportedPlatform


@pytest.fixture(autouse=True)
def _quiet(silence_messages):
	return silence_messages


def test_podman_activation_rechecks_exactly_once(monkeypatch):
	commands = []
	sleeps = []
	checks = []

	def runner(args):
		commands.append(args)
		return ""

	def socket_exists(path):
		checks.append(path)
		return False

	monkeypatch.setattr(podman_engine, "binary_exists", lambda name: True)
	monkeypatch.setattr(podman_engine, "socket_file_exists", socket_exists)
	engine = PodmanEngine(environ={"XDG_RUNTIME_DIR": "/nonexistent"}, system="linux", uid=1000, runner=runner, sleep=sleeps.append)

	assert engine.is_available() is False
	assert commands == [["systemctl", "--user", "start", "podman.socket"]]
	assert sleeps == [podman_engine.SOCKET_ACTIVATION_DELAY]
	assert len(checks) == 2


def test_podman_socket_appears_after_activation(monkeypatch):
	present = iter([False, True])
	monkeypatch.setattr(podman_engine, "binary_exists", lambda name: True)
	monkeypatch.setattr(podman_engine, "socket_file_exists", lambda path: next(present))
	engine = PodmanEngine(environ={"XDG_RUNTIME_DIR": "/nonexistent"}, system="linux", uid=0, runner=lambda args: "", sleep=lambda s: None)
	assert engine.is_available() is True
	assert not engine.rootless
	assert engine.name == "Podman (rootful)"


def test_podman_without_binary(monkeypatch):
	monkeypatch.setattr(podman_engine, "binary_exists", lambda name: False)
	assert PodmanEngine(environ={}, system="linux", uid=1000).is_available() is False


def test_podman_capabilities():
	engine = PodmanEngine(environ={"XDG_RUNTIME_DIR": "/nonexistent"}, system="linux", uid=1000, runner=lambda args: None)
	assert engine.kind is EngineKind.PODMAN
	assert engine.supports_direct_config_edit is False
	assert engine.get_socket_path() == "unix:///nonexistent/podman/podman.sock"


def test_podman_storage_root_falls_back_to_convention(monkeypatch):
	engine = PodmanEngine(environ={"XDG_RUNTIME_DIR": "/nonexistent", "HOME": "/home/op"}, system="linux", uid=1000, runner=lambda args: None)
	monkeypatch.setattr(engine, "_query_storage_root", lambda: "")
	assert engine.storage_root() == "/home/op/.local/share/containers/storage"


def test_podman_storage_root_from_cli(monkeypatch):
	engine = PodmanEngine(environ={"CONTAINER_HOST": "tcp://127.0.0.1:8888"}, system="linux", uid=1000, runner=lambda args: "/data/storage\n")
	assert engine.storage_root() == "/data/storage"


def test_docker_trusts_docker_host(monkeypatch):
	monkeypatch.setattr(docker_engine, "binary_exists", lambda name: True)
	monkeypatch.setattr(docker_engine, "socket_file_exists", lambda path: False)
	assert DockerEngine(environ={"DOCKER_HOST": "tcp://10.0.0.1:2375"}, system="linux").is_available()
	assert not DockerEngine(environ={"HOME": "/nonexistent"}, system="linux").is_available()


def test_docker_capabilities():
	engine = DockerEngine(environ={}, system="linux")
	assert engine.kind is EngineKind.DOCKER
	assert engine.supports_direct_config_edit is True
	assert engine.name == "Docker"


def test_unsupported_platform_service_control():
	with pytest.raises(RSUnsupportedPlatform):
		DockerEngine(environ={}, system="plan9").start_service()
	with pytest.raises(RSUnsupportedPlatform):
		PodmanEngine(environ={}, system="plan9", uid=1000, runner=lambda args: None).restart_service()


def test_ping_timeout_comes_from_environment(monkeypatch):
	monkeypatch.setenv("RFSWIFT_PING_TIMEOUT", "7")
	assert configured_docker_engine()._ping_timeout == 7
	assert configured_podman_engine()._ping_timeout == 7

	monkeypatch.delenv("RFSWIFT_PING_TIMEOUT")
	assert configured_docker_engine()._ping_timeout == 3


def test_default_selector_uses_configured_engines(monkeypatch):
	monkeypatch.setenv("RFSWIFT_PING_TIMEOUT", "5")
	selector = EngineSelector(environ={})
	assert selector._docker_factory()._ping_timeout == 5
	assert selector._podman_factory()._ping_timeout == 5

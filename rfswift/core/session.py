"""Interactive container sessions.

A session bridges the local terminal and the primary process of a container,
either the init process (``run``/``attach``) or an exec instance (``exec``).
Three daemon threads do the work: input is copied to the remote socket, remote
output is copied to stdout/stderr, and the remote exit is awaited. Whichever of
output completion or exit comes first ends the session. The local terminal is
restored and the input reader stopped on every path out.
"""

from __future__ import annotations

import logging
import socket
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, Optional, Set

from docker import DockerClient
from docker.api import APIClient
from docker.errors import APIError, DockerException, ImageNotFound
from docker.utils.socket import STDERR, frames_iter
from requests.exceptions import RequestException

from rfswift.config import SessionConfig
from rfswift.core.operations import container_call, explain, image_tags, latest_container_id
from rfswift.core.resize import ResizePropagator, watch_resizes
from rfswift.core.terminal import LocalTerminal
from rfswift.engine.selector import new_engine_client
from rfswift.errors import RSEngineError, RSImageNotFound, RSSessionError
from rfswift.utils.messages import print_info, print_success

logger = logging.getLogger(__name__)

ATTACH_PARAMS = {"stdin": 1, "stdout": 1, "stderr": 1, "stream": 1}
INPUT_CHUNK = 4096
INPUT_POLL_INTERVAL = 0.1


class SessionState(Enum):
	CREATED = "created"
	STARTED = "started"
	ATTACHED = "attached"
	EXITED = "exited"


@dataclass
class Session:
	container_id: str
	exec_id: Optional[str] = None
	state: SessionState = SessionState.CREATED
	exit_code: Optional[int] = None


# containers with an attached session from this process
_attached: Set[str] = set()
_attached_lock = threading.Lock()


@contextmanager
def _exclusive(container_id: str) -> Iterator[None]:
	with _attached_lock:
		if container_id in _attached:
			raise RSSessionError(f"A session is already attached to container {container_id[:12]}")
		_attached.add(container_id)
	try:
		yield
	finally:
		with _attached_lock:
			_attached.discard(container_id)


def _raw_socket(sock):
	# attach/exec sockets come back wrapped in SocketIO
	return getattr(sock, "_sock", sock)


def _close_socket(sock) -> None:
	# shutdown wakes a pump still blocked reading the socket
	try:
		_raw_socket(sock).shutdown(socket.SHUT_RDWR)
	except OSError as e:
		logger.debug("shutting down session socket: %s", e)
	try:
		sock.close()
	except OSError as e:
		logger.debug("closing session socket: %s", e)


class SessionManager:
	def __init__(self, client_factory: Optional[Callable[[], DockerClient]] = None, terminal: Optional[LocalTerminal] = None):
		self._client_factory = client_factory or new_engine_client
		self.terminal = terminal or LocalTerminal()

	@contextmanager
	def _client(self) -> Iterator[DockerClient]:
		client = self._client_factory()
		try:
			yield client
		finally:
			client.close()

	def run(self, config: SessionConfig) -> Session:
		"""Create a container from ``config``, start it and bridge its init process."""
		with self._client() as client:
			api = client.api
			session = Session(self._create(api, config))
			print_info(f"Container {session.container_id[:12]} created from {config.image}")

			with _exclusive(session.container_id):
				with container_call(api, session.container_id, "attach to container"):
					sock = api.attach_socket(session.container_id, params=ATTACH_PARAMS)
				try:
					with container_call(api, session.container_id, "start container"):
						api.start(session.container_id)
					session.state = SessionState.STARTED
					self._bridge(
						session,
						sock,
						config.tty,
						resize=lambda cols, rows: api.resize(session.container_id, height=rows, width=cols),
						wait=lambda: self._wait_container(api, session.container_id),
					)
				finally:
					_close_socket(sock)
		return session

	def exec(self, container_id: Optional[str] = None, config: Optional[SessionConfig] = None, workdir: Optional[str] = None) -> Session:
		"""Run ``config.shell`` inside an existing container.

		Without ``container_id`` the most recently created project container is used.
		"""
		config = config or SessionConfig()
		with self._client() as client:
			api = client.api
			if not container_id:
				container_id = latest_container_id(api)
				print_info(f"Using latest container {container_id[:12]}")

			with container_call(api, container_id, "start container"):
				api.start(container_id)
			with container_call(api, container_id, "create exec instance in"):
				exec_id = api.exec_create(
					container_id,
					config.command(),
					stdin=True,
					stdout=True,
					stderr=True,
					tty=config.tty,
					privileged=config.privileged,
					workdir=workdir or config.workdir,
				)["Id"]
			session = Session(container_id, exec_id=exec_id, state=SessionState.STARTED)

			with _exclusive(exec_id):
				with container_call(api, container_id, "start exec instance in"):
					sock = api.exec_start(exec_id, tty=config.tty, socket=True)
				try:
					self._bridge(
						session,
						sock,
						config.tty,
						resize=lambda cols, rows: api.exec_resize(exec_id, height=rows, width=cols),
						wait=lambda: self._wait_container(api, container_id),
					)
				finally:
					_close_socket(sock)
				session.exit_code = self._exec_exit_code(api, exec_id)
		return session

	def attach(self, container_id: Optional[str] = None) -> Session:
		"""Bridge the init process of an existing container, starting it if needed."""
		with self._client() as client:
			api = client.api
			if not container_id:
				container_id = latest_container_id(api)
				print_info(f"Using latest container {container_id[:12]}")

			with container_call(api, container_id, "inspect container"):
				info = api.inspect_container(container_id)
			tty = bool(info.get("Config", {}).get("Tty"))
			running = bool(info.get("State", {}).get("Running"))
			session = Session(container_id, state=SessionState.STARTED if running else SessionState.CREATED)

			with _exclusive(container_id):
				with container_call(api, container_id, "attach to container"):
					sock = api.attach_socket(container_id, params=ATTACH_PARAMS)
				try:
					if not running:
						with container_call(api, container_id, "start container"):
							api.start(container_id)
						session.state = SessionState.STARTED
					self._bridge(
						session,
						sock,
						tty,
						resize=lambda cols, rows: api.resize(container_id, height=rows, width=cols),
						wait=lambda: self._wait_container(api, container_id),
					)
				finally:
					_close_socket(sock)
		return session

	def _create(self, api: APIClient, config: SessionConfig) -> str:
		try:
			host_config = api.create_host_config(
				binds=config.bindings(),
				network_mode=config.network_mode,
				privileged=config.privileged,
				extra_hosts=config.extra_host_list() or None,
			)
			# detach keeps StdinOnce off so stdin survives a detach/re-attach
			created = api.create_container(
				config.image,
				command=config.command(),
				detach=True,
				stdin_open=True,
				tty=config.tty,
				environment=config.environment(),
				labels=dict(config.labels),
				working_dir=config.workdir,
				host_config=host_config,
			)
		except ImageNotFound as e:
			raise RSImageNotFound(f"Image {config.image} not found: {explain(e)}", found=image_tags(api))
		except (APIError, DockerException, RequestException) as e:
			raise RSEngineError(f"Failed to create container from {config.image}: {explain(e)}")
		for warning in created.get("Warnings") or []:
			logger.warning("create: %s", warning)
		return created["Id"]

	@staticmethod
	def _wait_container(api: APIClient, container_id: str) -> Optional[int]:
		# no client timeout, the remote process may run for hours
		result = api.wait(container_id, timeout=None)
		return result.get("StatusCode")

	@staticmethod
	def _exec_exit_code(api: APIClient, exec_id: str) -> Optional[int]:
		try:
			return api.exec_inspect(exec_id).get("ExitCode")
		except (APIError, DockerException, RequestException) as e:
			logger.debug("exec inspect %s: %s", exec_id, e)
			return None

	def _bridge(
		self,
		session: Session,
		sock,
		tty: bool,
		resize: Callable[[int, int], None],
		wait: Callable[[], Optional[int]],
	) -> None:
		finished = threading.Event()
		stop_input = threading.Event()
		input_pump: Optional[threading.Thread] = None
		outcome: Dict[str, Optional[int]] = {}
		interactive = self.terminal.is_interactive()
		session.state = SessionState.ATTACHED
		try:
			with ExitStack() as stack:
				if interactive:
					stack.enter_context(self.terminal.raw_mode())
					if tty:
						propagator = ResizePropagator(lambda cols, rows: self._safe_resize(resize, cols, rows))
						propagator.propagate(self.terminal.size(), force=True)
						source = self.terminal.resize_source()
						source.start()
						stack.callback(source.close)
						threading.Thread(target=watch_resizes, args=(source, propagator), name="rfswift-resize", daemon=True).start()

				threading.Thread(target=self._pump_output, args=(sock, tty, finished), name="rfswift-output", daemon=True).start()
				threading.Thread(target=self._wait_exit, args=(session, wait, outcome, finished), name="rfswift-wait", daemon=True).start()
				input_pump = threading.Thread(target=self._pump_input, args=(sock, stop_input), name="rfswift-input", daemon=True)
				input_pump.start()
				finished.wait()
			session.exit_code = outcome.get("exit_code")
		finally:
			# the next session on this terminal must not lose input to a stale reader
			stop_input.set()
			if input_pump is not None:
				input_pump.join(timeout=INPUT_POLL_INTERVAL * 4)
			session.state = SessionState.EXITED
			print_success(f"Session ended for container {session.container_id[:12]}")

	def _pump_output(self, sock, tty: bool, finished: threading.Event) -> None:
		try:
			for stream, data in frames_iter(sock, tty):
				if stream == STDERR:
					self.terminal.write_error(data)
				else:
					self.terminal.write_output(data)
		except (OSError, ValueError) as e:
			logger.debug("output stream closed: %s", e)
		finally:
			finished.set()

	def _pump_input(self, sock, stop: threading.Event) -> None:
		raw = _raw_socket(sock)
		try:
			while not stop.is_set():
				if not self.terminal.input_ready(INPUT_POLL_INTERVAL):
					continue
				data = self.terminal.read_input(INPUT_CHUNK)
				if not data:
					raw.shutdown(socket.SHUT_WR)
					return
				raw.sendall(data)
		except (OSError, ValueError) as e:
			logger.debug("input stream closed: %s", e)

	@staticmethod
	def _wait_exit(session: Session, wait: Callable[[], Optional[int]], outcome: Dict[str, Optional[int]], finished: threading.Event) -> None:
		try:
			outcome["exit_code"] = wait()
		except (APIError, DockerException, RequestException) as e:
			logger.debug("wait for %s: %s", session.container_id[:12], e)
		finally:
			finished.set()

	@staticmethod
	def _safe_resize(resize: Callable[[int, int], None], cols: int, rows: int) -> None:
		try:
			resize(cols, rows)
		except (APIError, DockerException, RequestException) as e:
			logger.debug("resize to %sx%s failed: %s", cols, rows, e)

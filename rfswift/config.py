from __future__ import annotations

import os
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_IMAGE = "myrfswift:latest"
DEFAULT_SHELL = "/bin/bash"
DEFAULT_ENGINE = "auto"  # or "docker" / "podman"
DEFAULT_PING_TIMEOUT = 3
DEFAULT_HUB_URL = "https://hub.docker.com/v2/repositories"
PROJECT_LABEL_KEY = "org.container.project"
PROJECT_LABEL_VALUE = "rfswift"
OFFICIAL_REPOS = ("penthertz/rfswift_noble",)


def _split_csv(value: Optional[str]) -> List[str]:
	if not value:
		return []
	return [part for part in value.split(",") if part]


class Config(BaseModel):
	engine: str = Field(default=DEFAULT_ENGINE, description="docker|podman|auto")
	image: str = Field(default=os.getenv("RFSWIFT_IMAGE", DEFAULT_IMAGE))
	shell: str = Field(default=os.getenv("RFSWIFT_SHELL", DEFAULT_SHELL))
	ping_timeout: int = Field(default_factory=lambda: int(os.getenv("RFSWIFT_PING_TIMEOUT", DEFAULT_PING_TIMEOUT)))
	hub_url: str = Field(default=os.getenv("RFSWIFT_HUB_URL", DEFAULT_HUB_URL))


class SessionConfig(BaseModel):
	model_config = ConfigDict(frozen=True)

	image: str = Field(default=DEFAULT_IMAGE)
	shell: str = Field(default=DEFAULT_SHELL, description="Command line, split on whitespace")
	workdir: Optional[str] = Field(default=None)
	network_mode: str = Field(default="host")
	privileged: bool = Field(default=True)
	x11_forward: str = Field(default="/tmp/.X11-unix:/tmp/.X11-unix")
	usb_forward: str = Field(default="/dev/bus/usb:/dev/bus/usb")
	extra_bindings: str = Field(default="", description="Comma separated host:container bindings")
	xdisplay: str = Field(default="DISPLAY=:0")
	pulse_server: str = Field(default="tcp:localhost:34567")
	extra_env: str = Field(default="", description="Comma separated KEY=VALUE pairs")
	extra_hosts: str = Field(default="", description="Comma separated host:ip entries")
	labels: Dict[str, str] = Field(default_factory=lambda: {PROJECT_LABEL_KEY: PROJECT_LABEL_VALUE})
	tty: bool = Field(default=True)

	def bindings(self) -> List[str]:
		return _split_csv(self.x11_forward) + _split_csv(self.usb_forward) + _split_csv(self.extra_bindings)

	def environment(self) -> List[str]:
		env = _split_csv(self.xdisplay)
		if self.pulse_server:
			env.append(f"PULSE_SERVER={self.pulse_server}")
		return env + _split_csv(self.extra_env)

	def extra_host_list(self) -> List[str]:
		return _split_csv(self.extra_hosts)

	def command(self) -> List[str]:
		return self.shell.split()

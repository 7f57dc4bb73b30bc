from __future__ import annotations

import pytest
from pydantic import ValidationError

from rfswift.config import PROJECT_LABEL_KEY, SessionConfig


def test_bindings_order():
	config = SessionConfig(x11_forward="a", usb_forward="b,c", extra_bindings="d,e")
	assert config.bindings() == ["a", "b", "c", "d", "e"]


def test_bindings_without_extra():
	config = SessionConfig(x11_forward="a", usb_forward="b,c", extra_bindings="")
	assert config.bindings() == ["a", "b", "c"]


def test_bindings_drop_empty_segments():
	config = SessionConfig(x11_forward="a,", usb_forward="", extra_bindings=",,d")
	assert config.bindings() == ["a", "d"]


def test_environment_and_command():
	config = SessionConfig(shell="/bin/bash -l", xdisplay="DISPLAY=:1", pulse_server="tcp:host:1", extra_env="A=1,B=2")
	assert config.environment() == ["DISPLAY=:1", "PULSE_SERVER=tcp:host:1", "A=1", "B=2"]
	assert config.command() == ["/bin/bash", "-l"]


def test_default_label():
	assert SessionConfig().labels == {PROJECT_LABEL_KEY: "rfswift"}


def test_session_config_is_frozen():
	config = SessionConfig()
	with pytest.raises(ValidationError):
		config.image = "other:latest"

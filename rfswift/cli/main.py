from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Optional

import typer
from docker.utils import parse_repository_tag
from rich import print
from rich.logging import RichHandler

from rfswift.config import Config, SessionConfig
from rfswift.core import operations
from rfswift.core.freshness import HubClient, ImageFreshnessChecker, is_official_image
from rfswift.core.session import SessionManager
from rfswift.engine.selector import engine_info, set_preferred_engine
from rfswift.errors import RSError
from rfswift.utils.messages import console, print_error


app = typer.Typer(name="rfswift", help="RF Swift container launcher")
images_app = typer.Typer(name="images", help="Local image management")

app.add_typer(images_app, name="images")


@contextmanager
def _reported():
	try:
		yield
	except RSError as e:
		print_error(str(e))
		raise typer.Exit(code=1)


@app.callback()
def main(
	engine: Optional[str] = typer.Option(None, "--engine", "-e", help="docker|podman|auto"),
	verbose: bool = typer.Option(False, "--verbose", "-v"),
):
	logging.basicConfig(
		level=logging.DEBUG if verbose else logging.WARNING,
		format="%(message)s",
		handlers=[RichHandler(console=console, show_path=False)],
	)
	set_preferred_engine(engine or Config().engine)


@app.command("run")
def run(
	image: Optional[str] = typer.Option(None, "--image", "-i"),
	shell: Optional[str] = typer.Option(None, "--shell", "-s"),
	workdir: Optional[str] = typer.Option(None, "--workdir", "-w"),
	network: str = typer.Option("host", "--network", "-t"),
	privileged: bool = typer.Option(True, "--privileged/--no-privileged"),
	x11: str = typer.Option("/tmp/.X11-unix:/tmp/.X11-unix", "--x11"),
	usb: str = typer.Option("/dev/bus/usb:/dev/bus/usb", "--usb"),
	bind: str = typer.Option("", "--bind", "-b", help="Comma separated host:container bindings"),
	display: str = typer.Option("DISPLAY=:0", "--display", "-d"),
	pulse: str = typer.Option("tcp:localhost:34567", "--pulse", "-p"),
	env: str = typer.Option("", "--env", help="Comma separated KEY=VALUE pairs"),
	hosts: str = typer.Option("", "--hosts", help="Comma separated host:ip entries"),
):
	cfg = Config()
	config = SessionConfig(
		image=image or cfg.image,
		shell=shell or cfg.shell,
		workdir=workdir,
		network_mode=network,
		privileged=privileged,
		x11_forward=x11,
		usb_forward=usb,
		extra_bindings=bind,
		xdisplay=display,
		pulse_server=pulse,
		extra_env=env,
		extra_hosts=hosts,
	)
	with _reported():
		session = SessionManager().run(config)
	print({"id": session.container_id, "exit_code": session.exit_code})


@app.command("exec")
def exec_(
	container: Optional[str] = typer.Option(None, "--container", "-c", help="Defaults to the latest container"),
	shell: Optional[str] = typer.Option(None, "--shell", "-s"),
	workdir: Optional[str] = typer.Option(None, "--workdir", "-w"),
	privileged: bool = typer.Option(True, "--privileged/--no-privileged"),
):
	config = SessionConfig(shell=shell or Config().shell, privileged=privileged)
	with _reported():
		session = SessionManager().exec(container, config, workdir=workdir)
	print({"id": session.container_id, "exec_id": session.exec_id, "exit_code": session.exit_code})


@app.command("attach")
def attach(container: Optional[str] = typer.Option(None, "--container", "-c")):
	with _reported():
		session = SessionManager().attach(container)
	print({"id": session.container_id, "exit_code": session.exit_code})


@app.command("last")
def last(image_filter: str = typer.Option("", "--filter", "-f"), limit: int = typer.Option(10, "--limit", "-n")):
	with _reported():
		containers = operations.last_containers(image_filter, limit=limit)
	print([
		{"id": c.id[:12], "names": c.names, "image": c.image, "command": c.command, "state": c.state, "created": c.created_at.isoformat() if c.created_at else None}
		for c in containers
	])


@app.command("commit")
def commit(container: str, image: str):
	with _reported():
		image_id = operations.commit(container, image)
	print({"image": image, "id": image_id})


@app.command("stop")
def stop(container: str, timeout: int = typer.Option(10)):
	with _reported():
		operations.stop_container(container, timeout=timeout)
	print({"ok": True})


@app.command("pull")
def pull(image: str, tag: Optional[str] = typer.Option(None, "--tag", "-t", help="Local name for the pulled image")):
	with _reported():
		operations.pull(image, tag)
	print({"ok": True})


@app.command("retag")
def retag(image: str, new_tag: str):
	with _reported():
		operations.retag(image, new_tag)
	print({"ok": True})


@app.command("rename")
def rename(container: str, name: str):
	with _reported():
		operations.rename_container(container, name)
	print({"ok": True})


@app.command("remove")
def remove(container: str):
	with _reported():
		operations.remove_container(container)
	print({"ok": True})


@app.command("engine")
def engine():
	with _reported():
		print(engine_info())


@images_app.command("local")
def images_local(check: bool = typer.Option(False, "--check", help="Compare official images with the registry")):
	with _reported():
		images = operations.list_images()
	checker = ImageFreshnessChecker(hub=HubClient(base_url=Config().hub_url)) if check else None
	rows = []
	for image in images:
		for ref in image.repo_tags:
			row = {"image": ref, "id": image.id[:19], "created": image.created_at.isoformat() if image.created_at else None, "size": image.size}
			if checker and is_official_image(ref):
				repo, tag = parse_repository_tag(ref)
				row["status"] = checker.status(repo, tag or "latest").status.value
			rows.append(row)
	print(rows)


@images_app.command("delete")
def images_delete(image: str):
	with _reported():
		operations.delete_image(image)
	print({"ok": True})


@images_app.command("status")
def images_status(image: str):
	repo, tag = parse_repository_tag(image)
	if repo.startswith("docker.io/"):
		repo = repo[len("docker.io/"):]
	result = ImageFreshnessChecker(hub=HubClient(base_url=Config().hub_url)).status(repo, tag or "latest")
	print({
		"image": image,
		"status": result.status.value,
		"local_created": result.local_created.isoformat() if result.local_created else None,
		"remote_pushed": result.remote_pushed.isoformat() if result.remote_pushed else None,
		"error": result.error,
	})


if __name__ == "__main__":
	app()

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, List, Optional

from docker import DockerClient
from docker.api import APIClient
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.utils import parse_repository_tag
from requests.exceptions import RequestException

from rfswift.config import PROJECT_LABEL_KEY, PROJECT_LABEL_VALUE
from rfswift.engine.selector import new_engine_client
from rfswift.errors import RSContainerNotFound, RSEngineError, RSImageNotFound
from rfswift.types import ContainerSummary, ImageSummary
from rfswift.utils.messages import print_info, print_success, print_warning
from rfswift.utils.timestamps import parse_engine_timestamp


def explain(e: Exception) -> str:
	return getattr(e, "explanation", None) or str(e)


@contextmanager
def engine_client(client: Optional[DockerClient] = None) -> Iterator[DockerClient]:
	"""Use ``client`` as given, or open a short-lived one on the active engine."""
	if client is not None:
		yield client
		return
	client = new_engine_client()
	try:
		yield client
	finally:
		client.close()


def label_filter(label_key: str = PROJECT_LABEL_KEY, label_value: str = PROJECT_LABEL_VALUE) -> str:
	return f"{label_key}={label_value}"


def _summary(raw: dict) -> ContainerSummary:
	return ContainerSummary(
		id=raw["Id"],
		image=raw.get("Image", ""),
		command=raw.get("Command", ""),
		created_at=parse_engine_timestamp(raw.get("Created", 0)),
		state=raw.get("State", ""),
		names=[name.lstrip("/") for name in raw.get("Names") or []],
	)


def list_labelled_containers(
	api: APIClient,
	image_filter: str = "",
	limit: Optional[int] = None,
	label_key: str = PROJECT_LABEL_KEY,
	label_value: str = PROJECT_LABEL_VALUE,
) -> List[ContainerSummary]:
	filters = {"label": label_filter(label_key, label_value)}
	if image_filter:
		filters["ancestor"] = image_filter
	try:
		raw = api.containers(all=True, limit=limit or -1, filters=filters)
	except (APIError, DockerException, RequestException) as e:
		raise RSEngineError(f"Failed to list containers: {explain(e)}")
	return [_summary(c) for c in raw]


def latest_container_id(
	api: APIClient,
	label_key: str = PROJECT_LABEL_KEY,
	label_value: str = PROJECT_LABEL_VALUE,
) -> str:
	"""ID of the most recently created container carrying the project label."""
	try:
		containers = api.containers(all=True, filters={"label": label_filter(label_key, label_value)})
	except (APIError, DockerException, RequestException) as e:
		raise RSEngineError(f"Failed to list containers: {explain(e)}")
	if not containers:
		raise RSContainerNotFound(f"No container found with label {label_filter(label_key, label_value)}")
	latest = max(containers, key=lambda c: c.get("Created", 0))
	return latest["Id"]


def _container_not_found(api: APIClient, container_id: str, error: Exception) -> RSContainerNotFound:
	try:
		found = [f"{c.id[:12]} {','.join(c.names)} ({c.image})" for c in list_labelled_containers(api)]
	except RSEngineError:
		found = []
	message = f"Container {container_id} not found: {explain(error)}"
	if found:
		message += "\nAvailable containers:\n  " + "\n  ".join(found)
	return RSContainerNotFound(message, found=found)


@contextmanager
def container_call(api: APIClient, container_id: str, action: str) -> Iterator[None]:
	try:
		yield
	except NotFound as e:
		raise _container_not_found(api, container_id, e)
	except (APIError, DockerException, RequestException) as e:
		raise RSEngineError(f"Failed to {action} {container_id}: {explain(e)}")


def last_containers(image_filter: str = "", limit: int = 10, client: Optional[DockerClient] = None) -> List[ContainerSummary]:
	with engine_client(client) as cli:
		return list_labelled_containers(cli.api, image_filter=image_filter, limit=limit)


def commit(container_id: str, image: str, client: Optional[DockerClient] = None) -> str:
	repository, tag = parse_repository_tag(image)
	with engine_client(client) as cli:
		with container_call(cli.api, container_id, "commit container"):
			cli.api.start(container_id)
			result = cli.api.commit(container_id, repository=repository, tag=tag)
	image_id = result.get("Id", "")
	print_success(f"Container {container_id[:12]} committed as {image} ({image_id})")
	return image_id


def pull(image_ref: str, tag_target: Optional[str] = None, client: Optional[DockerClient] = None) -> None:
	"""Pull ``image_ref`` and optionally tag it as ``tag_target``."""
	repository, tag = parse_repository_tag(image_ref)
	with engine_client(client) as cli:
		try:
			for line in cli.api.pull(repository, tag=tag or "latest", stream=True, decode=True):
				if "error" in line:
					raise RSEngineError(f"Failed to pull image {image_ref}: {line['error']}")
				status = line.get("status", "")
				progress = line.get("progress", "")
				if progress:
					print_info(f"{status}: {progress}")
				elif status and status not in ("Pulling fs layer", "Waiting", "Download complete"):
					print_info(status)
		except ImageNotFound as e:
			raise RSImageNotFound(f"Image {image_ref} not found: {explain(e)}")
		except (APIError, DockerException, RequestException) as e:
			raise RSEngineError(f"Failed to pull image {image_ref}: {explain(e)}")

		if tag_target and tag_target != image_ref:
			retag(image_ref, tag_target, client=cli)
	print_success(f"Image {image_ref} pulled")


def retag(image: str, new_ref: str, client: Optional[DockerClient] = None) -> None:
	repository, tag = parse_repository_tag(new_ref)
	with engine_client(client) as cli:
		try:
			cli.api.tag(image, repository, tag=tag)
		except NotFound as e:
			raise RSImageNotFound(f"Image {image} not found: {explain(e)}", found=image_tags(cli.api))
		except (APIError, DockerException, RequestException) as e:
			raise RSEngineError(f"Failed to tag image {image}: {explain(e)}")
	print_success(f"Image {image} tagged as {new_ref}")


def rename_container(container_id: str, new_name: str, client: Optional[DockerClient] = None) -> None:
	with engine_client(client) as cli:
		with container_call(cli.api, container_id, "rename container"):
			cli.api.rename(container_id, new_name)
	print_success(f"Container {container_id} renamed to {new_name}")


def stop_container(container_id: str, timeout: int = 10, client: Optional[DockerClient] = None) -> None:
	with engine_client(client) as cli:
		with container_call(cli.api, container_id, "stop container"):
			cli.api.stop(container_id, timeout=timeout)
	print_success(f"Container {container_id} stopped")


def remove_container(container_id: str, client: Optional[DockerClient] = None) -> None:
	with engine_client(client) as cli:
		with container_call(cli.api, container_id, "remove container"):
			cli.api.remove_container(container_id, force=True)
	print_success(f"Container {container_id} removed")


def image_tags(api: APIClient) -> List[str]:
	try:
		return [tag for image in api.images() for tag in image.get("RepoTags") or []]
	except (APIError, DockerException, RequestException):
		return []


def list_images(
	label_key: str = PROJECT_LABEL_KEY,
	label_value: str = PROJECT_LABEL_VALUE,
	client: Optional[DockerClient] = None,
) -> List[ImageSummary]:
	"""Project images that carry at least one repository tag."""
	with engine_client(client) as cli:
		try:
			raw = cli.api.images(all=True, filters={"label": label_filter(label_key, label_value)})
		except (APIError, DockerException, RequestException) as e:
			raise RSEngineError(f"Failed to list images: {explain(e)}")
	images = []
	for image in raw:
		tags = [t for t in image.get("RepoTags") or [] if t != "<none>:<none>"]
		if not tags:
			continue
		images.append(ImageSummary(
			id=image["Id"],
			repo_tags=tags,
			created_at=parse_engine_timestamp(image.get("Created", 0)),
			size=image.get("Size", 0),
		))
	return images


def image_created(image: str, client: Optional[DockerClient] = None):
	"""Creation time of a local image."""
	with engine_client(client) as cli:
		try:
			data = cli.api.inspect_image(image)
		except NotFound as e:
			raise RSImageNotFound(f"Image {image} not found locally: {explain(e)}", found=image_tags(cli.api))
		except (APIError, DockerException, RequestException) as e:
			raise RSEngineError(f"Failed to inspect image {image}: {explain(e)}")
	return parse_engine_timestamp(data.get("Created"))


def delete_image(image: str, client: Optional[DockerClient] = None) -> None:
	"""Remove an image and the containers created from it.

	A container that cannot be removed is reported and skipped; the image removal
	is still attempted.
	"""
	with engine_client(client) as cli:
		api = cli.api
		try:
			dependents = api.containers(all=True, filters={"ancestor": image})
		except (APIError, DockerException, RequestException) as e:
			raise RSEngineError(f"Failed to list containers using {image}: {explain(e)}")

		for container in dependents:
			cid = container["Id"]
			try:
				api.remove_container(cid, force=True)
				print_info(f"Removed container {cid[:12]} using {image}")
			except (APIError, DockerException, RequestException) as e:
				print_warning(f"Could not remove container {cid[:12]}: {explain(e)}")

		try:
			api.remove_image(image, force=True, noprune=False)
		except NotFound as e:
			raise RSImageNotFound(f"Image {image} not found: {explain(e)}", found=image_tags(api))
		except (APIError, DockerException, RequestException) as e:
			raise RSEngineError(f"Failed to delete image {image}: {explain(e)}")
	print_success(f"Successfully deleted image: {image}")

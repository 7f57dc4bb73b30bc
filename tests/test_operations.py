from __future__ import annotations

import pytest
from docker.errors import APIError, NotFound

from rfswift.core import operations
from rfswift.errors import RSContainerNotFound, RSEngineError


@pytest.fixture(autouse=True)
def _quiet(silence_messages):
	return silence_messages


class FakeAPI:
	def __init__(self, containers=None, images=None):
		self._containers = containers or []
		self._images = images or []
		self.removed_containers = []
		self.removed_images = []
		self.failing_containers = set()
		self.calls = []

	def containers(self, all=False, limit=-1, filters=None):
		self.calls.append(("containers", filters))
		return list(self._containers)

	def remove_container(self, container, force=False):
		if container in self.failing_containers:
			raise APIError("conflict: container is in use")
		self.removed_containers.append(container)

	def remove_image(self, image, force=False, noprune=False):
		self.removed_images.append((image, force, noprune))

	def images(self, all=False, filters=None):
		return list(self._images)

	def rename(self, container, name):
		raise NotFound("No such container: " + container)

	def start(self, container):
		self.calls.append(("start", container))

	def commit(self, container, repository=None, tag=None):
		self.calls.append(("commit", container, repository, tag))
		return {"Id": "sha256:abc"}


class FakeClient:
	def __init__(self, api):
		self.api = api
		self.closed = False

	def close(self):
		self.closed = True


def _labelled(cid, created, image="myrfswift:latest"):
	return {"Id": cid, "Created": created, "Image": image, "Command": "/bin/bash", "State": "exited", "Names": ["/" + cid]}


def test_latest_of_three_containers():
	api = FakeAPI([_labelled("aaa", 1700000100), _labelled("ccc", 1700000300), _labelled("bbb", 1700000200)])
	assert operations.latest_container_id(api) == "ccc"
	assert api.calls[0] == ("containers", {"label": "org.container.project=rfswift"})


def test_latest_without_containers_is_descriptive():
	with pytest.raises(RSContainerNotFound) as exc:
		operations.latest_container_id(FakeAPI())
	assert "org.container.project=rfswift" in str(exc.value)


def test_last_containers_summaries():
	api = FakeAPI([_labelled("aaa", 1700000100)])
	summaries = operations.last_containers("myrfswift:latest", client=FakeClient(api))
	assert summaries[0].names == ["aaa"]
	assert summaries[0].created_at.year == 2023
	assert api.calls[0][1] == {"label": "org.container.project=rfswift", "ancestor": "myrfswift:latest"}


def test_delete_image_survives_container_failure(silence_messages):
	api = FakeAPI([_labelled("aaa", 1), _labelled("bbb", 2)])
	api.failing_containers.add("aaa")
	operations.delete_image("myrfswift:old", client=FakeClient(api))
	assert api.removed_containers == ["bbb"]
	assert api.removed_images == [("myrfswift:old", True, False)]
	assert any("aaa" in line for line in silence_messages)


def test_not_found_lists_known_containers():
	api = FakeAPI([_labelled("deadbeef0000", 1)])
	with pytest.raises(RSContainerNotFound) as exc:
		operations.rename_container("nope", "new", client=FakeClient(api))
	assert exc.value.found
	assert "deadbeef0000" in exc.value.found[0]


def test_commit_starts_then_commits():
	api = FakeAPI()
	image_id = operations.commit("abc123", "myrfswift:v2", client=FakeClient(api))
	assert image_id == "sha256:abc"
	assert api.calls == [("start", "abc123"), ("commit", "abc123", "myrfswift", "v2")]


def test_list_images_skips_untagged():
	api = FakeAPI(images=[
		{"Id": "sha256:1", "RepoTags": ["penthertz/rfswift_noble:sdr"], "Created": 1700000000, "Size": 10},
		{"Id": "sha256:2", "RepoTags": ["<none>:<none>"], "Created": 1700000000, "Size": 10},
		{"Id": "sha256:3", "RepoTags": None, "Created": 1700000000, "Size": 10},
	])
	images = operations.list_images(client=FakeClient(api))
	assert [i.id for i in images] == ["sha256:1"]


def test_engine_errors_are_translated():
	class Broken(FakeAPI):
		def containers(self, all=False, limit=-1, filters=None):
			raise APIError("daemon unavailable")

	with pytest.raises(RSEngineError):
		operations.last_containers(client=FakeClient(Broken()))


def test_engine_client_closes_what_it_opens(monkeypatch):
	client = FakeClient(FakeAPI())
	monkeypatch.setattr(operations, "new_engine_client", lambda: client)
	with operations.engine_client() as cli:
		assert cli is client
	assert client.closed

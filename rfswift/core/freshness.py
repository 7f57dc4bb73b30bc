"""Is the local image the latest published one for its tag and architecture?"""

from __future__ import annotations

import logging
import platform
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

import requests
from requests.exceptions import RequestException

from rfswift.config import DEFAULT_HUB_URL, OFFICIAL_REPOS
from rfswift.core import operations
from rfswift.errors import RSError, RSRemoteError
from rfswift.types import ImageFreshness, ImageStatus, RemoteTag
from rfswift.utils.timestamps import parse_engine_timestamp

logger = logging.getLogger(__name__)

# Registry push time and local build time come from different clocks.
CLOCK_SKEW_TOLERANCE = timedelta(hours=2)
OCI_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
ARCH_SUFFIXES = ("_amd64", "_arm64", "_riscv64", "_arm")
HUB_PAGE_SIZE = 100
HUB_TIMEOUT = 10

_MACHINE_ARCH = {
	"x86_64": "amd64",
	"amd64": "amd64",
	"aarch64": "arm64",
	"arm64": "arm64",
	"riscv64": "riscv64",
	"armv7l": "arm",
	"armv6l": "arm",
	"arm": "arm",
}


def local_architecture(machine: Optional[str] = None) -> str:
	"""Registry architecture name of this host, empty when unrecognized."""
	machine = (machine if machine is not None else platform.machine()).lower()
	return _MACHINE_ARCH.get(machine, "")


def architecture_from_tag(name: str, requested: str) -> str:
	for suffix in ARCH_SUFFIXES:
		if name.endswith(suffix):
			return suffix[1:]
	return requested or "amd64"


def normalize_tag_for_remote(tag: str, architecture: str) -> str:
	if tag.endswith(ARCH_SUFFIXES):
		return tag
	return f"{tag}_{architecture}"


def is_official_image(image: str) -> bool:
	# Podman reports fully qualified names
	cleaned = image[len("docker.io/"):] if image.startswith("docker.io/") else image
	return any(cleaned.startswith(repo + ":") for repo in OFFICIAL_REPOS)


def latest_by_name(tags: Iterable[RemoteTag]) -> Dict[str, RemoteTag]:
	"""Keep only the most recently pushed entry for each tag name."""
	latest: Dict[str, RemoteTag] = {}
	for tag in tags:
		current = latest.get(tag.name)
		if current is None or tag.pushed_at > current.pushed_at:
			latest[tag.name] = tag
	return latest


def classify(local_created: datetime, remote_pushed: datetime, tolerance: timedelta = CLOCK_SKEW_TOLERANCE) -> ImageStatus:
	if local_created < remote_pushed - tolerance:
		return ImageStatus.OBSOLETE
	return ImageStatus.UP_TO_DATE


class HubClient:
	"""Docker Hub tag listing, filtered to one architecture."""

	def __init__(self, base_url: str = DEFAULT_HUB_URL, session: Optional[requests.Session] = None, timeout: int = HUB_TIMEOUT):
		self.base_url = base_url.rstrip("/")
		self.session = session or requests.Session()
		self.timeout = timeout

	def _pages(self, repo: str) -> Iterable[dict]:
		url: Optional[str] = f"{self.base_url}/{repo}/tags/?page_size={HUB_PAGE_SIZE}"
		while url:
			try:
				resp = self.session.get(url, timeout=self.timeout)
			except RequestException as e:
				raise RSRemoteError(f"Failed to get tags for {repo}: {e}")
			if resp.status_code == 404:
				raise RSRemoteError(f"Repository {repo} not found")
			if resp.status_code != 200:
				raise RSRemoteError(f"Failed to get tags for {repo}: HTTP {resp.status_code}")
			try:
				body = resp.json()
			except ValueError as e:
				raise RSRemoteError(f"Invalid tag listing for {repo}: {e}")
			yield body
			url = body.get("next")

	def tags(self, repo: str, architecture: str) -> List[RemoteTag]:
		result = []
		for page in self._pages(repo):
			for entry in page.get("results") or []:
				name = entry.get("name", "")
				if name.startswith("cache_"):
					continue
				if entry.get("media_type") != OCI_INDEX_MEDIA_TYPE:
					continue
				arch = architecture_from_tag(name, architecture)
				if arch != architecture:
					continue
				try:
					pushed = parse_engine_timestamp(entry.get("tag_last_pushed") or entry.get("last_updated"))
				except ValueError:
					logger.warning("Could not parse date for tag %s", name)
					continue
				if pushed is None:
					continue
				result.append(RemoteTag(
					name=name,
					pushed_at=pushed,
					digest=entry.get("digest", ""),
					architecture=arch,
					full_size=entry.get("full_size") or 0,
				))
		return result

	def latest_tags(self, repo: str, architecture: str) -> Dict[str, RemoteTag]:
		return latest_by_name(self.tags(repo, architecture))


class ImageFreshnessChecker:
	def __init__(
		self,
		hub: Optional[HubClient] = None,
		image_created: Callable[[str], Optional[datetime]] = operations.image_created,
		architecture: Optional[str] = None,
		tolerance: timedelta = CLOCK_SKEW_TOLERANCE,
	):
		self.hub = hub or HubClient()
		self._image_created = image_created
		self._architecture = architecture
		self.tolerance = tolerance

	def status(self, repo: str, tag: str) -> ImageFreshness:
		architecture = self._architecture if self._architecture is not None else local_architecture()
		if not architecture:
			return ImageFreshness(ImageStatus.UNKNOWN, error=f"Unsupported architecture: {platform.machine()}")

		try:
			local_created = self._image_created(f"{repo}:{tag}")
		except RSError as e:
			return ImageFreshness(ImageStatus.UNKNOWN, error=str(e))
		if local_created is None:
			return ImageFreshness(ImageStatus.UNKNOWN, error=f"No creation date for {repo}:{tag}")

		try:
			remote = self.hub.latest_tags(repo, architecture)
		except RSRemoteError as e:
			return ImageFreshness(ImageStatus.UNKNOWN, local_created=local_created, error=str(e))

		match = remote.get(tag) or remote.get(normalize_tag_for_remote(tag, architecture))
		if match is None:
			return ImageFreshness(ImageStatus.CUSTOM, local_created=local_created)
		return ImageFreshness(
			classify(local_created, match.pushed_at, self.tolerance),
			local_created=local_created,
			remote_pushed=match.pushed_at,
		)

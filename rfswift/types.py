from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class ImageStatus(Enum):
	UP_TO_DATE = "up-to-date"
	OBSOLETE = "obsolete"
	CUSTOM = "custom"
	UNKNOWN = "unknown"


@dataclass
class ImageFreshness:
	status: ImageStatus
	local_created: Optional[datetime] = None
	remote_pushed: Optional[datetime] = None
	error: Optional[str] = None


@dataclass
class RemoteTag:
	name: str
	pushed_at: datetime
	digest: str = ""
	architecture: str = ""
	full_size: int = 0


@dataclass
class ContainerSummary:
	id: str
	image: str
	command: str
	created_at: datetime
	state: str = ""
	names: list[str] = field(default_factory=list)


@dataclass
class ImageSummary:
	id: str
	repo_tags: list[str]
	created_at: datetime
	size: int

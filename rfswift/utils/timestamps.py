from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union


ZERO_TIME = "0001-01-01T00:00:00Z"


def parse_engine_timestamp(value: Union[str, int, float, None]) -> Optional[datetime]:
	"""Parse an engine or registry timestamp into an aware UTC datetime.

	Engines report RFC3339 strings with nanosecond precision
	(``2025-09-03T14:12:12.334389548+00:00``); list endpoints report unix seconds.
	"""
	if value is None or value == "" or value == ZERO_TIME:
		return None
	if isinstance(value, (int, float)):
		return datetime.fromtimestamp(value, tz=timezone.utc)

	text = value.strip().replace("Z", "+00:00")
	tz_part = ""
	for sep in ("+", "-"):
		idx = text.rfind(sep)
		if idx > text.find("T"):
			tz_part = text[idx:]
			text = text[:idx]
			break
	if "." in text:
		whole, fractional = text.split(".", 1)
		# fromisoformat only takes microseconds
		text = f"{whole}.{fractional[:6].ljust(6, '0')}"
	parsed = datetime.fromisoformat(text + tz_part)
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed.astimezone(timezone.utc)

from rfswift.config import Config, SessionConfig
from rfswift.core.freshness import ImageFreshnessChecker
from rfswift.core.session import Session, SessionManager
from rfswift.engine.selector import get_engine, new_engine_client, set_preferred_engine

__all__ = [
	"Config",
	"SessionConfig",
	"ImageFreshnessChecker",
	"Session",
	"SessionManager",
	"get_engine",
	"new_engine_client",
	"set_preferred_engine",
]

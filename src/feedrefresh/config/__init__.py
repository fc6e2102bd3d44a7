from .config import AppSettings, DebugMode, YamlFileFromFieldSource, parse_duration
from .feed_config import FeedConfig

__all__ = [
    "AppSettings",
    "DebugMode",
    "FeedConfig",
    "YamlFileFromFieldSource",
    "parse_duration",
]

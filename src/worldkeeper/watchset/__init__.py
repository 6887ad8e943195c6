"""Watch-set models and loader exports."""

from .loader import WatchSetLoadError, load_watch_set
from .models import DirectoryAggregate, WatchSet, default_watch_set

__all__ = [
    "DirectoryAggregate",
    "WatchSet",
    "WatchSetLoadError",
    "default_watch_set",
    "load_watch_set",
]

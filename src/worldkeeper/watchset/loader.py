"""Watch-set loading utilities."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import WatchSet, default_watch_set


class WatchSetLoadError(RuntimeError):
    """Raised when a watch-set file cannot be read or validated."""


def load_watch_set(path: Path | None, base: Path) -> WatchSet:
    """Load a watch-set from YAML and anchor it at ``base``.

    Without a path the default watch-set is used. An empty document also
    falls back to the default.
    """

    if path is None:
        return default_watch_set().resolve(base)

    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise WatchSetLoadError(f"Cannot read watch-set file {path}: {exc}") from exc

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise WatchSetLoadError(f"Failed to parse YAML in {path}: {exc}") from exc

    if document is None:
        return default_watch_set().resolve(base)

    try:
        watch_set = WatchSet.model_validate(document)
    except ValidationError as exc:
        raise WatchSetLoadError(f"Watch-set validation error in {path}: {exc}") from exc

    if not watch_set.files and watch_set.aggregate is None:
        raise WatchSetLoadError(f"Watch-set in {path} lists no files and no aggregate")

    return watch_set.resolve(base)


__all__ = ["WatchSetLoadError", "load_watch_set"]

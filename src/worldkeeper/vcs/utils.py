"""Utility helpers for the git runner."""

from __future__ import annotations

import os

# Variables that would point git at a different repository or index.
_SANITIZED_VARS = {
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_OBJECT_DIRECTORY",
    "GIT_CEILING_DIRECTORIES",
}


def sanitize_environment() -> dict[str, str]:
    """Return the current environment prepared for non-interactive git."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("LC_ALL", "C")
    return env

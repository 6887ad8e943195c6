"""Watch-set models describing which world files signal disk activity."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


class DirectoryAggregate(BaseModel):
    """Newest modification among files with a given suffix in a directory."""

    directory: Path = Field(..., description="Directory scanned on every poll.")
    suffix: str = Field(
        default=".mca",
        description="Only files ending with this suffix take part in the aggregate.",
    )

    @field_validator("suffix")
    @classmethod
    def _normalize_suffix(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Aggregate suffix must not be empty")
        if not normalized.startswith("."):
            normalized = "." + normalized
        return normalized

    @property
    def key(self) -> str:
        return f"latest:{self.directory.as_posix()}/*{self.suffix}"


class WatchSet(BaseModel):
    """Ordered list of watched files plus one directory aggregate."""

    files: list[Path] = Field(
        default_factory=list,
        description="Individual files whose size and mtime are compared between polls.",
    )
    aggregate: DirectoryAggregate | None = Field(
        default=None,
        description="Optional newest-file aggregate over a directory.",
    )

    @field_validator("files", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (str, Path)):
            return [value]
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Watch-set files must be a sequence of paths")

    def resolve(self, base: Path) -> "WatchSet":
        """Return a copy with relative paths anchored at ``base``."""

        base = Path(base)
        files = [path if path.is_absolute() else base / path for path in self.files]
        aggregate = None
        if self.aggregate is not None:
            directory = self.aggregate.directory
            if not directory.is_absolute():
                directory = base / directory
            aggregate = DirectoryAggregate(directory=directory, suffix=self.aggregate.suffix)
        return WatchSet(files=files, aggregate=aggregate)


def default_watch_set() -> WatchSet:
    """Level data plus the overworld region files."""

    return WatchSet(
        files=[Path("world/level.dat")],
        aggregate=DirectoryAggregate(directory=Path("world/region"), suffix=".mca"),
    )


__all__ = ["DirectoryAggregate", "WatchSet", "default_watch_set"]

"""Idle-aware world backups for a supervised Minecraft server."""

__version__ = "0.1.0"

__all__ = ["__version__"]

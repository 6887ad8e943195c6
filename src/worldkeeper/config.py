"""Configuration management for worldkeeper."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class KeeperSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    java_exe: str = Field(default="java", validation_alias="JAVA_EXE")
    jvm_args_file: str = Field(default="@user_jvm_args.txt", validation_alias="JVM_ARGS_FILE")
    server_args_file: str = Field(
        default="@libraries/net/neoforged/neoforge/21.1.209/unix_args.txt",
        validation_alias="MC_ARGS_FILE",
    )
    server_dir: Path = Field(default=Path("."), validation_alias="KEEPER_SERVER_DIR")
    repo_path: Path | None = Field(default=None, validation_alias="KEEPER_REPO_PATH")
    watch_file: Path | None = Field(default=None, validation_alias="KEEPER_WATCH_FILE")

    backup_interval: float = Field(default=1800.0, validation_alias="BACKUP_INTERVAL_SEC")
    stable_duration: float = Field(default=10.0, validation_alias="STABLE_DURATION_SEC")
    idle_wait_max: float = Field(default=120.0, validation_alias="IDLE_WAIT_MAX_SEC")
    shutdown_wait: float = Field(default=30.0, validation_alias="SHUTDOWN_WAIT_SEC")
    poll_interval: float = Field(default=1.0, validation_alias="POLL_INTERVAL_SEC")
    max_retries: int = Field(default=3, validation_alias="BACKUP_MAX_RETRIES")
    stale_lock_age: float = Field(default=600.0, validation_alias="STALE_LOCK_AGE_SEC")
    git_timeout: float = Field(default=300.0, validation_alias="GIT_TIMEOUT_SEC")
    stop_timeout: float = Field(default=60.0, validation_alias="STOP_TIMEOUT_SEC")

    git_executable: str | None = Field(default=None, validation_alias="GIT_EXECUTABLE")
    git_remote: str = Field(default="origin", validation_alias="GIT_REMOTE")
    commit_message_format: str = Field(
        default="%Y/%m/%d %H:%M:%S", validation_alias="COMMIT_MESSAGE_FORMAT"
    )
    announce: bool = Field(default=True, validation_alias="KEEPER_ANNOUNCE")
    proceed_when_unstable: bool = Field(default=True, validation_alias="PROCEED_WHEN_UNSTABLE")
    log_level: str = Field(default="INFO", validation_alias="KEEPER_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "KEEPER_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator(
        "backup_interval",
        "stable_duration",
        "idle_wait_max",
        "shutdown_wait",
        "poll_interval",
        "stale_lock_age",
        "git_timeout",
        "stop_timeout",
    )
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be positive")
        return value

    @field_validator("max_retries")
    @classmethod
    def _validate_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("BACKUP_MAX_RETRIES must be >= 1")
        return value

    @field_validator("repo_path", "watch_file", "git_executable", mode="before")
    @classmethod
    def _blank_as_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _validate_shutdown_wait(self) -> "KeeperSettings":
        if self.shutdown_wait > self.backup_interval:
            raise ValueError("SHUTDOWN_WAIT_SEC must not exceed BACKUP_INTERVAL_SEC")
        return self

    @property
    def repository(self) -> Path:
        """Working tree that receives the backups."""

        return self.repo_path if self.repo_path is not None else self.server_dir

    def server_command(self) -> list[str]:
        return [self.java_exe, self.jvm_args_file, self.server_args_file, "nogui"]


@lru_cache(maxsize=1)
def get_settings() -> KeeperSettings:
    """Return cached settings instance."""

    settings = KeeperSettings()
    settings.server_dir = settings.server_dir.expanduser().resolve()
    if settings.repo_path is not None:
        settings.repo_path = settings.repo_path.expanduser().resolve()
    if settings.watch_file is not None:
        settings.watch_file = settings.watch_file.expanduser().resolve()
    return settings


__all__ = ["KeeperSettings", "get_settings"]

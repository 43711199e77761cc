"""Service configuration loaded from environment variables and flags."""
import re
from pathlib import Path
from typing import Literal

from pydantic import computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from httpwatch.events.types import WatchConfig

LogLevel = Literal["debug", "info", "warning", "error"]


class Settings(BaseSettings):
    """http-watch configuration.

    Every field can be set through an ``HTTPWATCH_`` environment variable,
    the ``.env`` file, or a command-line flag of the same name when parsed
    with ``Settings(_cli_parse_args=True)``.

    Attributes:
        host: Bind address for the server.
        port: Port number for the server.
        dir: Directory served over HTTP and watched for changes.
        pattern: Regular expression matched against changed file names.
            No watcher and no events endpoint run when unset.
        recursive: Watch every subdirectory of dir.
        log_level: Minimum log level.
        tls_cert: Path to the TLS certificate.
        tls_key: Path to the TLS private key.
        gzip: Compress static responses for clients that accept gzip.
        debounce_ms: Window in which duplicate filesystem events are dropped.
        keepalive_interval: Seconds between websocket keepalive frames.
        shutdown_timeout: Seconds to wait for open connections on shutdown.
    """

    model_config = SettingsConfigDict(
        env_prefix="HTTPWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 8080
    dir: Path | None = None
    pattern: str | None = None
    recursive: bool = True
    log_level: LogLevel = "info"
    tls_cert: Path | None = None
    tls_key: Path | None = None
    gzip: bool = True

    debounce_ms: int = 100
    keepalive_interval: float = 30.0
    shutdown_timeout: float = 5.0

    @field_validator("pattern")
    @classmethod
    def _check_pattern(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid file pattern {value!r}: {e}") from e
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _lower_log_level(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_tls_pair(self) -> "Settings":
        if (self.tls_cert is None) != (self.tls_key is None):
            raise ValueError("tls_cert and tls_key must be given together")
        return self

    @computed_field
    @property
    def has_tls(self) -> bool:
        """Whether TLS material is configured."""
        return self.tls_cert is not None and self.tls_key is not None

    @property
    def watch_config(self) -> WatchConfig | None:
        """Build the watcher configuration.

        The watched root defaults to the current directory when only a
        pattern is configured.

        Returns:
            Watch configuration, or None when no pattern is set.
        """
        if self.pattern is None:
            return None
        return WatchConfig(
            root=self.dir if self.dir is not None else Path.cwd(),
            pattern=re.compile(self.pattern),
            recursive=self.recursive,
        )

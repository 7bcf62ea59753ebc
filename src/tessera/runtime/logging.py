"""Logging bootstrap from configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.config import LoggingConfig
from ..core.global_paths import GlobalPath
from ..util.log import Log, LogFormat, LogLevel


@dataclass(frozen=True)
class LogSettings:
    level: LogLevel
    format: LogFormat
    console: bool
    directory: Optional[str]


def resolve_log_settings(config: Optional[LoggingConfig] = None) -> LogSettings:
    """Fill unset logging fields with defaults.

    File output defaults off; when enabled without a directory the
    platformdirs log directory is used.
    """
    config = config or LoggingConfig()
    directory = None
    if config.file:
        directory = config.directory or GlobalPath.log()
    return LogSettings(
        level=LogLevel.parse(config.level) if config.level else LogLevel.WARN,
        format=LogFormat.parse(config.format),
        console=True if config.console is None else config.console,
        directory=directory,
    )


def configure_logging(config: Optional[LoggingConfig] = None) -> LogSettings:
    """Resolve settings and initialize the process logger."""
    settings = resolve_log_settings(config)
    Log.configure(
        level=settings.level,
        format=settings.format,
        console=settings.console,
        directory=settings.directory,
    )
    return settings

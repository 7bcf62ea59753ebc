"""Structured logging for the runtime.

Loggers are tagged (usually with a ``service`` name) and render each record
as a single line, either key/value pairs, JSON, or a pretty human form.
Output goes to stderr and, when configured, to a log file in an injected
directory.
"""

import json
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, TextIO


class LogLevel(str, Enum):
    """Log severity levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: str | None) -> "LogLevel":
        if value is None:
            return cls.INFO
        text = value.strip().lower()
        if text == "warning":
            text = "warn"
        for level in cls:
            if level.value.lower() == text:
                return level
        raise ValueError(f"invalid log level: {value}")


class LogFormat(str, Enum):
    """Log line format."""

    KV = "kv"
    JSON = "json"
    PRETTY = "pretty"

    @classmethod
    def parse(cls, value: str | None) -> "LogFormat":
        if value is None:
            return cls.KV
        text = value.strip().lower()
        for fmt in cls:
            if fmt.value == text:
                return fmt
        raise ValueError(f"invalid log format: {value}")


LEVEL_PRIORITY = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARN: 2,
    LogLevel.ERROR: 3,
}

KEEP_LOG_FILES = 10


@dataclass
class LogConfig:
    """Process logging configuration."""

    level: LogLevel = LogLevel.WARN
    format: LogFormat = LogFormat.KV
    console: bool = True
    log_file_path: Optional[str] = None
    _file_handle: Optional[TextIO] = None


_config = LogConfig()
_last_timestamp = time.time()


def _describe(error: BaseException, depth: int = 0) -> str:
    text = str(error) or error.__class__.__name__
    if error.__cause__ is not None and depth < 10:
        text += " Caused by: " + _describe(error.__cause__, depth + 1)
    return text


class Logger:
    """Tagged structured logger."""

    def __init__(self, tags: Optional[Dict[str, Any]] = None):
        self.tags = tags or {}

    def _enabled(self, level: LogLevel) -> bool:
        return LEVEL_PRIORITY[level] >= LEVEL_PRIORITY[_config.level]

    def _normalize(self, value: Any) -> Any:
        if isinstance(value, BaseException):
            return _describe(value)
        if value is None or isinstance(value, (dict, list, tuple, int, float, bool)):
            return value
        return str(value)

    def _render_value(self, value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
        text = str(value)
        if text == "" or "=" in text or any(ch.isspace() for ch in text):
            return json.dumps(text, ensure_ascii=False)
        return text

    def _record(self, level: LogLevel, message: Any, extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        global _last_timestamp

        now = time.time()
        delta_ms = int((now - _last_timestamp) * 1000)
        _last_timestamp = now

        fields = {**self.tags, **(extra or {})}
        return {
            "time": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "delta_ms": delta_ms,
            "level": level.value.lower(),
            "msg": self._normalize(message),
            **{key: self._normalize(value) for key, value in fields.items() if value is not None},
        }

    def _format(self, level: LogLevel, message: Any, extra: Optional[Dict[str, Any]]) -> str:
        record = self._record(level, message, extra)
        if _config.format == LogFormat.JSON:
            return json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str) + "\n"

        pairs = " ".join(
            f"{key}={self._render_value(value)}"
            for key, value in record.items()
            if key not in {"time", "delta_ms", "level", "msg"}
        )
        if _config.format == LogFormat.PRETTY:
            suffix = f" ({pairs})" if pairs else ""
            return f"{record['time']} {level.value} {record.get('msg') or ''}{suffix} +{record['delta_ms']}ms\n"

        head = [
            str(record["time"]),
            f"+{record['delta_ms']}ms",
            f"level={record['level']}",
            f"msg={self._render_value(record.get('msg'))}",
        ]
        if pairs:
            head.append(pairs)
        return " ".join(head) + "\n"

    def _emit(self, level: LogLevel, message: Any, extra: Optional[Dict[str, Any]]) -> None:
        if not self._enabled(level):
            return
        line = self._format(level, message, extra)
        if _config.console:
            sys.stderr.write(line)
            sys.stderr.flush()
        if _config._file_handle is not None:
            _config._file_handle.write(line)
            _config._file_handle.flush()

    def debug(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._emit(LogLevel.DEBUG, message, extra)

    def info(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._emit(LogLevel.INFO, message, extra)

    def warn(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._emit(LogLevel.WARN, message, extra)

    def warning(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        """Alias for warn()."""
        self.warn(message, extra)

    def error(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._emit(LogLevel.ERROR, message, extra)

    def tag(self, key: str, value: Any) -> "Logger":
        """Add a tag to this logger instance."""
        self.tags[key] = value
        return self

    def clone(self) -> "Logger":
        return Logger(tags=self.tags.copy())


class Log:
    """Logger factory and process-level configuration."""

    _loggers: Dict[str, Logger] = {}

    @classmethod
    def create(cls, tags: Optional[Dict[str, Any]] = None) -> Logger:
        """Create a logger, cached by its ``service`` tag when present."""
        tags = tags or {}
        service = tags.get("service")
        if not isinstance(service, str) or not service:
            return Logger(tags=tags)
        logger = cls._loggers.get(service)
        if logger is None:
            logger = Logger(tags=tags)
            cls._loggers[service] = logger
        return logger

    @classmethod
    def configure(
        cls,
        *,
        level: LogLevel | None = None,
        format: LogFormat | None = None,
        console: bool | None = None,
        directory: str | None = None,
        filename: str | None = None,
    ) -> None:
        """Configure level, format and sinks.

        A log file is opened only when ``directory`` is given. Timestamped
        files in that directory are pruned to the most recent ten.
        """
        if level is not None:
            _config.level = level
        if format is not None:
            _config.format = format
        if console is not None:
            _config.console = console

        cls.close()
        if not directory:
            _config.log_file_path = None
            return

        log_dir = Path(directory)
        log_dir.mkdir(parents=True, exist_ok=True)
        cls._prune(log_dir)
        if not filename:
            filename = datetime.now().isoformat().split(".")[0].replace(":", "") + ".log"
        log_path = log_dir / filename
        _config.log_file_path = str(log_path)
        _config._file_handle = log_path.open("a", encoding="utf-8")

    @classmethod
    def file(cls) -> str:
        """Current log file path, or an empty string."""
        return _config.log_file_path or ""

    @classmethod
    def _prune(cls, log_dir: Path) -> None:
        stamped = sorted(
            log_dir.glob("????-??-??T??????.log"),
            key=lambda p: p.stat().st_mtime,
        )
        for old in stamped[:-KEEP_LOG_FILES]:
            old.unlink(missing_ok=True)

    @classmethod
    def close(cls) -> None:
        if _config._file_handle is not None:
            _config._file_handle.close()
            _config._file_handle = None


def write_error_record(payload: Dict[str, Any], stream: Optional[TextIO] = None) -> None:
    """Write one structured error object as a JSON line to the error channel."""
    target = stream if stream is not None else sys.stderr
    try:
        line = json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        line = json.dumps({key: str(value) for key, value in payload.items()}, ensure_ascii=False)
    target.write(line + "\n")
    target.flush()

"""Default per-user directories.

These are only defaults. The runtime receives every path it uses through
its configuration, and nothing here creates directories on import.
"""

from pathlib import Path

from platformdirs import user_config_dir, user_data_dir, user_log_dir

APP_NAME = "tessera"


class GlobalPath:
    """Per-user directory defaults resolved through platformdirs."""

    @classmethod
    def data(cls) -> str:
        return user_data_dir(APP_NAME)

    @classmethod
    def config(cls) -> str:
        return user_config_dir(APP_NAME)

    @classmethod
    def log(cls) -> str:
        return user_log_dir(APP_NAME)

    @classmethod
    def history(cls) -> str:
        """Directory for per-session JSONL history files."""
        return str(Path(cls.data()) / "history")

    @classmethod
    def config_file(cls) -> str:
        return str(Path(cls.config()) / "tessera.jsonc")

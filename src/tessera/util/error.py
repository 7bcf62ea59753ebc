"""Error formatting utilities."""

from typing import Any

from .serialize import safe_json_dumps


def format_error(error: Any, *, max_depth: int = 10) -> str:
    """Render an error as one line, following its ``__cause__`` chain."""
    if isinstance(error, BaseException):
        text = str(error) or error.__class__.__name__
        cause = error.__cause__
        depth = 0
        while cause is not None and depth < max_depth:
            text += f" Caused by: {str(cause) or cause.__class__.__name__}"
            cause = cause.__cause__
            depth += 1
        return text

    if isinstance(error, (dict, list)):
        return safe_json_dumps(error)

    return str(error)

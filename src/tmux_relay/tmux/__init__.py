"""tmux access: CLI client, test double and content capture."""

from .client import FakeTmuxClient, TmuxClient, TmuxError, TmuxNotFoundError, TmuxResult
from .reader import ContentReader
from .utils import escape_keys, flatten_command, sanitize_environment, strip_ansi

__all__ = [
    "ContentReader",
    "FakeTmuxClient",
    "TmuxClient",
    "TmuxError",
    "TmuxNotFoundError",
    "TmuxResult",
    "escape_keys",
    "flatten_command",
    "sanitize_environment",
    "strip_ansi",
]

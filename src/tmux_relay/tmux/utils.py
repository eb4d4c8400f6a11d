"""Utility helpers for the tmux client."""

from __future__ import annotations

import os
import re
from typing import Mapping

_SANITIZED_VARS = {
    # Inherited from an enclosing tmux client; new-session refuses to nest while they are set.
    "TMUX",
    "TMUX_PANE",
    # The relay's own interpreter settings; they must not leak into the assistant's shell.
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
}

_WHITESPACE_RE = re.compile(r"\s+")
_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*\x07")


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for tmux subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def flatten_command(text: str) -> str:
    """Collapse newlines and runs of whitespace into single spaces."""

    return _WHITESPACE_RE.sub(" ", text.replace("\r", " ").replace("\n", " ")).strip()


def escape_keys(text: str) -> str:
    """Prepare text for ``send-keys -l``.

    Arguments are passed as argv, so shell quoting does not apply. tmux itself
    still treats a trailing ``;`` as a command separator and NUL bytes
    terminate the argument.
    """

    escaped = text.replace("\x00", "")
    if escaped.endswith(";") and not escaped.endswith("\\;"):
        escaped = escaped[:-1] + "\\;"
    return escaped


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


__all__ = ["escape_keys", "flatten_command", "sanitize_environment", "strip_ansi"]

"""Idle and ready detection for assistant pane content."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..config import DEFAULT_IDLE_PATTERN
from ..tmux.utils import strip_ansi

# The prompt box renders at the bottom of the pane; older separators sit in scrollback.
DEFAULT_TAIL_LINES = 15
DEFAULT_BUSY_PATTERNS = ("esc to interrupt",)


def _tail(content: str, lines: int) -> list[str]:
    cleaned = strip_ansi(content)
    return [line for line in cleaned.splitlines() if line.strip()][-lines:]


@dataclass(slots=True)
class IdleDetector:
    """Heuristic predicate deciding whether the assistant is waiting at its prompt.

    The assistant's terminal UI draws a box of horizontal rules around its
    input line. When that box is visible near the bottom of the pane and no
    busy indicator is showing, the assistant is idle. The pattern is a
    rendering detail of the assistant, so it is configurable.
    """

    idle_pattern: str = DEFAULT_IDLE_PATTERN
    busy_patterns: tuple[str, ...] = field(default=DEFAULT_BUSY_PATTERNS)
    tail_lines: int = DEFAULT_TAIL_LINES

    def is_idle(self, content: str) -> bool:
        if not content or not content.strip():
            return False
        tail = _tail(content, self.tail_lines)
        if not any(self.idle_pattern in line for line in tail):
            return False
        lowered = [line.lower() for line in tail]
        for pattern in self.busy_patterns:
            needle = pattern.lower()
            if any(needle in line for line in lowered):
                return False
        return True

    def is_ready(self, content: str) -> bool:
        """Return True once the prompt box has been drawn at least once."""

        if not content:
            return False
        return self.idle_pattern in strip_ansi(content)


def detect_idle(
    content: str,
    *,
    idle_pattern: str = DEFAULT_IDLE_PATTERN,
    busy_patterns: Iterable[str] = DEFAULT_BUSY_PATTERNS,
) -> bool:
    """Convenience wrapper around :class:`IdleDetector`."""

    detector = IdleDetector(idle_pattern=idle_pattern, busy_patterns=tuple(busy_patterns))
    return detector.is_idle(content)


def detect_ready(content: str, *, idle_pattern: str = DEFAULT_IDLE_PATTERN) -> bool:
    return IdleDetector(idle_pattern=idle_pattern).is_ready(content)


__all__ = ["DEFAULT_BUSY_PATTERNS", "IdleDetector", "detect_idle", "detect_ready"]

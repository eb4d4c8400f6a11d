"""Terminal content capture."""

from __future__ import annotations

import logging

from .client import TmuxClient, TmuxError

logger = logging.getLogger(__name__)


class ContentReader:
    """Capture pane text for a named session.

    Sessions can disappear between a lookup and a capture, so failures are
    reported as empty content instead of raising.
    """

    def __init__(self, client: TmuxClient) -> None:
        self._client = client

    def capture(self, session_name: str, max_lines: int = 1000) -> str:
        try:
            return self._client.capture_pane(session_name, max_lines)
        except TmuxError as exc:
            logger.debug(
                "Capture failed",
                extra={"session": session_name, "error": str(exc)},
            )
            return ""

    def tail(self, session_name: str, lines: int = 5, max_lines: int = 200) -> list[str]:
        content = self.capture(session_name, max_lines)
        return [line for line in content.splitlines() if line.strip()][-lines:]


__all__ = ["ContentReader"]

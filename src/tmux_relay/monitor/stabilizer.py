"""Buffer stabilization polling."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from ..tmux.reader import ContentReader

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class BufferStabilizer:
    """Wait until a session's pane content stops changing.

    Output arrives in bursts, so a single unchanged sample is not enough:
    content must compare equal ``stable_checks`` times in a row.
    """

    def __init__(
        self,
        reader: ContentReader,
        *,
        interval: float = 1.0,
        stable_checks: int = 2,
        capture_lines: int = 1000,
        sleep: SleepFn | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if stable_checks < 1:
            raise ValueError("stable_checks must be >= 1")
        self._reader = reader
        self._interval = interval
        self._stable_checks = stable_checks
        self._capture_lines = capture_lines
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

    async def wait_for_stable(self, session_name: str, timeout: float = 10.0) -> bool:
        """Return True once content is stable, False on timeout.

        A timeout is not an error; callers proceed with whatever content is
        present.
        """

        deadline = self._clock() + timeout
        last_content: str | None = None
        equal_count = 0

        while self._clock() < deadline:
            content = self._reader.capture(session_name, self._capture_lines)
            if content == last_content:
                equal_count += 1
                if equal_count >= self._stable_checks:
                    logger.debug(
                        "Buffer stabilized",
                        extra={"session": session_name, "checks": equal_count},
                    )
                    return True
            else:
                equal_count = 0
                last_content = content
            await self._sleep(self._interval)

        tail = [line for line in (last_content or "").splitlines() if line.strip()][-5:]
        logger.warning(
            "Buffer did not stabilize before timeout",
            extra={"session": session_name, "timeout": timeout, "tail": tail},
        )
        return False


__all__ = ["BufferStabilizer"]

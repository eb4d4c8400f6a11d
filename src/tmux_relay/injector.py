"""Typing commands into assistant sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from .monitor.detection import IdleDetector
from .tmux.client import TmuxClient, TmuxError
from .tmux.reader import ContentReader
from .tmux.utils import escape_keys, flatten_command

logger = logging.getLogger(__name__)

EXECUTE_KEY = "C-m"

FOCUS_DELAY = 0.3
TEXT_DELAY = 0.2
EXECUTE_DELAY = 0.2
READY_POLL_INTERVAL = 0.5
READY_SETTLE_DELAY = 0.5


class CommandInjectionError(RuntimeError):
    """Raised when a command cannot be delivered to a tmux session."""

    def __init__(self, message: str, *, session_name: str) -> None:
        super().__init__(message)
        self.session_name = session_name


class CommandInjector:
    """Send text to the assistant running in a tmux pane.

    The assistant's input widget can switch into multi-line composition on the
    first execute key, so every command is followed by two execute keys. The
    second one is a no-op when the first already submitted the input.
    """

    def __init__(
        self,
        client: TmuxClient,
        *,
        detector: IdleDetector | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._client = client
        self._reader = ContentReader(client)
        self._detector = detector or IdleDetector()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

    async def send(self, session_name: str, command: str) -> bool:
        """Type ``command`` into the session and execute it.

        Newlines are collapsed to spaces first; a raw newline would open
        multi-line mode before the text is complete.
        """

        text = escape_keys(flatten_command(command))
        if not text:
            raise CommandInjectionError("Refusing to send an empty command", session_name=session_name)

        try:
            self._client.select_pane(session_name)
            await self._sleep(FOCUS_DELAY)
            self._client.send_keys(session_name, text, literal=True)
            await self._sleep(TEXT_DELAY)
            self._client.send_keys(session_name, EXECUTE_KEY)
            await self._sleep(EXECUTE_DELAY)
            self._client.send_keys(session_name, EXECUTE_KEY)
        except TmuxError as exc:
            logger.error(
                "Command injection failed",
                extra={"session": session_name, "error": str(exc)},
            )
            raise CommandInjectionError(
                f"Failed to send command to {session_name}: {exc}", session_name=session_name
            ) from exc

        logger.info(
            "Command sent",
            extra={"session": session_name, "chars": len(text)},
        )
        return True

    async def wait_for_ready(self, session_name: str, timeout: float = 45.0) -> bool:
        deadline = self._clock() + timeout
        while self._clock() < deadline:
            content = self._reader.capture(session_name, 200)
            if self._detector.is_ready(content):
                await self._sleep(READY_SETTLE_DELAY)
                logger.info("Assistant ready", extra={"session": session_name})
                return True
            await self._sleep(READY_POLL_INTERVAL)

        logger.warning(
            "Assistant did not become ready before timeout; continuing",
            extra={
                "session": session_name,
                "timeout": timeout,
                "tail": self._reader.tail(session_name, 5),
            },
        )
        return False

    async def start_assistant(
        self,
        session_name: str,
        command: str,
        *,
        ready_timeout: float = 45.0,
    ) -> bool:
        """Launch the assistant in the session and wait for its prompt.

        Returns False when the prompt never appeared; callers carry on.
        """

        try:
            self._client.select_pane(session_name)
            self._client.send_keys(session_name, escape_keys(flatten_command(command)), literal=True)
            self._client.send_keys(session_name, EXECUTE_KEY)
        except TmuxError as exc:
            raise CommandInjectionError(
                f"Failed to start assistant in {session_name}: {exc}", session_name=session_name
            ) from exc

        logger.info("Assistant launch sent", extra={"session": session_name})
        return await self.wait_for_ready(session_name, ready_timeout)


__all__ = ["CommandInjectionError", "CommandInjector", "EXECUTE_KEY"]

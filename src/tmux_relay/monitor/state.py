"""Per-session state tracking driven by pane polling."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from ..conversation import ConversationSnapshot, extract_conversation
from ..tmux.reader import ContentReader
from .detection import IdleDetector
from .stabilizer import BufferStabilizer

logger = logging.getLogger(__name__)

TASK_COMPLETED = "taskCompleted"
WAITING_FOR_INPUT = "waitingForInput"


class SessionState(str, Enum):
    STARTING = "starting"
    WORKING = "working"
    WAITING = "waiting"
    COMPLETED = "completed"


# A cycle only ever moves forward through this order.
_STATE_ORDER = {
    SessionState.STARTING: 0,
    SessionState.WORKING: 1,
    SessionState.WAITING: 2,
    SessionState.COMPLETED: 3,
}


@dataclass(slots=True)
class MonitorEvent:
    """Event handed to the callback attached to a task cycle."""

    type: str
    session_name: str
    user_question: str = ""
    claude_response: str = ""
    full_trace: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_snapshot(
        cls, event_type: str, session_name: str, snapshot: ConversationSnapshot
    ) -> "MonitorEvent":
        return cls(
            type=event_type,
            session_name=session_name,
            user_question=snapshot.user_question,
            claude_response=snapshot.claude_response,
            full_trace=snapshot.full_trace,
        )


ResponseCallback = Callable[[MonitorEvent], Any]


@dataclass(slots=True)
class TaskCycle:
    callback: ResponseCallback
    state: SessionState
    attached_at: float
    working_since: float | None = None


class SessionMonitor:
    """Polls one session and reports rising edges of the idle signal."""

    def __init__(
        self,
        session_name: str,
        *,
        reader: ContentReader,
        detector: IdleDetector,
        on_idle: Callable[[str, str], Awaitable[bool]],
        interval: float = 2.0,
        capture_lines: int = 200,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.session_name = session_name
        self._reader = reader
        self._detector = detector
        self._on_idle = on_idle
        self._interval = interval
        self._capture_lines = capture_lines
        self._sleep = sleep or asyncio.sleep
        self._was_idle = False
        self._rearms = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"monitor:{self.session_name}"
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def rearm(self) -> None:
        """Forget the last idle observation so the current screen counts as a new edge."""

        self._was_idle = False
        self._rearms += 1

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def poll_once(self) -> bool:
        """Capture once; return True when an idle edge was handled."""

        try:
            content = self._reader.capture(self.session_name, self._capture_lines)
            idle = self._detector.is_idle(content)
        except Exception:
            logger.exception("Capture failed during polling", extra={"session": self.session_name})
            return False

        if not idle:
            self._was_idle = False
            return False
        if self._was_idle:
            return False

        # A handler may decline the edge (startup grace); it is offered again next poll.
        rearms = self._rearms
        handled = await self._on_idle(self.session_name, content)
        # A cycle attached while the edge was handled still needs a fresh edge.
        self._was_idle = handled and rearms == self._rearms
        return handled

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await self._sleep(self._interval)


class SessionRegistry:
    """Owns monitors, attached callbacks and states for every watched session.

    Each session has at most one monitor. A callback is attached for a single
    task cycle and detached when the cycle reaches ``completed``.
    """

    def __init__(
        self,
        reader: ContentReader,
        *,
        detector: IdleDetector | None = None,
        stabilizer: BufferStabilizer | None = None,
        poll_interval: float = 2.0,
        startup_grace: float = 5.0,
        stabilize_timeout: float = 10.0,
        conversation_lines: int = 5000,
        trace_lines: int = 1000,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._reader = reader
        self._detector = detector or IdleDetector()
        self._sleep = sleep
        self._stabilizer = stabilizer or BufferStabilizer(reader, sleep=sleep, clock=clock)
        self._poll_interval = poll_interval
        self._startup_grace = startup_grace
        self._stabilize_timeout = stabilize_timeout
        self._conversation_lines = conversation_lines
        self._trace_lines = trace_lines
        self._clock = clock or time.monotonic

        self.monitors: dict[str, SessionMonitor] = {}
        self.callbacks: dict[str, TaskCycle] = {}
        self.states: dict[str, SessionState] = {}
        self.started_at: dict[str, float] = {}

    def attach(
        self,
        session_name: str,
        callback: ResponseCallback,
        *,
        state: SessionState = SessionState.STARTING,
    ) -> None:
        """Attach the callback for a new task cycle on ``session_name``."""

        previous = self.callbacks.get(session_name)
        if previous is not None and previous.state is not SessionState.COMPLETED:
            logger.warning(
                "Superseding unfinished task cycle",
                extra={"session": session_name, "previous_state": previous.state.value},
            )
        now = self._clock()
        self.callbacks[session_name] = TaskCycle(
            callback=callback,
            state=state,
            attached_at=now,
            working_since=now if state is SessionState.WORKING else None,
        )
        self.states[session_name] = state
        monitor = self.monitors.get(session_name)
        if monitor is not None:
            # A follow-up answer can finish between two polls without a busy capture.
            monitor.rearm()
        logger.info(
            "Response callback attached",
            extra={"session": session_name, "state": state.value},
        )

    def detach(self, session_name: str) -> None:
        self.callbacks.pop(session_name, None)

    def state(self, session_name: str) -> SessionState | None:
        return self.states.get(session_name)

    def is_monitoring(self, session_name: str) -> bool:
        return session_name in self.monitors

    def start_monitoring(self, session_name: str) -> bool:
        """Start polling ``session_name``; a second call is a no-op."""

        if session_name in self.monitors:
            logger.debug("Already monitoring session", extra={"session": session_name})
            return False

        monitor = SessionMonitor(
            session_name,
            reader=self._reader,
            detector=self._detector,
            on_idle=self._handle_idle,
            interval=self._poll_interval,
            sleep=self._sleep,
        )
        self.monitors[session_name] = monitor
        self.started_at[session_name] = self._clock()
        monitor.start()
        logger.info("Started monitoring session", extra={"session": session_name})
        return True

    def ensure_monitoring(self, session_name: str) -> None:
        if session_name not in self.monitors:
            self.start_monitoring(session_name)

    def stop_monitoring(self, session_name: str) -> None:
        """Stop polling and forget all tracking for ``session_name``."""

        monitor = self.monitors.pop(session_name, None)
        if monitor is not None:
            monitor.cancel()
        self.callbacks.pop(session_name, None)
        self.states.pop(session_name, None)
        self.started_at.pop(session_name, None)
        if monitor is not None:
            logger.info("Stopped monitoring session", extra={"session": session_name})

    async def shutdown(self) -> None:
        monitors = list(self.monitors.values())
        self.monitors.clear()
        self.callbacks.clear()
        self.states.clear()
        self.started_at.clear()
        for monitor in monitors:
            await monitor.stop()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "state": self.states.get(name).value if name in self.states else None,
                "callback_attached": name in self.callbacks,
            }
            for name in self.monitors
        }

    def _advance(self, session_name: str, cycle: TaskCycle, new_state: SessionState) -> None:
        if _STATE_ORDER[new_state] < _STATE_ORDER[cycle.state]:
            raise ValueError(f"Invalid transition {cycle.state.value} -> {new_state.value}")
        cycle.state = new_state
        if new_state is SessionState.WORKING and cycle.working_since is None:
            cycle.working_since = self._clock()
        self.states[session_name] = new_state

    async def _emit(self, cycle: TaskCycle, event: MonitorEvent) -> None:
        try:
            result = cycle.callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Response callback failed",
                extra={"session": event.session_name, "event": event.type},
            )

    async def mark_ready(self, session_name: str) -> bool:
        """Move a starting cycle to working once the assistant prompt was seen.

        Returns False when no cycle is attached or it already left ``starting``.
        """

        cycle = self.callbacks.get(session_name)
        if cycle is None or cycle.state is not SessionState.STARTING:
            return False
        self._advance(session_name, cycle, SessionState.WORKING)
        await self._emit(cycle, MonitorEvent(type=WAITING_FOR_INPUT, session_name=session_name))
        return True

    async def _handle_idle(self, session_name: str, content: str) -> bool:
        cycle = self.callbacks.get(session_name)
        if cycle is None:
            logger.debug("Idle signal without attached callback", extra={"session": session_name})
            return True

        if cycle.state is SessionState.STARTING:
            await self.mark_ready(session_name)
            return True

        if cycle.state is not SessionState.WORKING:
            return True

        # Anything idle right after entering working predates the relayed prompt.
        started = max(
            self.started_at.get(session_name, 0.0),
            cycle.working_since or cycle.attached_at,
        )
        if self._clock() - started < self._startup_grace:
            logger.debug("Idle signal inside startup grace", extra={"session": session_name})
            return False

        self._advance(session_name, cycle, SessionState.WAITING)
        stable = await self._stabilizer.wait_for_stable(session_name, self._stabilize_timeout)
        if not stable:
            logger.info("Proceeding with unstable buffer", extra={"session": session_name})

        captured = self._reader.capture(session_name, self._conversation_lines) or content
        snapshot = extract_conversation(captured, trace_lines=self._trace_lines)
        logger.info(
            "Task completed",
            extra={
                "session": session_name,
                "question_chars": len(snapshot.user_question),
                "response_chars": len(snapshot.claude_response),
            },
        )

        # The cycle may have been replaced or stopped while stabilizing.
        if self.callbacks.get(session_name) is not cycle:
            return True
        self._advance(session_name, cycle, SessionState.COMPLETED)
        await self._emit(cycle, MonitorEvent.from_snapshot(TASK_COMPLETED, session_name, snapshot))
        if self.callbacks.get(session_name) is cycle:
            self.detach(session_name)
        return True


__all__ = [
    "MonitorEvent",
    "ResponseCallback",
    "SessionMonitor",
    "SessionRegistry",
    "SessionState",
    "TASK_COMPLETED",
    "TaskCycle",
    "WAITING_FOR_INPUT",
]

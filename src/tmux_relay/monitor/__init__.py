"""Session monitoring: idle detection, buffer stabilization and the state machine."""

from .detection import IdleDetector, detect_idle, detect_ready
from .stabilizer import BufferStabilizer
from .state import (
    TASK_COMPLETED,
    WAITING_FOR_INPUT,
    MonitorEvent,
    SessionMonitor,
    SessionRegistry,
    SessionState,
)

__all__ = [
    "BufferStabilizer",
    "IdleDetector",
    "MonitorEvent",
    "SessionMonitor",
    "SessionRegistry",
    "SessionState",
    "TASK_COMPLETED",
    "WAITING_FOR_INPUT",
    "detect_idle",
    "detect_ready",
]

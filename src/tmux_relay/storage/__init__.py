"""Persistence for mappings, queued commands, reply tokens and subagent activity."""

from .json_store import JsonFileStore
from .mappings import (
    MAX_SESSION_NAME_LENGTH,
    SessionCreateError,
    SessionLookup,
    ThreadSessionStore,
    derive_session_name,
    thread_key,
)
from .models import CommandStatus, RelayCommand, ReplyToken, SessionMapping, SubagentActivity
from .queue import CommandQueue, CommandQueueError
from .subagents import SubagentTracker
from .tokens import ReplyTokenStore

__all__ = [
    "MAX_SESSION_NAME_LENGTH",
    "CommandQueue",
    "CommandQueueError",
    "CommandStatus",
    "JsonFileStore",
    "RelayCommand",
    "ReplyToken",
    "ReplyTokenStore",
    "SessionCreateError",
    "SessionLookup",
    "SessionMapping",
    "SubagentActivity",
    "SubagentTracker",
    "ThreadSessionStore",
    "derive_session_name",
    "thread_key",
]

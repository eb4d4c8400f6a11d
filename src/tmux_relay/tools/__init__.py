"""Tool registration for the relay MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..bridge import RelayBridge, RelayError
from ..storage import CommandStatus, thread_key

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    relay_prompt: Any
    relay_reply: Any
    session_status: Any
    cleanup_session: Any
    list_sessions: Any
    cleanup_stale: Any
    queue_command: Any
    list_commands: Any
    run_queued_commands: Any


def register_tools(server: FastMCP, *, bridge: RelayBridge) -> ToolHandles:
    """Register the relay's MCP tools on the server."""

    async def _relay_prompt(
        channel_id: str,
        thread_ts: str,
        text: str,
        *,
        user_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Relay a chat message into the assistant session serving its thread."""

        try:
            result = await bridge.handle_message(channel_id, thread_ts, text, user_id=user_id)
        except RelayError as exc:
            _emit_log(
                context,
                "error",
                "Relay failed",
                extra={"channel_id": channel_id, "thread_ts": thread_ts, "error": str(exc)},
            )
            raise
        _emit_log(
            context,
            "info",
            "Relayed message",
            extra={
                "session": result.session_name,
                "is_new": result.is_new,
                "command": result.command,
            },
        )
        return result.as_dict()

    async def _relay_reply(token: str, text: str, context: Context | None = None) -> dict[str, Any]:
        try:
            result = await bridge.relay_reply(token, text)
        except RelayError as exc:
            _emit_log(context, "error", "Reply relay failed", extra={"token": token, "error": str(exc)})
            raise
        _emit_log(context, "info", "Relayed reply", extra={"session": result.session_name})
        return result.as_dict()

    def _session_status(channel_id: str, thread_ts: str, context: Context | None = None) -> dict[str, Any]:
        status = bridge.session_status(thread_key(channel_id, thread_ts))
        _emit_log(context, "debug", "Session status", extra={"session": status.get("session_name")})
        return status

    async def _cleanup_session(
        channel_id: str, thread_ts: str, context: Context | None = None
    ) -> dict[str, Any]:
        removed = await bridge.cleanup_session(thread_key(channel_id, thread_ts))
        _emit_log(
            context,
            "info",
            "Session cleanup",
            extra={"channel_id": channel_id, "thread_ts": thread_ts, "removed": removed},
        )
        return {"removed": removed}

    def _list_sessions(context: Context | None = None) -> dict[str, Any]:
        sessions = bridge.list_sessions()
        return {"count": len(sessions), "sessions": sessions}

    def _cleanup_stale(context: Context | None = None) -> dict[str, Any]:
        removed = bridge.cleanup_stale()
        _emit_log(context, "info", "Stale mappings removed", extra={"removed": removed})
        return {"removed": removed}

    def _queue_command(
        command: str, *, session_name: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        entry = bridge.queue_command(command, session_name=session_name)
        _emit_log(context, "info", "Queued command", extra={"command_id": entry.id})
        return entry.to_document()

    def _list_commands(status: str | None = None, context: Context | None = None) -> dict[str, Any]:
        if bridge.queue is None:
            raise RelayError("Command queue is not configured")
        commands = bridge.queue.list()
        if status is not None:
            wanted = CommandStatus(status)
            commands = [command for command in commands if command.status is wanted]
        return {"count": len(commands), "commands": [command.to_document() for command in commands]}

    async def _run_queued_commands(session_name: str, context: Context | None = None) -> dict[str, Any]:
        processed = await bridge.run_queued(session_name)
        _emit_log(
            context,
            "info",
            "Ran queued commands",
            extra={"session": session_name, "count": len(processed)},
        )
        return {"processed": [command.to_document() for command in processed]}

    tool_relay_prompt = server.tool(
        name="relay_prompt",
        description="Relay a thread message (or help/status/cleanup command) into its assistant session.",
    )(_relay_prompt)

    tool_relay_reply = server.tool(
        name="relay_reply",
        description="Send a reply into the session bound to a notification's reply token.",
    )(_relay_reply)

    tool_session_status = server.tool(
        name="session_status",
        description="Report the session, process and monitor state serving a thread.",
    )(_session_status)

    tool_cleanup_session = server.tool(
        name="cleanup_session",
        description="Terminate the session serving a thread and forget its mapping.",
    )(_cleanup_session)

    tool_list_sessions = server.tool(
        name="list_sessions",
        description="List thread mappings whose tmux sessions are still alive.",
    )(_list_sessions)

    tool_cleanup_stale = server.tool(
        name="cleanup_stale",
        description="Remove thread mappings whose tmux sessions no longer exist.",
    )(_cleanup_stale)

    tool_queue_command = server.tool(
        name="queue_command",
        description="Append a command to the relay command queue.",
    )(_queue_command)

    tool_list_commands = server.tool(
        name="list_commands",
        description="List queued relay commands, optionally filtered by status.",
    )(_list_commands)

    tool_run_queued = server.tool(
        name="run_queued_commands",
        description="Send pending queued commands to a tmux session in order.",
    )(_run_queued_commands)

    return ToolHandles(
        relay_prompt=tool_relay_prompt,
        relay_reply=tool_relay_reply,
        session_status=tool_session_status,
        cleanup_session=tool_cleanup_session,
        list_sessions=tool_list_sessions,
        cleanup_stale=tool_cleanup_stale,
        queue_command=tool_queue_command,
        list_commands=tool_list_commands,
        run_queued_commands=tool_run_queued,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]

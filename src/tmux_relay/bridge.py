"""Inbound relay core: routes external messages into assistant sessions."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .auth import authorization_reason, is_authorized
from .channels import ChannelLoader
from .config import RelaySettings
from .dispatcher import DispatchResult, NotificationDispatcher
from .injector import CommandInjectionError, CommandInjector
from .monitor import (
    TASK_COMPLETED,
    BufferStabilizer,
    IdleDetector,
    MonitorEvent,
    SessionRegistry,
    SessionState,
)
from .storage import (
    CommandQueue,
    CommandStatus,
    RelayCommand,
    ReplyTokenStore,
    SessionCreateError,
    SessionMapping,
    SubagentTracker,
    ThreadSessionStore,
    thread_key,
)
from .tmux import ContentReader, TmuxClient, TmuxError, flatten_command

logger = logging.getLogger(__name__)

PROMPT_PREFIX = "User request: "
BUILTIN_COMMANDS = {"help", "status", "cleanup"}

HELP_TEXT = (
    "Send a message in this thread to relay it to an assistant session.\n"
    "\n"
    "Commands:\n"
    "  status   show the session serving this thread\n"
    "  cleanup  terminate the session for this thread\n"
    "  help     show this help\n"
    "\n"
    "Attach locally with `tmux attach -t <session-name>`."
)


class RelayError(RuntimeError):
    """Raised when a relayed message cannot be delivered.

    The message includes the underlying error text so it can be shown to the
    sender as is.
    """

    def __init__(self, message: str, *, session_name: str | None = None) -> None:
        super().__init__(message)
        self.session_name = session_name


class RelayUnauthorizedError(RelayError):
    """Raised when the sender is not allowed to use the relay."""


@dataclass(slots=True)
class RelayResult:
    session_name: str | None
    is_new: bool = False
    message: str = ""
    command: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "session_name": self.session_name,
            "is_new": self.is_new,
            "message": self.message,
            "command": self.command,
            "details": self.details,
        }


def build_prompt(prompt: str) -> str:
    return flatten_command(f"{PROMPT_PREFIX}{prompt}")


def _preview(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class RelayBridge:
    """Glue between the mapping store, the injector, the monitors and the dispatcher."""

    def __init__(
        self,
        *,
        client: TmuxClient,
        store: ThreadSessionStore,
        registry: SessionRegistry,
        injector: CommandInjector,
        dispatcher: NotificationDispatcher,
        queue: CommandQueue | None = None,
        tokens: ReplyTokenStore | None = None,
        assistant_command: str = "claude",
        ready_timeout: float = 45.0,
        whitelist: Iterable[str] = (),
        channel_id: str | None = None,
        cleanup_interval_hours: float = 6.0,
        max_session_age_hours: float = 24.0,
    ) -> None:
        self._client = client
        self.store = store
        self.registry = registry
        self.injector = injector
        self.dispatcher = dispatcher
        self.queue = queue
        self.tokens = tokens
        self._assistant_command = assistant_command
        self._ready_timeout = ready_timeout
        self._whitelist = tuple(whitelist)
        self._channel_id = channel_id
        self._cleanup_interval_hours = cleanup_interval_hours
        self._max_session_age_hours = max_session_age_hours
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._cleanup_task: asyncio.Task | None = None
        self.last_dispatch: DispatchResult | None = None

        store.add_removal_listener(self._on_mapping_removed)

    @classmethod
    def from_settings(cls, settings: RelaySettings, client: TmuxClient | None = None) -> "RelayBridge":
        client = client or TmuxClient(Path(settings.tmux_path) if settings.tmux_path else None)
        reader = ContentReader(client)
        detector = IdleDetector(idle_pattern=settings.idle_pattern, busy_patterns=settings.busy_patterns)
        registry = SessionRegistry(
            reader,
            detector=detector,
            stabilizer=BufferStabilizer(
                reader,
                interval=settings.stabilize_interval,
                stable_checks=settings.stable_checks,
            ),
            poll_interval=settings.poll_interval,
            startup_grace=settings.startup_grace,
            stabilize_timeout=settings.stabilize_timeout,
        )
        tokens = ReplyTokenStore(settings.tokens_path)
        dispatcher = NotificationDispatcher(
            ChannelLoader(settings.resolved_channels_path).load_all(),
            tracker=SubagentTracker(settings.subagents_path),
            token_store=tokens,
            notify_subagent_waiting=settings.notify_subagent_waiting,
            project=settings.working_dir.name,
        )
        return cls(
            client=client,
            store=ThreadSessionStore(
                settings.mappings_path,
                client,
                working_dir=settings.working_dir,
                prefix=settings.session_prefix,
            ),
            registry=registry,
            injector=CommandInjector(client, detector=detector),
            dispatcher=dispatcher,
            queue=CommandQueue(settings.queue_path),
            tokens=tokens,
            assistant_command=settings.assistant_command,
            ready_timeout=settings.ready_timeout,
            whitelist=settings.whitelist,
            channel_id=settings.channel_id,
            cleanup_interval_hours=settings.cleanup_interval_hours,
            max_session_age_hours=settings.max_session_age_hours,
        )

    def _on_mapping_removed(self, external_id: str, mapping: SessionMapping) -> None:
        self.registry.stop_monitoring(mapping.session_name)

    def _response_callback(self, external_id: str | None):
        async def _callback(event: MonitorEvent) -> None:
            if event.type != TASK_COMPLETED:
                logger.debug(
                    "Assistant ready for input",
                    extra={"session": event.session_name, "thread": external_id},
                )
                return
            metadata = {
                "userQuestion": event.user_question or "No user input",
                "claudeResponse": event.claude_response or "No response captured",
                "tmuxSession": event.session_name,
                "fullExecutionTrace": event.full_trace or None,
                "threadId": external_id,
            }
            self.last_dispatch = await self.dispatcher.notify("completed", metadata)

        return _callback

    async def handle_message(
        self,
        channel_id: str,
        thread_ts: str,
        text: str,
        *,
        user_id: str | None = None,
    ) -> RelayResult:
        """Handle one inbound chat message for a thread."""

        if not is_authorized(
            user_id, channel_id, whitelist=self._whitelist, configured_id=self._channel_id
        ):
            reason = authorization_reason(
                user_id, channel_id, whitelist=self._whitelist, configured_id=self._channel_id
            )
            logger.warning("Unauthorized relay request", extra={"reason": reason})
            raise RelayUnauthorizedError(f"Unauthorized: {reason}")

        external_id = thread_key(channel_id, thread_ts)
        cleaned = text.strip()
        command = cleaned.lstrip("/").lower()
        if command in BUILTIN_COMMANDS:
            if command == "help":
                return RelayResult(None, message=HELP_TEXT, command="help")
            if command == "status":
                status = self.session_status(external_id)
                return RelayResult(
                    status.get("session_name"),
                    message=self._format_status(status),
                    command="status",
                    details=status,
                )
            removed = await self.cleanup_session(external_id)
            return RelayResult(
                None,
                message="Session terminated." if removed else "No active session for this thread.",
                command="cleanup",
                details={"removed": removed},
            )

        if not cleaned:
            return RelayResult(None, message="Nothing to relay.")
        return await self.relay_prompt(
            external_id, cleaned, channel_id=channel_id, thread_ts=thread_ts
        )

    async def relay_prompt(self, external_id: str, prompt: str, **mapping_fields: Any) -> RelayResult:
        """Deliver ``prompt`` to the session serving ``external_id``.

        New sessions get the assistant launched first. Completion is reported
        through the dispatcher once the monitor sees the assistant go idle.
        """

        try:
            lookup = self.store.get_or_create(external_id, **mapping_fields)
        except SessionCreateError as exc:
            raise RelayError(f"Failed to start assistant session: {exc}") from exc

        session_name = lookup.session_name
        full_prompt = build_prompt(prompt)
        async with self._locks[session_name]:
            try:
                if lookup.is_new:
                    self.registry.attach(
                        session_name, self._response_callback(external_id), state=SessionState.STARTING
                    )
                    self.registry.start_monitoring(session_name)
                    ready = await self.injector.start_assistant(
                        session_name, self._assistant_command, ready_timeout=self._ready_timeout
                    )
                    if not ready:
                        logger.warning(
                            "Sending prompt without ready confirmation",
                            extra={"session": session_name},
                        )
                    await self.registry.mark_ready(session_name)
                else:
                    self.registry.ensure_monitoring(session_name)
                    self.registry.attach(
                        session_name, self._response_callback(external_id), state=SessionState.WORKING
                    )
                await self.injector.send(session_name, full_prompt)
            except CommandInjectionError as exc:
                self.registry.detach(session_name)
                if lookup.is_new:
                    await self.cleanup_session(external_id)
                raise RelayError(
                    f"Failed to send message to assistant: {exc} (session {session_name})",
                    session_name=session_name,
                ) from exc

        logger.info(
            "Relayed prompt",
            extra={"thread": external_id, "session": session_name, "is_new": lookup.is_new},
        )
        verb = "Started new assistant session" if lookup.is_new else "Message sent to assistant"
        return RelayResult(
            session_name,
            is_new=lookup.is_new,
            message=f"{verb} `{session_name}`: {_preview(prompt)}",
        )

    async def relay_reply(self, token: str, text: str) -> RelayResult:
        """Inject a reply received for a notification carrying ``token``."""

        if self.tokens is None:
            raise RelayError("Reply tokens are not enabled")
        record = self.tokens.resolve(token)
        if record is None:
            raise RelayError(f"Unknown or expired reply token '{token}'")

        session_name = record.session_name
        if not self._session_alive(session_name):
            raise RelayError(
                f"Session {session_name} for token '{token}' no longer exists",
                session_name=session_name,
            )

        async with self._locks[session_name]:
            self.registry.ensure_monitoring(session_name)
            self.registry.attach(
                session_name,
                self._response_callback(record.metadata.get("threadId")),
                state=SessionState.WORKING,
            )
            try:
                await self.injector.send(session_name, text)
            except CommandInjectionError as exc:
                self.registry.detach(session_name)
                raise RelayError(
                    f"Failed to send reply to assistant: {exc} (session {session_name})",
                    session_name=session_name,
                ) from exc

        return RelayResult(session_name, message=f"Reply sent to `{session_name}`")

    def _session_alive(self, session_name: str) -> bool:
        try:
            return self._client.has_session(session_name)
        except TmuxError:
            return False

    def session_status(self, external_id: str) -> dict[str, Any]:
        mapping = self.store.get(external_id)
        if mapping is None:
            return {"thread": external_id, "active": False, "session_name": None}
        state = self.registry.state(mapping.session_name)
        try:
            pane_command = self._client.pane_command(mapping.session_name)
        except TmuxError:
            pane_command = None
        return {
            "thread": external_id,
            "active": True,
            "session_name": mapping.session_name,
            "working_dir": mapping.working_dir,
            "created_at": mapping.created_at.isoformat(),
            "pane_command": pane_command,
            "monitoring": self.registry.is_monitoring(mapping.session_name),
            "state": state.value if state else None,
        }

    @staticmethod
    def _format_status(status: dict[str, Any]) -> str:
        if not status.get("active"):
            return "No active session for this thread."
        return "\n".join(
            [
                f"Session: {status['session_name']}",
                f"Created: {status['created_at']}",
                f"Process: {status.get('pane_command') or 'unknown'}",
                f"State: {status.get('state') or 'idle'}",
            ]
        )

    async def cleanup_session(self, external_id: str) -> bool:
        """Kill the thread's session, stop its monitor and drop the mapping."""

        mapping = self.store.mappings.get(external_id)
        if mapping is None:
            return False
        if self._session_alive(mapping.session_name):
            try:
                self._client.kill_session(mapping.session_name)
            except TmuxError as exc:
                logger.warning(
                    "Failed to kill session",
                    extra={"session": mapping.session_name, "error": str(exc)},
                )
        self.registry.stop_monitoring(mapping.session_name)
        return self.store.remove(external_id)

    def list_sessions(self) -> list[dict[str, Any]]:
        sessions = []
        for key, mapping in self.store.list_active().items():
            state = self.registry.state(mapping.session_name)
            sessions.append(
                {
                    "thread": key,
                    "session_name": mapping.session_name,
                    "created_at": mapping.created_at.isoformat(),
                    "monitoring": self.registry.is_monitoring(mapping.session_name),
                    "state": state.value if state else None,
                }
            )
        return sessions

    def cleanup_stale(self) -> int:
        return self.store.cleanup_stale()

    def cleanup_idle(self, max_age_hours: float | None = None) -> int:
        return self.store.cleanup_idle(max_age_hours or self._max_session_age_hours)

    def queue_command(self, command: str, *, session_name: str | None = None) -> RelayCommand:
        if self.queue is None:
            raise RelayError("Command queue is not configured")
        return self.queue.enqueue(command, session_name=session_name)

    async def run_queued(self, session_name: str) -> list[RelayCommand]:
        """Send pending queued commands to ``session_name`` in queue order.

        The batch runs as one task cycle, so a single ``completed`` notification
        follows once the assistant goes idle after the last command.
        """

        if self.queue is None:
            raise RelayError("Command queue is not configured")

        entries = [
            entry
            for entry in self.queue.pending()
            if not entry.session_name or entry.session_name == session_name
        ]
        if not entries:
            return []

        found = self.store.find_by_session_name(session_name)
        external_id = found[0] if found else None
        processed: list[RelayCommand] = []
        async with self._locks[session_name]:
            self.registry.ensure_monitoring(session_name)
            self.registry.attach(
                session_name, self._response_callback(external_id), state=SessionState.WORKING
            )
            for entry in entries:
                self.queue.mark(entry.id, CommandStatus.EXECUTING)
                try:
                    await self.injector.send(session_name, entry.command)
                except CommandInjectionError as exc:
                    processed.append(
                        self.queue.mark(entry.id, CommandStatus.FAILED, error=str(exc))
                    )
                    continue
                processed.append(self.queue.mark(entry.id, CommandStatus.COMPLETED))
            if all(entry.status is CommandStatus.FAILED for entry in processed):
                self.registry.detach(session_name)
        return processed

    async def _periodic_cleanup(self) -> None:
        interval = self._cleanup_interval_hours * 3600
        while True:
            try:
                self.cleanup_stale()
                self.cleanup_idle()
            except Exception:
                logger.exception("Periodic session cleanup failed")
            await asyncio.sleep(interval)

    def start_periodic_cleanup(self) -> None:
        """Run idle cleanup now and then every ``cleanup_interval_hours``."""

        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._periodic_cleanup(), name="relay:periodic-cleanup"
        )
        logger.info(
            "Periodic session cleanup enabled",
            extra={
                "interval_hours": self._cleanup_interval_hours,
                "max_age_hours": self._max_session_age_hours,
            },
        )

    async def shutdown(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.registry.shutdown()


__all__ = [
    "HELP_TEXT",
    "PROMPT_PREFIX",
    "RelayBridge",
    "RelayError",
    "RelayResult",
    "RelayUnauthorizedError",
    "build_prompt",
]

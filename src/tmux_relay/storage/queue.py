"""Relay command queue persisted to JSON."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

from pydantic import ValidationError

from .json_store import JsonFileStore
from .models import CommandStatus, RelayCommand

logger = logging.getLogger(__name__)

QUEUE_KEY = "commandQueue"


class CommandQueueError(RuntimeError):
    """Raised for unknown command ids or invalid status transitions."""


class CommandQueue:
    """Ordered list of relayed commands.

    Entries only move forward: once a command reaches ``completed``,
    ``failed`` or ``cancelled`` its status is final.
    """

    def __init__(
        self,
        path: Path,
        *,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = JsonFileStore(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: uuid4().hex[:12])

    def _load(self) -> tuple[dict[str, Any], list[RelayCommand]]:
        document = self._store.load({})
        commands: list[RelayCommand] = []
        for entry in document.get(QUEUE_KEY) or []:
            try:
                commands.append(RelayCommand.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Dropping invalid queue entry", extra={"error": str(exc)})
        return document, commands

    def _save(self, document: dict[str, Any], commands: list[RelayCommand]) -> bool:
        document[QUEUE_KEY] = [command.to_document() for command in commands]
        return self._store.save(document)

    def enqueue(self, command: str, *, session_name: str | None = None) -> RelayCommand:
        document, commands = self._load()
        entry = RelayCommand(
            id=self._id_factory(),
            command=command,
            queued_at=self._clock(),
            session_name=session_name,
        )
        commands.append(entry)
        self._save(document, commands)
        logger.info("Queued relay command", extra={"command_id": entry.id})
        return entry

    def get(self, command_id: str) -> RelayCommand | None:
        _, commands = self._load()
        return next((command for command in commands if command.id == command_id), None)

    def mark(
        self,
        command_id: str,
        status: CommandStatus | str,
        *,
        error: str | None = None,
    ) -> RelayCommand:
        new_status = CommandStatus(status)
        document, commands = self._load()
        for command in commands:
            if command.id != command_id:
                continue
            if command.status.terminal:
                raise CommandQueueError(
                    f"Command '{command_id}' is already {command.status.value}"
                )
            command.status = new_status
            if new_status.terminal:
                command.completed_at = self._clock()
            if error is not None:
                command.error = error
            self._save(document, commands)
            return command
        raise CommandQueueError(f"Command '{command_id}' not found")

    def list(self) -> list[RelayCommand]:
        return self._load()[1]

    def pending(self) -> list[RelayCommand]:
        return [command for command in self.list() if command.status is CommandStatus.PENDING]

    def clear_pending(self, reason: str = "Manually cancelled") -> int:
        document, commands = self._load()
        cleared = 0
        for command in commands:
            if command.status is CommandStatus.PENDING:
                command.status = CommandStatus.CANCELLED
                command.completed_at = self._clock()
                command.error = reason
                cleared += 1
        if cleared:
            self._save(document, commands)
        return cleared

    def cleanup(self, max_age_hours: float = 24.0) -> int:
        """Drop finished commands older than ``max_age_hours``."""

        cutoff = self._clock() - timedelta(hours=max_age_hours)
        document, commands = self._load()
        kept = [
            command
            for command in commands
            if not command.status.terminal or (command.completed_at or command.queued_at) > cutoff
        ]
        removed = len(commands) - len(kept)
        if removed:
            self._save(document, kept)
        logger.info("Command queue cleanup finished", extra={"removed": removed})
        return removed


__all__ = ["CommandQueue", "CommandQueueError", "QUEUE_KEY"]

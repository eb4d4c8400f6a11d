"""Durable mapping from external threads to tmux sessions."""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from ..tmux.client import TmuxClient, TmuxError
from .json_store import JsonFileStore
from .models import SessionMapping

logger = logging.getLogger(__name__)

MAX_SESSION_NAME_LENGTH = 50
_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9]+")

RemovalListener = Callable[[str, SessionMapping], None]


class SessionCreateError(RuntimeError):
    """Raised when the tmux session backing a thread cannot be created."""


@dataclass(slots=True)
class SessionLookup:
    session_name: str
    is_new: bool
    working_dir: str


def thread_key(channel_id: str, thread_ts: str) -> str:
    return f"{channel_id}:{thread_ts}"


def derive_session_name(external_id: str, prefix: str = "relay") -> str:
    """Derive a tmux-safe session name from an external thread identifier.

    The readable part is sanitized and truncated; the hash suffix keeps ids
    that differ only in disallowed characters from colliding. The suffix is
    never truncated, so an oversized prefix is shortened instead.
    """

    digest = hashlib.sha1(external_id.encode("utf-8")).hexdigest()[:8]
    head = prefix[: MAX_SESSION_NAME_LENGTH - len(digest) - 1].rstrip("-")
    sanitized = _DISALLOWED_RE.sub("-", external_id).strip("-")
    room = MAX_SESSION_NAME_LENGTH - len(head) - len(digest) - 2
    readable = sanitized[: max(room, 0)].rstrip("-")
    if readable:
        return f"{head}-{readable}-{digest}"
    return f"{head}-{digest}"


class ThreadSessionStore:
    """Thread-to-session mappings persisted as one JSON object.

    The file is read once at construction and rewritten on every mutation.
    A single process should own the file; concurrent writers can lose updates.
    """

    def __init__(
        self,
        path: Path,
        client: TmuxClient,
        *,
        working_dir: Path | str = ".",
        prefix: str = "relay",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = JsonFileStore(path)
        self._client = client
        self._working_dir = str(working_dir)
        self._prefix = prefix
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._mappings: dict[str, SessionMapping] = {}
        self._unparsed: dict[str, Any] = {}
        self._listeners: list[RemovalListener] = []
        self.reload()

    @property
    def path(self) -> Path:
        return self._store.path

    @property
    def mappings(self) -> dict[str, SessionMapping]:
        return dict(self._mappings)

    def add_removal_listener(self, listener: RemovalListener) -> None:
        self._listeners.append(listener)

    def reload(self) -> None:
        document = self._store.load({})
        self._mappings = {}
        self._unparsed = {}
        for key, value in document.items():
            try:
                self._mappings[key] = SessionMapping.model_validate(value)
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid mapping entry",
                    extra={"key": key, "error": str(exc)},
                )
                self._unparsed[key] = value
        logger.debug("Loaded thread mappings", extra={"count": len(self._mappings)})

    def save(self) -> bool:
        document: dict[str, Any] = dict(self._unparsed)
        for key, mapping in self._mappings.items():
            document[key] = mapping.to_document()
        return self._store.save(document)

    def _session_alive(self, session_name: str) -> bool:
        try:
            return self._client.has_session(session_name)
        except TmuxError:
            return False

    def _purge(self, external_id: str, *, reason: str) -> SessionMapping | None:
        mapping = self._mappings.pop(external_id, None)
        if mapping is None:
            return None
        logger.info(
            "Purging thread mapping",
            extra={"thread": external_id, "session": mapping.session_name, "reason": reason},
        )
        for listener in list(self._listeners):
            try:
                listener(external_id, mapping)
            except Exception:
                logger.exception("Removal listener failed", extra={"thread": external_id})
        return mapping

    def get(self, external_id: str) -> SessionMapping | None:
        """Return the live mapping for ``external_id``; stale entries are purged."""

        mapping = self._mappings.get(external_id)
        if mapping is None:
            return None
        if not self._session_alive(mapping.session_name):
            self._purge(external_id, reason="stale")
            self.save()
            return None
        return mapping

    def get_or_create(
        self,
        external_id: str,
        *,
        working_dir: Path | str | None = None,
        **extra: Any,
    ) -> SessionLookup:
        existing = self.get(external_id)
        if existing is not None:
            return SessionLookup(existing.session_name, False, existing.working_dir)

        session_name = derive_session_name(external_id, self._prefix)
        directory = str(working_dir or self._working_dir)
        is_new = True
        if self._session_alive(session_name):
            logger.info(
                "Adopting existing tmux session",
                extra={"thread": external_id, "session": session_name},
            )
            is_new = False
        else:
            try:
                self._client.new_session(session_name, directory)
            except TmuxError as exc:
                raise SessionCreateError(
                    f"Failed to create tmux session {session_name}: {exc}"
                ) from exc

        mapping = SessionMapping(
            session_name=session_name,
            working_dir=directory,
            created_at=self._clock(),
            **extra,
        )
        self._mappings[external_id] = mapping
        self.save()
        logger.info(
            "Created thread mapping",
            extra={"thread": external_id, "session": session_name, "is_new": is_new},
        )
        return SessionLookup(session_name, is_new, directory)

    def remove(self, external_id: str) -> bool:
        """Delete the mapping; killing the tmux session is the caller's job."""

        if self._purge(external_id, reason="removed") is None:
            return False
        self.save()
        return True

    def cleanup_stale(self) -> int:
        stale = [
            key
            for key, mapping in self._mappings.items()
            if not self._session_alive(mapping.session_name)
        ]
        for key in stale:
            self._purge(key, reason="stale")
        if stale:
            self.save()
        logger.info("Stale mapping cleanup finished", extra={"removed": len(stale)})
        return len(stale)

    def cleanup_idle(self, max_age_hours: float = 24.0) -> int:
        """Purge mappings older than ``max_age_hours`` and kill their sessions."""

        cutoff = self._clock() - timedelta(hours=max_age_hours)
        expired = [key for key, mapping in self._mappings.items() if mapping.created_at < cutoff]
        for key in expired:
            mapping = self._mappings[key]
            if self._session_alive(mapping.session_name):
                try:
                    self._client.kill_session(mapping.session_name)
                except TmuxError as exc:
                    logger.warning(
                        "Failed to kill idle session",
                        extra={"session": mapping.session_name, "error": str(exc)},
                    )
            self._purge(key, reason="idle")
        if expired:
            self.save()
        logger.info(
            "Idle session cleanup finished",
            extra={"removed": len(expired), "max_age_hours": max_age_hours},
        )
        return len(expired)

    def find_by_session_name(self, session_name: str) -> tuple[str, SessionMapping] | None:
        for key, mapping in self._mappings.items():
            if mapping.session_name == session_name:
                return key, mapping
        return None

    def list_active(self) -> dict[str, SessionMapping]:
        return {
            key: mapping
            for key, mapping in self._mappings.items()
            if self._session_alive(mapping.session_name)
        }


__all__ = [
    "MAX_SESSION_NAME_LENGTH",
    "SessionCreateError",
    "SessionLookup",
    "ThreadSessionStore",
    "derive_session_name",
    "thread_key",
]

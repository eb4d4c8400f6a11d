"""Buffer of subagent activity reported between completion notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from .json_store import JsonFileStore
from .models import SubagentActivity

logger = logging.getLogger(__name__)


class SubagentTracker:
    def __init__(self, path: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self._store = JsonFileStore(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def add_activity(
        self,
        session_id: str,
        *,
        type: str = "subagent",
        description: str = "Subagent activity",
        details: dict[str, Any] | None = None,
    ) -> SubagentActivity:
        document = self._store.load({})
        now = self._clock()
        entry = document.setdefault(session_id, {"startTime": now.isoformat(), "activities": []})
        activity = SubagentActivity(
            timestamp=now, type=type, description=description, details=details or {}
        )
        entry.setdefault("activities", []).append(activity.model_dump(mode="json"))
        self._store.save(document)
        return activity

    def activities(self, session_id: str) -> list[SubagentActivity]:
        entry = self._store.load({}).get(session_id) or {}
        parsed: list[SubagentActivity] = []
        for raw in entry.get("activities", []):
            try:
                parsed.append(SubagentActivity.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping invalid subagent activity", extra={"session": session_id})
        return parsed

    def clear(self, session_id: str) -> None:
        document = self._store.load({})
        if document.pop(session_id, None) is not None:
            self._store.save(document)

    def summarize(self, session_id: str) -> str:
        """Plain-text summary grouped by activity type."""

        grouped: dict[str, list[SubagentActivity]] = defaultdict(list)
        for activity in self.activities(session_id):
            grouped[activity.type].append(activity)
        if not grouped:
            return ""

        lines: list[str] = []
        for activity_type, items in grouped.items():
            lines.append(f"{activity_type} ({len(items)} activities)")
            for item in items:
                lines.append(f"- [{item.timestamp.strftime('%H:%M:%S')}] {item.description}")
        return "\n".join(lines)


__all__ = ["SubagentTracker"]

"""Short-lived reply tokens binding an external chat to a tmux session."""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from .json_store import JsonFileStore
from .models import ReplyToken

logger = logging.getLogger(__name__)

TOKEN_ALPHABET = string.ascii_uppercase + string.digits
TOKEN_LENGTH = 8


def generate_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


class ReplyTokenStore:
    """Issue and resolve reply tokens; expired tokens are pruned on access."""

    def __init__(
        self,
        path: Path,
        *,
        ttl_hours: float = 24.0,
        clock: Callable[[], datetime] | None = None,
        token_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = JsonFileStore(path)
        self._ttl = timedelta(hours=ttl_hours)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._token_factory = token_factory or generate_token

    def _load(self) -> dict[str, ReplyToken]:
        tokens: dict[str, ReplyToken] = {}
        for key, value in self._store.load({}).items():
            try:
                tokens[key] = ReplyToken.model_validate(value)
            except ValidationError:
                logger.warning("Dropping invalid reply token", extra={"token": key})
        return tokens

    def _save(self, tokens: dict[str, ReplyToken]) -> bool:
        return self._store.save({key: token.to_document() for key, token in tokens.items()})

    def _prune(self, tokens: dict[str, ReplyToken]) -> int:
        now = self._clock()
        expired = [key for key, token in tokens.items() if token.expires_at <= now]
        for key in expired:
            del tokens[key]
        return len(expired)

    def issue(self, session_name: str, metadata: dict[str, Any] | None = None) -> ReplyToken:
        tokens = self._load()
        self._prune(tokens)
        token = self._token_factory()
        while token in tokens:
            token = self._token_factory()
        now = self._clock()
        record = ReplyToken(
            token=token,
            session_name=session_name,
            created_at=now,
            expires_at=now + self._ttl,
            metadata=metadata or {},
        )
        tokens[token] = record
        self._save(tokens)
        return record

    def resolve(self, token: str) -> ReplyToken | None:
        tokens = self._load()
        pruned = self._prune(tokens)
        if pruned:
            self._save(tokens)
        return tokens.get(token.strip().upper())

    def revoke(self, token: str) -> bool:
        tokens = self._load()
        if tokens.pop(token.strip().upper(), None) is None:
            return False
        return self._save(tokens)

    def cleanup(self) -> int:
        tokens = self._load()
        removed = self._prune(tokens)
        if removed:
            self._save(tokens)
        return removed


__all__ = ["ReplyTokenStore", "TOKEN_ALPHABET", "TOKEN_LENGTH", "generate_token"]

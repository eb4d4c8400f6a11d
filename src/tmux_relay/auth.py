"""Authorization of inbound relay requests."""

from __future__ import annotations

from typing import Iterable


def is_authorized(
    user_id: str | int | None,
    channel_id: str | int | None,
    *,
    whitelist: Iterable[str | int] = (),
    configured_id: str | int | None = None,
) -> bool:
    """Whitelist first, then the configured channel; with neither, allow everyone."""

    allowed = {str(item) for item in whitelist}
    if allowed:
        return str(channel_id) in allowed or str(user_id) in allowed
    if not configured_id:
        return True
    return str(channel_id) == str(configured_id)


def authorization_reason(
    user_id: str | int | None,
    channel_id: str | int | None,
    *,
    whitelist: Iterable[str | int] = (),
    configured_id: str | int | None = None,
) -> str:
    allowed = {str(item) for item in whitelist}
    if allowed:
        if str(channel_id) in allowed:
            return f"Channel {channel_id} is in whitelist"
        if str(user_id) in allowed:
            return f"User {user_id} is in whitelist"
        return f"Channel {channel_id} and user {user_id} not in whitelist"
    if not configured_id:
        return "Open mode - no whitelist or configured ID"
    if str(channel_id) == str(configured_id):
        return f"Channel {channel_id} matches configured ID"
    return f"Channel {channel_id} does not match configured ID {configured_id}"


__all__ = ["authorization_reason", "is_authorized"]

"""Assistant hook entry point: notify channels that a task completed or is waiting."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from tmux_relay.channels import ChannelConfigError, ChannelLoader
from tmux_relay.config import RelaySettings, get_settings
from tmux_relay.conversation import extract_conversation
from tmux_relay.dispatcher import NotificationDispatcher
from tmux_relay.server import configure_logging
from tmux_relay.storage import ReplyTokenStore, SubagentTracker, ThreadSessionStore
from tmux_relay.tmux import ContentReader, TmuxClient, TmuxNotFoundError


def load_client(settings: RelaySettings) -> TmuxClient:
    return TmuxClient(Path(settings.tmux_path) if settings.tmux_path else None)


def build_dispatcher(settings: RelaySettings) -> NotificationDispatcher:
    return NotificationDispatcher(
        ChannelLoader(settings.resolved_channels_path).load_all(),
        tracker=SubagentTracker(settings.subagents_path),
        token_store=ReplyTokenStore(settings.tokens_path),
        notify_subagent_waiting=settings.notify_subagent_waiting,
    )


def send_notification(
    args: argparse.Namespace,
    *,
    settings: RelaySettings | None = None,
    client: TmuxClient | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> int:
    settings = settings or get_settings()
    try:
        client = client or load_client(settings)
    except TmuxNotFoundError as exc:
        print(f"tmux unavailable: {exc}", file=sys.stderr)
        return 1

    session_name = args.session or client.current_session() or os.environ.get("TMUX_SESSION")
    if not session_name:
        print("Not running inside a tmux session; pass --session", file=sys.stderr)
        return 1

    content = ContentReader(client).capture(session_name, 5000)
    snapshot = extract_conversation(content, trace_lines=1000)
    if not snapshot.claude_response:
        print(f"No assistant response captured from {session_name}", file=sys.stderr)

    store = ThreadSessionStore(
        settings.mappings_path,
        client,
        working_dir=settings.working_dir,
        prefix=settings.session_prefix,
    )
    thread = store.find_by_session_name(session_name)

    finished = args.type == "completed"
    metadata = {
        "userQuestion": snapshot.user_question or "No user input captured",
        "claudeResponse": snapshot.claude_response
        or ("Task completed (response not captured)" if finished else "Waiting for input"),
        "tmuxSession": session_name,
        "fullExecutionTrace": snapshot.full_trace or None,
        "threadId": thread[0] if thread else None,
    }

    try:
        dispatcher = dispatcher or build_dispatcher(settings)
    except ChannelConfigError as exc:
        print(f"Channel configuration error: {exc}", file=sys.stderr)
        return 1

    result = asyncio.run(
        dispatcher.notify(args.type, metadata, subagent=args.subagent, project=Path.cwd().name)
    )
    print(json.dumps(result.as_dict(), indent=2))
    return 0 if result.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send assistant hook notifications")
    parser.add_argument("type", nargs="?", default="completed", choices=["completed", "waiting"])
    parser.add_argument("--session", help="tmux session name (defaults to the current session)")
    parser.add_argument(
        "--subagent",
        action="store_true",
        help="The event comes from subagent activity",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(get_settings().log_level)
    return send_notification(args)


if __name__ == "__main__":
    raise SystemExit(main())

"""tmux relay diagnostics and maintenance CLI."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from tmux_relay.config import RelaySettings, get_settings
from tmux_relay.storage import CommandQueue, CommandQueueError, CommandStatus, ThreadSessionStore
from tmux_relay.tmux import TmuxClient, TmuxNotFoundError


def load_store(settings: RelaySettings) -> ThreadSessionStore:
    try:
        client = TmuxClient(Path(settings.tmux_path) if settings.tmux_path else None)
    except TmuxNotFoundError as exc:
        print(f"tmux unavailable: {exc}")
        raise SystemExit(1)
    return ThreadSessionStore(
        settings.mappings_path,
        client,
        working_dir=settings.working_dir,
        prefix=settings.session_prefix,
    )


def load_queue(settings: RelaySettings) -> CommandQueue:
    return CommandQueue(settings.queue_path)


def cmd_sessions(args: argparse.Namespace) -> None:
    store = load_store(get_settings())
    active = store.list_active()
    if args.json:
        print(json.dumps({key: mapping.to_document() for key, mapping in active.items()}, indent=2))
        return
    if not active:
        print("No active sessions")
        return
    for key, mapping in active.items():
        print(f"{mapping.session_name} <- {key} (created {mapping.created_at.isoformat()})")


def cmd_cleanup_stale(args: argparse.Namespace) -> None:
    store = load_store(get_settings())
    removed = store.cleanup_stale()
    print(f"Removed {removed} stale mapping(s)")


def cmd_cleanup_idle(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    max_age = args.max_age_hours if args.max_age_hours is not None else settings.max_session_age_hours
    removed = store.cleanup_idle(max_age)
    print(f"Removed {removed} idle session(s) older than {max_age}h")


def cmd_commands(args: argparse.Namespace) -> None:
    queue = load_queue(get_settings())

    if args.action == "list":
        commands = queue.list()
        if args.status:
            commands = [command for command in commands if command.status is CommandStatus(args.status)]
        print(json.dumps([command.to_document() for command in commands], indent=2))
    elif args.action == "clear":
        cleared = queue.clear_pending()
        print(f"Cleared {cleared} pending command(s)")
    elif args.action == "cleanup":
        removed = queue.cleanup(args.max_age_hours)
        print(f"Removed {removed} finished command(s)")
    elif args.action == "mark":
        if not args.command_id or not args.status:
            print("mark requires --id and --status")
            raise SystemExit(2)
        try:
            command = queue.mark(args.command_id, args.status)
        except CommandQueueError as exc:
            print(f"Cannot update command: {exc}")
            raise SystemExit(1)
        print(json.dumps(command.to_document(), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="tmux relay diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List thread mappings with live sessions")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_stale = sub.add_parser("cleanup-stale", help="Remove mappings whose sessions are gone")
    p_stale.set_defaults(func=cmd_cleanup_stale)

    p_idle = sub.add_parser("cleanup-idle", help="Kill sessions older than the age threshold")
    p_idle.add_argument("--max-age-hours", type=float, default=None)
    p_idle.set_defaults(func=cmd_cleanup_idle)

    p_commands = sub.add_parser("commands", help="Inspect or maintain the relay command queue")
    p_commands.add_argument("action", choices=["list", "clear", "cleanup", "mark"])
    p_commands.add_argument(
        "--status",
        choices=[status.value for status in CommandStatus],
        help="Filter for list, new status for mark",
    )
    p_commands.add_argument("--id", dest="command_id")
    p_commands.add_argument(
        "--max-age-hours",
        type=float,
        default=24.0,
        help="Age threshold for cleanup",
    )
    p_commands.set_defaults(func=cmd_commands)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()

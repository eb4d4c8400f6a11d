"""FastMCP server bootstrap for the tmux relay."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .bridge import RelayBridge
from .config import RelaySettings, get_settings
from .tmux import TmuxClient
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the relay server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[RelaySettings] = None,
    bridge: RelayBridge | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server around a relay bridge."""

    settings = settings or get_settings()

    tmux_metadata = {"available": True, "path": settings.tmux_path}
    if bridge is None:
        # Without tmux there is nothing to relay into; TmuxNotFoundError propagates.
        client = TmuxClient(Path(settings.tmux_path) if settings.tmux_path else None)
        tmux_metadata["path"] = str(client.executable)
        bridge = RelayBridge.from_settings(settings, client)

    @asynccontextmanager
    async def lifespan(_server):
        bridge.start_periodic_cleanup()
        try:
            yield {"bridge": bridge}
        finally:
            await bridge.shutdown()
            logger.info("Relay bridge stopped")

    server = FastMCP(
        name="tmux relay",
        version=__version__,
        instructions=(
            "Relays chat thread messages into assistant sessions running in tmux "
            "and reports completed tasks back through notification channels."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(server, bridge=bridge)

    @server.resource(
        "resource://relay/status",
        name="relay_status",
        title="Relay Status",
        description="Provides the current runtime status for the tmux relay.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        storage_error = None
        try:
            sessions = bridge.list_sessions()
        except Exception as exc:  # status must not fail on tmux errors
            sessions = []
            storage_error = str(exc)

        command_counts: dict[str, int] = {}
        if bridge.queue is not None:
            for command in bridge.queue.list():
                command_counts[command.status.value] = command_counts.get(command.status.value, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "tmux": tmux_metadata,
            "sessions": {
                "count": len(sessions),
                "active": sessions[-5:],
                "monitors": bridge.registry.snapshot(),
                "error": storage_error,
            },
            "channels": [
                {"name": channel.name, "type": channel.type_name, "enabled": channel.enabled}
                for channel in bridge.dispatcher.channels
            ],
            "commands": {"by_status": command_counts},
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "bridge", bridge)
    setattr(server, "tmux_metadata", tmux_metadata)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_resource", status_resource)
    return server


def main() -> None:
    """Entry point for running the relay MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching tmux relay server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "data_dir": str(settings.data_dir),
        },
    )
    server.run()


if __name__ == "__main__":
    main()

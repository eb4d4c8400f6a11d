"""Channel configuration loading from YAML."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .base import ConsoleChannel, NotificationChannel, OutboxChannel
from .models import ChannelConfig, ChannelsDocument

logger = logging.getLogger(__name__)

CHANNEL_TYPES: dict[str, type[NotificationChannel]] = {
    ConsoleChannel.type_name: ConsoleChannel,
    OutboxChannel.type_name: OutboxChannel,
}


class ChannelConfigError(RuntimeError):
    """Raised when the channel configuration cannot be parsed or built."""


class ChannelLoader:
    """Loads notification channels from a YAML file.

    A missing file means a single console channel.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else None

    @property
    def path(self) -> Path | None:
        return self._path

    def load_configs(self) -> dict[str, ChannelConfig]:
        if self._path is None or not self._path.exists():
            return {"console": ChannelConfig(type="console")}

        try:
            document = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise ChannelConfigError(f"Failed to read channel config {self._path}: {exc}") from exc

        if document is None:
            return {}

        try:
            parsed = ChannelsDocument.model_validate(document)
        except ValidationError as exc:
            raise ChannelConfigError(f"Channel config validation error in {self._path}: {exc}") from exc
        return parsed.channels

    def load_all(self) -> list[NotificationChannel]:
        """Build channel instances, including disabled ones."""

        channels: list[NotificationChannel] = []
        errors: list[str] = []
        for name, config in self.load_configs().items():
            channel_cls = CHANNEL_TYPES.get(config.type)
            if channel_cls is None:
                errors.append(f"Unknown channel type '{config.type}' for channel '{name}'")
                continue
            try:
                channels.append(channel_cls(name, enabled=config.enabled, options=config.options))
            except ValueError as exc:
                errors.append(str(exc))

        if errors:
            raise ChannelConfigError("; ".join(errors))

        logger.debug(
            "Loaded notification channels",
            extra={"channels": [channel.name for channel in channels]},
        )
        return channels


def load_channels(path: Path | None = None) -> list[NotificationChannel]:
    """Convenience wrapper for loading channels from ``path``."""

    return ChannelLoader(path).load_all()


__all__ = ["CHANNEL_TYPES", "ChannelConfigError", "ChannelLoader", "load_channels"]

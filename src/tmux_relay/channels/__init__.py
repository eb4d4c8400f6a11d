"""Notification channels and their configuration loader."""

from .base import (
    ConsoleChannel,
    Notification,
    NotificationChannel,
    NotificationMetadata,
    NotificationType,
    OutboxChannel,
)
from .loader import CHANNEL_TYPES, ChannelConfigError, ChannelLoader, load_channels
from .models import ChannelConfig

__all__ = [
    "CHANNEL_TYPES",
    "ChannelConfig",
    "ChannelConfigError",
    "ChannelLoader",
    "ConsoleChannel",
    "Notification",
    "NotificationChannel",
    "NotificationMetadata",
    "NotificationType",
    "OutboxChannel",
    "load_channels",
]

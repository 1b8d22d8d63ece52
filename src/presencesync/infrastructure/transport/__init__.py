"""Outbound presence transports."""

from presencesync.infrastructure.transport.discord_ipc import DiscordIpcTransport

__all__ = ["DiscordIpcTransport"]

"""Observability infrastructure for structured logging."""

from presencesync.infrastructure.observability.logging import (
    configure_logging,
    get_player_context,
    player_context,
)

__all__ = [
    "configure_logging",
    "get_player_context",
    "player_context",
]

"""Media player and media file adapters."""

from presencesync.infrastructure.media.playerctl_source import PlayerctlHandle, PlayerctlSource
from presencesync.infrastructure.media.tag_reader import MutagenTagReader

__all__ = ["MutagenTagReader", "PlayerctlHandle", "PlayerctlSource"]

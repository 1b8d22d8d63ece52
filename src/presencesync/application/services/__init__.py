"""Application services - the presence synchronization engine."""

from presencesync.application.services.art_sources import ArtSourceExtractor
from presencesync.application.services.cover_art_service import CoverArtResolver
from presencesync.application.services.metadata_service import MetadataService
from presencesync.application.services.player_state import (
    PlayerStateTracker,
    compute_snapshot,
    is_notable,
)
from presencesync.application.services.presence_service import (
    PresenceSessionManager,
    SessionHandle,
    normalize_field,
)
from presencesync.application.services.template_service import (
    JinjaTemplateRenderer,
    build_template_context,
)

__all__ = [
    "ArtSourceExtractor",
    "CoverArtResolver",
    "JinjaTemplateRenderer",
    "MetadataService",
    "PlayerStateTracker",
    "PresenceSessionManager",
    "SessionHandle",
    "build_template_context",
    "compute_snapshot",
    "is_notable",
    "normalize_field",
]

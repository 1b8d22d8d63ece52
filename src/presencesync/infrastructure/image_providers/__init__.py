"""Cover art providers: MusicBrainz search plus ImgBB/Catbox uploads."""

from presencesync.infrastructure.image_providers.catbox_provider import CatboxProvider
from presencesync.infrastructure.image_providers.factory import (
    build_cover_pipeline,
    build_cover_providers,
    build_extractor,
)
from presencesync.infrastructure.image_providers.imgbb_provider import ImgBBProvider
from presencesync.infrastructure.image_providers.musicbrainz_provider import MusicBrainzProvider

__all__ = [
    "CatboxProvider",
    "ImgBBProvider",
    "MusicBrainzProvider",
    "build_cover_pipeline",
    "build_cover_providers",
    "build_extractor",
]

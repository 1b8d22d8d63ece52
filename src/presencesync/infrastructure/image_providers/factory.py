"""Builds the cover pipeline pieces from a Settings snapshot.

Called once at startup and again on every config reload (the orchestrator hands the result
to CoverArtResolver.apply, which closes the providers it replaces).
"""

import logging

from presencesync.application.services.art_sources import ArtSourceExtractor
from presencesync.config.settings import Settings
from presencesync.domain.ports import ICoverArtProvider
from presencesync.infrastructure.image_providers.catbox_provider import CatboxProvider
from presencesync.infrastructure.image_providers.imgbb_provider import ImgBBProvider
from presencesync.infrastructure.image_providers.musicbrainz_provider import MusicBrainzProvider

logger = logging.getLogger(__name__)


def build_extractor(settings: Settings) -> ArtSourceExtractor:
    cover = settings.cover
    return ArtSourceExtractor(
        file_names=cover.file_names,
        extensions=cover.extensions,
        search_depth=cover.search_depth,
    )


def build_cover_providers(settings: Settings) -> list[ICoverArtProvider]:
    """Instantiate the configured providers in priority order.

    Unknown names can't get here (the settings model rejects them). Duplicates are
    dropped, ImgBB without an API key is skipped with a warning.
    """
    config = settings.cover.provider
    providers: list[ICoverArtProvider] = []
    seen: set[str] = set()
    for name in config.provider:
        if name in seen:
            continue
        seen.add(name)
        if name == "musicbrainz":
            providers.append(MusicBrainzProvider(config.musicbrainz))
        elif name == "imgbb":
            if not config.imgbb.api_key:
                logger.warning("ImgBB provider is disabled (no API key configured)")
                continue
            providers.append(ImgBBProvider(config.imgbb, config.image))
        elif name == "catbox":
            providers.append(CatboxProvider(config.catbox, config.image))

    logger.debug("Cover providers: %s", [p.name for p in providers])
    return providers


def build_cover_pipeline(settings: Settings) -> tuple[ArtSourceExtractor, list[ICoverArtProvider]]:
    """The cover_factory handed to the orchestrator."""
    return build_extractor(settings), build_cover_providers(settings)

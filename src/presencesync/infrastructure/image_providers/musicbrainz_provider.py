"""MusicBrainz / Cover Art Archive provider.

Hey future me - this is the only provider that works WITHOUT any local art: it searches
by metadata and hands back a CAA URL. Search order:

    album + (album artist or artist)
        ├─► release-group search → group front art → front art of its releases
        └─► release search       → release front art
    title + artist (+ length ±3 s)
        └─► recording search     → front art of its releases → their release groups

MusicBrainz search is fuzzy and loves returning "Greatest Hits (Live Karaoke)" before the
album you meant, so candidates are re-ranked with rapidfuzz against what we asked for and
anything below min_score is dropped before we spend CAA requests on it.
"""

import logging
from collections.abc import Sequence
from typing import Any

from rapidfuzz import fuzz

from presencesync.config.settings import MusicBrainzSettings
from presencesync.domain.ports import CoverResult, ICoverArtProvider
from presencesync.domain.value_objects import ArtSource, TrackMetadata
from presencesync.infrastructure.integrations.coverartarchive_client import (
    CoverArtArchiveClient,
    EntityKind,
)
from presencesync.infrastructure.integrations.musicbrainz_client import MusicBrainzClient

logger = logging.getLogger(__name__)


def _credit_name(entity: dict[str, Any]) -> str:
    credits = entity.get("artist-credit") or []
    parts = []
    for credit in credits:
        name = credit.get("name") or (credit.get("artist") or {}).get("name") or ""
        parts.append(name + (credit.get("joinphrase") or ""))
    return "".join(parts)


def match_score(entity: dict[str, Any], title: str, artist: str | None) -> float:
    """0-100 similarity of a search result to the requested title/artist."""
    title_score = fuzz.token_sort_ratio(title.casefold(), str(entity.get("title", "")).casefold())
    if not artist:
        return title_score
    artist_score = fuzz.token_sort_ratio(artist.casefold(), _credit_name(entity).casefold())
    return (title_score + artist_score) / 2


def rank_candidates(
    entities: Sequence[dict[str, Any]],
    title: str,
    artist: str | None,
    min_score: int,
    limit: int,
) -> list[dict[str, Any]]:
    """Best matches first, below-threshold matches dropped. Ties keep search order."""
    scored = [
        (match_score(entity, title, artist), index, entity)
        for index, entity in enumerate(entities)
    ]
    scored = [item for item in scored if item[0] >= min_score]
    scored.sort(key=lambda item: (-item[0], item[1]))
    return [entity for _, _, entity in scored[:limit]]


class MusicBrainzProvider(ICoverArtProvider):
    """Finds cover art on the Cover Art Archive by searching MusicBrainz."""

    def __init__(
        self,
        settings: MusicBrainzSettings,
        client: MusicBrainzClient | None = None,
        caa: CoverArtArchiveClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or MusicBrainzClient(contact=settings.contact)
        self._caa = caa or CoverArtArchiveClient()

    @property
    def name(self) -> str:
        return "musicbrainz"

    def supports(self, source: ArtSource | None) -> bool:
        return True

    async def process(
        self, source: ArtSource | None, metadata: TrackMetadata
    ) -> CoverResult | None:
        url = None
        album_artists = metadata.album_artists or metadata.artists
        if metadata.album and album_artists:
            url = await self._search_album(metadata.album, album_artists[0])
        if url is None and metadata.title and metadata.artists:
            duration_ms = int(metadata.length_seconds * 1000) if metadata.length_seconds else None
            url = await self._search_track(metadata.title, metadata.artists[0], duration_ms)
        if url is None:
            logger.debug("MusicBrainz found no artwork for %r", metadata.title)
            return None
        logger.info("MusicBrainz provided cover art: %s", url)
        return CoverResult(url=url, provider=self.name)

    async def close(self) -> None:
        await self._client.close()
        await self._caa.close()

    # -------------------------------------------------------------------------
    # Search strategies
    # -------------------------------------------------------------------------

    async def _front(self, kind: EntityKind, mbid: str | None) -> str | None:
        if not mbid:
            return None
        return await self._caa.front_cover_url(kind, mbid, self._settings.thumbnail_size)

    def _rank(
        self, entities: Sequence[dict[str, Any]], title: str, artist: str | None
    ) -> list[dict[str, Any]]:
        return rank_candidates(
            entities, title, artist, self._settings.min_score, self._settings.max_candidates
        )

    async def _search_album(self, album: str, artist: str) -> str | None:
        groups = await self._client.search_release_groups(album, artist)
        for group in self._rank(groups, album, artist):
            url = await self._front("release-group", group.get("id"))
            if url:
                return url
            for release in (group.get("releases") or [])[: self._settings.max_candidates]:
                url = await self._front("release", release.get("id"))
                if url:
                    return url

        releases = await self._client.search_releases(album, artist)
        for release in self._rank(releases, album, artist):
            url = await self._front("release", release.get("id"))
            if url:
                return url
        return None

    async def _search_track(self, title: str, artist: str, duration_ms: int | None) -> str | None:
        recordings = await self._client.search_recordings(title, artist, duration_ms)
        for recording in self._rank(recordings, title, artist):
            for release in (recording.get("releases") or [])[: self._settings.max_candidates]:
                url = await self._front("release", release.get("id"))
                if url:
                    return url
                group = release.get("release-group") or {}
                url = await self._front("release-group", group.get("id"))
                if url:
                    return url
        return None

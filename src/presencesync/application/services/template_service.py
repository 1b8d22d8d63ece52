"""Template rendering for activity text.

Hey future me - users write these templates in their config, so they run in Jinja2's
SandboxedEnvironment (no attribute games on our objects). Templates are compiled ONCE at
construction: a syntax error blows up load/reload with TemplateError and the orchestrator
keeps the previous renderer. Missing variables render as empty strings, so
"{{ album }}" on a track without album just yields "" and the field gets dropped.

Available variables (see build_template_context):
    title, artists, artist_display, album, album_artists, album_artist_display,
    track_number, track_total, track_display, disc_number, disc_total, disc_display,
    genres, genre_display, year, duration_secs, duration_display, initial_key, bpm, mood,
    bitrate_display, sample_rate_display, bit_depth_display, channels_display,
    player, player_bus_name, status, status_icon, volume, position_display,
    isrc, barcode, catalog_number, label, musicbrainz_*_id
"""

import logging
from collections.abc import Mapping
from typing import Any

import jinja2
from jinja2.sandbox import SandboxedEnvironment

from presencesync.domain.entities import PlaybackSnapshot, PlayerIdentity
from presencesync.domain.exceptions import TemplateError
from presencesync.domain.ports import ITemplateRenderer
from presencesync.domain.value_objects import TrackMetadata

logger = logging.getLogger(__name__)

TEMPLATE_NAMES = ("detail", "state", "large_text", "small_text")


def format_duration(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 60:02d}:{total % 60:02d}"


def format_number_pair(number: int, total: int | None) -> str:
    return f"{number}/{total}" if total else str(number)


def format_sample_rate(hz: int) -> str:
    khz = hz / 1000
    return f"{khz:g} kHz"


def format_channels(channels: int) -> str:
    return {1: "Mono", 2: "Stereo", 6: "5.1", 8: "7.1"}.get(channels, f"{channels} channels")


def build_template_context(
    player: PlayerIdentity, snapshot: PlaybackSnapshot, metadata: TrackMetadata
) -> dict[str, Any]:
    """Flatten player, snapshot and metadata into template variables."""
    context: dict[str, Any] = {
        "player": player.identity,
        "player_bus_name": player.bus_name,
        "status": snapshot.status.value.lower(),
        "status_icon": snapshot.status.icon,
        "volume": snapshot.volume_percent,
        "title": metadata.title or snapshot.title,
        "artists": list(metadata.artists),
        "artist_display": ", ".join(metadata.artists) or None,
        "album": metadata.album,
        "album_artists": list(metadata.album_artists),
        "album_artist_display": ", ".join(metadata.album_artists) or None,
        "track_number": metadata.track_number,
        "track_total": metadata.track_total,
        "disc_number": metadata.disc_number,
        "disc_total": metadata.disc_total,
        "genres": list(metadata.genres),
        "genre_display": ", ".join(metadata.genres) or None,
        "year": metadata.year,
        "initial_key": metadata.initial_key,
        "bpm": metadata.bpm,
        "mood": metadata.mood,
        "isrc": metadata.isrc,
        "barcode": metadata.barcode,
        "catalog_number": metadata.catalog_number,
        "label": metadata.label,
        "musicbrainz_track_id": metadata.musicbrainz_track_id,
        "musicbrainz_album_id": metadata.musicbrainz_album_id,
        "musicbrainz_artist_id": metadata.musicbrainz_artist_id,
        "musicbrainz_album_artist_id": metadata.musicbrainz_album_artist_id,
        "musicbrainz_release_group_id": metadata.musicbrainz_release_group_id,
        "track_display": None,
        "disc_display": None,
        "duration_secs": None,
        "duration_display": None,
        "position_display": None,
        "bitrate_display": f"{metadata.bitrate_kbps} kbps" if metadata.bitrate_kbps else None,
        "sample_rate_display": (
            format_sample_rate(metadata.sample_rate_hz) if metadata.sample_rate_hz else None
        ),
        "bit_depth_display": f"{metadata.bit_depth}-bit" if metadata.bit_depth else None,
        "channels_display": format_channels(metadata.channels) if metadata.channels else None,
    }
    if metadata.track_number is not None:
        context["track_display"] = format_number_pair(metadata.track_number, metadata.track_total)
    if metadata.disc_number is not None:
        context["disc_display"] = format_number_pair(metadata.disc_number, metadata.disc_total)
    if metadata.length_seconds:
        context["duration_secs"] = int(metadata.length_seconds)
        context["duration_display"] = format_duration(metadata.length_seconds)
    if snapshot.position_seconds is not None:
        context["position_display"] = format_duration(snapshot.position_seconds)
    return context


class JinjaTemplateRenderer(ITemplateRenderer):
    """Compiled set of named Jinja2 templates."""

    def __init__(self, templates: Mapping[str, str]) -> None:
        self._env = SandboxedEnvironment(autoescape=False, undefined=jinja2.Undefined)
        self._templates: dict[str, jinja2.Template] = {}
        for name, source in templates.items():
            try:
                self._templates[name] = self._env.from_string(source)
            except jinja2.TemplateSyntaxError as e:
                raise TemplateError(
                    f"Template '{name}' line {e.lineno}: {e.message}", template=name
                ) from e

    @property
    def names(self) -> list[str]:
        return list(self._templates)

    def render(self, name: str, data: dict[str, Any]) -> str:
        template = self._templates.get(name)
        if template is None:
            raise TemplateError(f"Unknown template '{name}'", template=name)
        # None renders as "None" in Jinja2, players love leaving fields empty
        context = {key: value for key, value in data.items() if value is not None}
        try:
            return template.render(context).strip()
        except (jinja2.TemplateError, TypeError, ValueError, ArithmeticError, LookupError) as e:
            raise TemplateError(f"Rendering template '{name}' failed: {e}", template=name) from e

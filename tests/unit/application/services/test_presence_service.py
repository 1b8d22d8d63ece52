"""Tests for presence sessions: diffing, clearing and the reconnect state machine."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from presencesync.application.cache import ArtUrlCache, InMemoryCache
from presencesync.application.services.art_sources import ArtSourceExtractor
from presencesync.application.services.cover_art_service import CoverArtResolver
from presencesync.application.services.presence_service import (
    MAX_FIELD_LENGTH,
    PADDING_CHAR,
    PresenceSessionManager,
    normalize_field,
)
from presencesync.application.services.template_service import JinjaTemplateRenderer
from presencesync.config.settings import DEFAULT_ICON, Settings
from presencesync.domain.entities import (
    ActivityType,
    PlaybackSnapshot,
    PlaybackStatus,
    PlayerIdentity,
    SessionState,
)
from presencesync.domain.exceptions import TemplateError, TransportError
from presencesync.domain.ports import CoverResult, ICoverArtProvider
from presencesync.domain.value_objects import ArtSource, TrackMetadata

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

TRACK = TrackMetadata(
    title="Song",
    artists=("Artist",),
    album="Album",
    length_seconds=200.0,
    art_url="https://i.scdn.co/image/abc",
    url="file:///music/song.mp3",
)


def snap(
    status: PlaybackStatus = PlaybackStatus.PLAYING, position: float | None = 30.0
) -> PlaybackSnapshot:
    return PlaybackSnapshot(
        status=status, track_identifier="/t/1", position_seconds=position, volume_percent=50
    )


class SteppingClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class SlowLookup(ICoverArtProvider):
    """Provider whose lookup lets the wall clock run on before answering."""

    def __init__(self, clock: SteppingClock, seconds: float) -> None:
        self._clock = clock
        self._seconds = seconds

    @property
    def name(self) -> str:
        return "musicbrainz"

    def supports(self, source: ArtSource | None) -> bool:
        return True

    async def process(
        self, source: ArtSource | None, metadata: TrackMetadata
    ) -> CoverResult | None:
        self._clock.now += timedelta(seconds=self._seconds)
        return CoverResult("https://caa/slow.jpg", self.name)


@pytest.fixture
def make_manager(transport_factory: Any) -> Callable[..., PresenceSessionManager]:
    def factory(settings: Settings | None = None, **settings_kwargs: Any) -> PresenceSessionManager:
        settings = settings or Settings(**settings_kwargs)
        resolver = CoverArtResolver(ArtUrlCache(InMemoryCache()), ArtSourceExtractor(), [])
        return PresenceSessionManager(
            settings,
            JinjaTemplateRenderer(settings.template.as_dict()),
            resolver,
            transport_factory,
            clock=lambda: NOW,
        )

    return factory


class TestNormalizeField:
    """Test the field-length policy."""

    def test_empty_is_dropped(self) -> None:
        """Test empty strings become None."""
        assert normalize_field("") is None
        assert normalize_field(None) is None

    def test_single_char_padded(self) -> None:
        """Test one-character values are padded to two."""
        assert normalize_field("X") == "X" + PADDING_CHAR

    def test_long_truncated(self) -> None:
        """Test values longer than the limit are cut."""
        assert normalize_field("a" * 200) == "a" * MAX_FIELD_LENGTH
        assert normalize_field("a" * MAX_FIELD_LENGTH) == "a" * MAX_FIELD_LENGTH


class TestUpdate:
    """Test update() payload assembly and diffing."""

    async def test_first_update_connects_and_sends(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test the first update opens a session and pushes the activity."""
        manager = make_manager()

        assert await manager.update(player_id, snap(), TRACK) is True

        transport = transports[0]
        assert transport.calls == ["connect", "send"]
        payload = transport.sent[0]
        assert payload.details == "Song"
        assert payload.state == "Artist"
        assert payload.large_image == "https://i.scdn.co/image/abc"
        assert payload.large_text == "Album"
        assert payload.activity_type is ActivityType.LISTENING
        assert payload.start_time == NOW - timedelta(seconds=30)
        assert payload.end_time == NOW - timedelta(seconds=30) + timedelta(seconds=200)
        assert manager.session(player_id).state is SessionState.CONNECTED

    async def test_identical_payload_not_resent(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test an unchanged payload is not sent twice."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)

        assert await manager.update(player_id, snap(), TRACK) is False
        assert transports[0].calls == ["connect", "send"]

    async def test_changed_payload_sent(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test a new track is pushed."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)

        other = TrackMetadata(title="Other", artists=("Artist",))
        assert await manager.update(player_id, snap(), other) is True
        assert [p.details for p in transports[0].sent] == ["Song", "Other"]

    async def test_no_art_drops_large_text(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test large_text is only sent together with an image."""
        manager = make_manager()
        await manager.update(player_id, snap(), TrackMetadata(title="Song", album="Album"))

        payload = transports[0].sent[0]
        assert payload.large_image is None
        assert payload.large_text is None

    async def test_short_title_padded(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test a one-character title is padded before sending."""
        manager = make_manager()
        await manager.update(player_id, snap(), TrackMetadata(title="X"))
        assert transports[0].sent[0].details == "X" + PADDING_CHAR

    async def test_template_error_propagates(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test a render failure raises before anything is sent."""
        manager = make_manager(template={"detail": "{{ volume / 0 }}"})

        with pytest.raises(TemplateError):
            await manager.update(player_id, snap(), TRACK)
        assert transports[0].calls == []


class TestClearing:
    """Test when activity is cleared."""

    async def test_stop_clears(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test Stopped clears a shown activity."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)

        assert await manager.update(player_id, snap(PlaybackStatus.STOPPED), TRACK) is True
        assert transports[0].calls[-1] == "clear"
        assert manager.session(player_id).last_sent_activity is None

    async def test_pause_clears_when_configured(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test Paused clears with clear_on_pause."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)

        assert await manager.update(player_id, snap(PlaybackStatus.PAUSED), TRACK) is True
        assert transports[0].calls[-1] == "clear"

    async def test_pause_keeps_activity_without_timestamps(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test Paused without clear_on_pause sends an activity without timestamps."""
        manager = make_manager(clear_on_pause=False)
        await manager.update(player_id, snap(), TRACK)

        assert await manager.update(player_id, snap(PlaybackStatus.PAUSED), TRACK) is True
        paused = transports[0].sent[-1]
        assert paused.start_time is None
        assert paused.end_time is None

    async def test_clear_without_activity_is_noop(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test nothing is cleared (or connected) when nothing was shown."""
        manager = make_manager()

        assert await manager.update(player_id, snap(PlaybackStatus.STOPPED), TRACK) is False
        assert transports == []

    async def test_streaming_cleared_unless_allowed(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test web media is suppressed unless the player allows streaming."""
        stream = TrackMetadata(title="Video", url="https://youtube.com/watch?v=x")

        assert await make_manager().update(player_id, snap(), stream) is False
        assert transports == []

        allowed = make_manager(player={"spotify": {"allow_streaming": True}})
        assert await allowed.update(player_id, snap(), stream) is True


class TestPayloadOptions:
    """Test time, activity type and icon settings."""

    async def test_as_elapsed_has_no_end(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test as_elapsed only sends a start timestamp."""
        await make_manager(time={"as_elapsed": True}).update(player_id, snap(), TRACK)
        payload = transports[0].sent[0]
        assert payload.start_time is not None
        assert payload.end_time is None

    async def test_time_hidden(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test time.show = false omits timestamps."""
        await make_manager(time={"show": False}).update(player_id, snap(), TRACK)
        assert transports[0].sent[0].start_time is None

    async def test_unknown_position_starts_now(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test an unknown position counts from now."""
        await make_manager().update(player_id, snap(position=None), TRACK)
        assert transports[0].sent[0].start_time == NOW

    async def test_slow_cover_lookup_keeps_start_time(
        self, transport_factory: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test timestamps use the time the position was sampled, not after the lookup."""
        settings = Settings()
        clock = SteppingClock(NOW)
        resolver = CoverArtResolver(
            ArtUrlCache(InMemoryCache()), ArtSourceExtractor(), [SlowLookup(clock, 8.0)]
        )
        manager = PresenceSessionManager(
            settings,
            JinjaTemplateRenderer(settings.template.as_dict()),
            resolver,
            transport_factory,
            clock=clock,
        )
        track = TrackMetadata(title="Song", artists=("Artist",), length_seconds=200.0)

        await manager.update(player_id, snap(position=30.0), track)

        payload = transports[0].sent[0]
        assert payload.large_image == "https://caa/slow.jpg"
        assert payload.start_time == NOW - timedelta(seconds=30)
        assert payload.end_time == NOW + timedelta(seconds=170)
        assert clock.now == NOW + timedelta(seconds=8)

    async def test_video_is_watching(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test video content switches the activity type to watching."""
        movie = TrackMetadata(title="Movie", url="file:///videos/movie.mkv")
        await make_manager().update(player_id, snap(), movie)
        assert transports[0].sent[0].activity_type is ActivityType.WATCHING

    async def test_override_activity_type(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test a per-player override beats content detection."""
        manager = make_manager(player={"spotify": {"override_activity_type": "playing"}})
        await manager.update(player_id, snap(), TRACK)
        assert transports[0].sent[0].activity_type is ActivityType.PLAYING

    async def test_default_activity_type(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test the default applies when content detection is off."""
        manager = make_manager(activity_type={"use_content_type": False, "default": "competing"})
        await manager.update(player_id, snap(), TRACK)
        assert transports[0].sent[0].activity_type is ActivityType.COMPETING

    async def test_show_icon(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test the player icon and small text appear only with show_icon."""
        await make_manager().update(player_id, snap(), TRACK)
        assert transports[0].sent[0].small_image is None
        assert transports[0].sent[0].small_text is None

        await make_manager(player={"default": {"show_icon": True}}).update(
            player_id, snap(), TRACK
        )
        payload = transports[1].sent[0]
        assert payload.small_image == DEFAULT_ICON
        assert payload.small_text == "Playing on Spotify"


class TestReconnect:
    """Test the connection state machine."""

    async def test_connect_failure_stays_disconnected(
        self, make_manager: Any, transport_factory: Any, player_id: PlayerIdentity
    ) -> None:
        """Test a refused connect leaves the session retryable from scratch."""
        manager = make_manager()
        transport = transport_factory("app")
        transport.fail_connect = True
        manager._transport_factory = lambda app_id: transport

        with pytest.raises(TransportError):
            await manager.update(player_id, snap(), TRACK)
        assert manager.session(player_id).state is SessionState.DISCONNECTED

        transport.fail_connect = False
        assert await manager.update(player_id, snap(), TRACK) is True
        assert transport.calls == ["connect", "connect", "send"]

    async def test_send_failure_then_reconnect(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test a failed send forces a reconnect and a resend of the same payload."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)
        transport = transports[0]

        transport.fail_send = True
        other = TrackMetadata(title="Other")
        with pytest.raises(TransportError):
            await manager.update(player_id, snap(), other)
        handle = manager.session(player_id)
        assert handle.state is SessionState.RECONNECTING
        assert handle.last_sent_activity is None

        transport.fail_send = False
        assert await manager.update(player_id, snap(), other) is True
        assert transport.calls[-2:] == ["reconnect", "send"]
        assert handle.state is SessionState.CONNECTED

    async def test_reconnect_failure_keeps_reconnecting(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test a failed reconnect is retried on the next update."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)
        transport = transports[0]
        transport.fail_send = True
        with pytest.raises(TransportError):
            await manager.update(player_id, snap(), TrackMetadata(title="Other"))

        transport.fail_send = False
        transport.fail_reconnect = True
        with pytest.raises(TransportError):
            await manager.update(player_id, snap(), TRACK)
        assert manager.session(player_id).state is SessionState.RECONNECTING

        transport.fail_reconnect = False
        assert await manager.update(player_id, snap(), TRACK) is True

    async def test_clear_failure_marks_broken(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test a failed clear also moves the session to reconnecting."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)
        transports[0].fail_send = True

        with pytest.raises(TransportError):
            await manager.update(player_id, snap(PlaybackStatus.STOPPED), TRACK)
        assert manager.session(player_id).state is SessionState.RECONNECTING


class TestSessions:
    """Test session ownership."""

    async def test_one_session_per_player(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test two players get independent transports."""
        manager = make_manager()
        other = PlayerIdentity.create("VLC", "org.mpris.MediaPlayer2.vlc", ":1.7")

        await manager.update(player_id, snap(), TRACK)
        await manager.update(other, snap(), TRACK)

        assert len(transports) == 2
        assert len(manager.sessions()) == 2

    async def test_remove_clears_and_closes(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test removing a player clears its activity and closes the transport."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)

        await manager.remove(player_id)
        await manager.remove(player_id)

        assert transports[0].calls[-2:] == ["clear", "close"]
        assert manager.session(player_id) is None

    async def test_remove_survives_clear_failure(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test the transport is closed even when the final clear fails."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)
        transports[0].fail_send = True

        await manager.remove(player_id)

        assert transports[0].closed

    async def test_app_id_change_opens_new_session(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test a changed app id replaces the transport on the next update."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)

        manager.apply_settings(Settings(player={"spotify": {"app_id": "999"}}))
        await manager.update(player_id, snap(), TRACK)

        assert transports[0].closed
        assert transports[1].app_id == "999"
        assert transports[1].calls == ["connect", "send"]

    async def test_close_all(
        self, make_manager: Any, transports: list[Any], player_id: PlayerIdentity
    ) -> None:
        """Test close_all closes every session."""
        manager = make_manager()
        await manager.update(player_id, snap(), TRACK)
        await manager.update(
            PlayerIdentity.create("VLC", "org.mpris.MediaPlayer2.vlc", ":1.7"), snap(), TRACK
        )

        await manager.close_all()

        assert all(t.closed for t in transports)
        assert manager.sessions() == []

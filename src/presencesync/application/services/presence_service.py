"""Presence Session Manager - one outbound session per player.

Hey future me - this owns the connection lifecycle AND the "don't spam the display" logic.

STATE MACHINE (per player):

    DISCONNECTED ──first update──► CONNECTING ──ok──► CONNECTED
         ▲                              │                 │
         └──────────fail────────────────┘       send/clear fails
                                                          ▼
                                  CONNECTED ◄──ok── RECONNECTING ◄─┐
                                                          │        │
                                                          └─fail───┘
    remove(player) → CLOSED (transport closed, handle dropped)

UPDATE FLOW:
    update(player, snapshot, metadata)
        ├─► Stopped / Paused+clear_on_pause / streaming not allowed → clear (only if shown)
        └─► render templates → resolve art → timestamps → activity type
                └─► payload == last_sent? → nothing to do
                └─► send → remember as last_sent

Transport failures move the session to RECONNECTING, forget last_sent (we don't know what
the display shows anymore) and re-raise so the orchestrator logs them. The next update
retries through transport.reconnect().
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from presencesync.application.services.cover_art_service import CoverArtResolver
from presencesync.application.services.metadata_service import guess_content_type
from presencesync.application.services.template_service import build_template_context
from presencesync.config.settings import PlayerSettings, Settings
from presencesync.domain.entities import (
    ActivityPayload,
    ActivityType,
    PlaybackSnapshot,
    PlaybackStatus,
    PlayerIdentity,
    SessionState,
)
from presencesync.domain.exceptions import PresenceSyncError, TransportError
from presencesync.domain.ports import IPresenceTransport, ITemplateRenderer
from presencesync.domain.value_objects import TrackMetadata

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 128
# Braille pattern blank, renders invisible but counts as a character
PADDING_CHAR = "⠀"

TransportFactory = Callable[[str], IPresenceTransport]
Clock = Callable[[], datetime]


def normalize_field(value: str | None) -> str | None:
    """Apply the display's field-length policy.

    Empty → None, one character → padded to two, longer than 128 → truncated.
    """
    if not value:
        return None
    if len(value) == 1:
        return value + PADDING_CHAR
    if len(value) > MAX_FIELD_LENGTH:
        return value[:MAX_FIELD_LENGTH]
    return value


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class SessionHandle:
    """Live outbound session of one player."""

    player_id: PlayerIdentity
    app_id: str
    transport: IPresenceTransport
    state: SessionState = SessionState.DISCONNECTED
    has_activity: bool = False
    last_sent_activity: ActivityPayload | None = None


class PresenceSessionManager:
    """Maintains one presence session per live player and pushes diffed activity."""

    def __init__(
        self,
        settings: Settings,
        renderer: ITemplateRenderer,
        resolver: CoverArtResolver,
        transport_factory: TransportFactory,
        clock: Clock = _utcnow,
    ) -> None:
        self._settings = settings
        self._renderer = renderer
        self._resolver = resolver
        self._transport_factory = transport_factory
        self._clock = clock
        self._sessions: dict[PlayerIdentity, SessionHandle] = {}

    @property
    def settings(self) -> Settings:
        return self._settings

    def session(self, player_id: PlayerIdentity) -> SessionHandle | None:
        return self._sessions.get(player_id)

    def sessions(self) -> list[SessionHandle]:
        return list(self._sessions.values())

    def apply_settings(self, settings: Settings, renderer: ITemplateRenderer | None = None) -> None:
        """Swap the active settings (and templates) after a config reload.

        Sessions are kept; an app_id change is picked up on the player's next update.
        """
        self._settings = settings
        if renderer is not None:
            self._renderer = renderer

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def update(
        self, player_id: PlayerIdentity, snapshot: PlaybackSnapshot, metadata: TrackMetadata
    ) -> bool:
        """Bring the player's presence in line with its state.

        Returns:
            True if something was sent or cleared, False if nothing had to change

        Raises:
            TransportError: connect/send/clear failed (session left retryable)
            TemplateError: a template failed to render for this player
        """
        player_cfg = self._settings.player_config(player_id.identity)

        if self._should_clear(snapshot, metadata, player_cfg):
            return await self._clear(player_id)

        handle = await self._get_or_create(player_id, player_cfg.app_id)
        payload = await self.build_payload(player_id, snapshot, metadata, player_cfg)

        await self._ensure_connected(handle)
        if payload == handle.last_sent_activity:
            logger.debug("Activity for %s unchanged, not sending", player_id.identity)
            return False

        try:
            await handle.transport.send_activity(payload)
        except TransportError:
            self._mark_broken(handle)
            raise
        handle.last_sent_activity = payload
        handle.has_activity = True
        logger.debug("Sent activity for %s: %s", player_id.identity, payload.details)
        return True

    async def remove(self, player_id: PlayerIdentity) -> None:
        """Close and forget the session of a vanished player."""
        handle = self._sessions.pop(player_id, None)
        if handle is None:
            return
        await self._close_handle(handle)
        logger.info("Closed presence session for %s", player_id.identity)

    async def close_all(self) -> None:
        for player_id in list(self._sessions):
            await self.remove(player_id)

    # -------------------------------------------------------------------------
    # Payload assembly
    # -------------------------------------------------------------------------

    async def build_payload(
        self,
        player_id: PlayerIdentity,
        snapshot: PlaybackSnapshot,
        metadata: TrackMetadata,
        player_cfg: PlayerSettings | None = None,
    ) -> ActivityPayload:
        player_cfg = player_cfg or self._settings.player_config(player_id.identity)
        context = build_template_context(player_id, snapshot, metadata)

        details = self._renderer.render("detail", context)
        state = self._renderer.render("state", context)
        large_text = self._renderer.render("large_text", context)
        small_text = self._renderer.render("small_text", context)

        # the position was sampled before a possibly slow cover lookup
        now = self._clock()
        try:
            large_image = await self._resolver.resolve(metadata)
        except (PresenceSyncError, OSError) as e:
            logger.warning("Cover art lookup failed for %s: %s", player_id.identity, e)
            large_image = None

        start_time, end_time = self._timestamps(snapshot, metadata, now)
        small_image = player_cfg.icon if player_cfg.show_icon else None

        return ActivityPayload(
            activity_type=self._activity_type(metadata, player_cfg),
            details=normalize_field(details),
            state=normalize_field(state),
            large_image=large_image,
            large_text=normalize_field(large_text) if large_image else None,
            small_image=small_image,
            small_text=normalize_field(small_text) if small_image else None,
            start_time=start_time,
            end_time=end_time,
        )

    def _timestamps(
        self, snapshot: PlaybackSnapshot, metadata: TrackMetadata, now: datetime
    ) -> tuple[datetime | None, datetime | None]:
        if snapshot.status is not PlaybackStatus.PLAYING or not self._settings.time.show:
            return None, None
        position = snapshot.position_seconds or 0.0
        start = now - timedelta(seconds=position)
        end = None
        if not self._settings.time.as_elapsed and metadata.length_seconds:
            end = start + timedelta(seconds=metadata.length_seconds)
        return start, end

    def _activity_type(self, metadata: TrackMetadata, player_cfg: PlayerSettings) -> ActivityType:
        if player_cfg.override_activity_type:
            return ActivityType.from_name(player_cfg.override_activity_type)
        type_cfg = self._settings.activity_type
        if type_cfg.use_content_type:
            content_type = guess_content_type(metadata)
            if content_type:
                if content_type.startswith("audio/"):
                    return ActivityType.LISTENING
                if content_type.startswith(("video/", "image/")):
                    return ActivityType.WATCHING
        return ActivityType.from_name(type_cfg.default)

    def _should_clear(
        self, snapshot: PlaybackSnapshot, metadata: TrackMetadata, player_cfg: PlayerSettings
    ) -> bool:
        if snapshot.status is PlaybackStatus.STOPPED:
            return True
        if snapshot.status is PlaybackStatus.PAUSED and self._settings.clear_on_pause:
            return True
        return metadata.is_streaming and not player_cfg.allow_streaming

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def _get_or_create(self, player_id: PlayerIdentity, app_id: str) -> SessionHandle:
        handle = self._sessions.get(player_id)
        if handle is not None and handle.app_id != app_id:
            logger.info(
                "App id for %s changed (%s → %s), opening a new session",
                player_id.identity,
                handle.app_id,
                app_id,
            )
            await self._close_handle(handle)
            handle = None
        if handle is None:
            handle = SessionHandle(
                player_id=player_id, app_id=app_id, transport=self._transport_factory(app_id)
            )
            self._sessions[player_id] = handle
        return handle

    async def _ensure_connected(self, handle: SessionHandle) -> None:
        if handle.state is SessionState.CONNECTED:
            return
        if handle.state is SessionState.RECONNECTING:
            await handle.transport.reconnect()
            handle.state = SessionState.CONNECTED
            logger.info("Reconnected presence session for %s", handle.player_id.identity)
            return

        handle.state = SessionState.CONNECTING
        try:
            await handle.transport.connect()
        except TransportError:
            handle.state = SessionState.DISCONNECTED
            raise
        handle.state = SessionState.CONNECTED
        logger.info(
            "Connected presence session for %s (app id %s)",
            handle.player_id.identity,
            handle.app_id,
        )

    async def _clear(self, player_id: PlayerIdentity) -> bool:
        handle = self._sessions.get(player_id)
        if handle is None or not handle.has_activity or handle.state is not SessionState.CONNECTED:
            return False
        try:
            await handle.transport.clear_activity()
        except TransportError:
            self._mark_broken(handle)
            raise
        handle.has_activity = False
        handle.last_sent_activity = None
        logger.debug("Cleared activity for %s", player_id.identity)
        return True

    def _mark_broken(self, handle: SessionHandle) -> None:
        handle.state = SessionState.RECONNECTING
        handle.last_sent_activity = None
        logger.debug("Session for %s needs a reconnect", handle.player_id.identity)

    async def _close_handle(self, handle: SessionHandle) -> None:
        try:
            if handle.has_activity and handle.state is SessionState.CONNECTED:
                await handle.transport.clear_activity()
        except TransportError as e:
            logger.debug("Clearing activity on close failed for %s: %s", handle.player_id, e)
        finally:
            handle.state = SessionState.CLOSED
            handle.has_activity = False
            handle.last_sent_activity = None
            try:
                await handle.transport.close()
            except TransportError as e:
                logger.warning("Closing transport for %s failed: %s", handle.player_id.identity, e)

"""Domain entities."""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum

_INSTANCE_SUFFIX = re.compile(r"(\.instance[_\d]*|\.\d+)+$")


def canonical_bus_name(bus_name: str) -> str:
    """Strip per-process suffixes from an MPRIS bus name.

    org.mpris.MediaPlayer2.firefox.instance_1_42 -> org.mpris.MediaPlayer2.firefox
    org.mpris.MediaPlayer2.vlc.instance4711 -> org.mpris.MediaPlayer2.vlc
    """
    return _INSTANCE_SUFFIX.sub("", bus_name)


# Hey future me - PlayerIdentity is THE key for everything per-player: tracker snapshots,
# sessions, orchestrator lanes. All three fields take part in equality, so two VLC windows
# (same identity, same bus name, different unique name) get separate presence sessions.
@dataclass(frozen=True)
class PlayerIdentity:
    """Stable identity of one running media player."""

    identity: str
    bus_name: str
    unique_name: str

    @classmethod
    def create(cls, identity: str, bus_name: str, unique_name: str) -> "PlayerIdentity":
        return cls(
            identity=identity,
            bus_name=canonical_bus_name(bus_name),
            unique_name=unique_name,
        )

    def __str__(self) -> str:
        return f"{self.identity} ({self.unique_name})"


class PlaybackStatus(str, Enum):
    """MPRIS playback status."""

    PLAYING = "Playing"
    PAUSED = "Paused"
    STOPPED = "Stopped"

    @classmethod
    def parse(cls, raw: str | None) -> "PlaybackStatus":
        """Parse a player status string; anything unknown counts as Stopped."""
        if raw:
            for status in cls:
                if status.value.lower() == raw.strip().lower():
                    return status
        return cls.STOPPED

    @property
    def icon(self) -> str:
        return {
            PlaybackStatus.PLAYING: "▶",
            PlaybackStatus.PAUSED: "⏸",
            PlaybackStatus.STOPPED: "⏹",
        }[self]


@dataclass(frozen=True)
class PlaybackSnapshot:
    """Observable state of a player at one poll tick.

    Created fresh per tick and never merged with older snapshots.
    """

    status: PlaybackStatus
    track_identifier: str | None = None
    title: str | None = None
    position_seconds: float | None = None
    volume_percent: int | None = None


# Discord numeric activity type codes
class ActivityType(IntEnum):
    """Presence activity verb ("Listening to", "Watching", ...)."""

    PLAYING = 0
    LISTENING = 2
    WATCHING = 3
    COMPETING = 5

    @classmethod
    def from_name(cls, name: str) -> "ActivityType":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"unknown activity type: {name!r}") from None


class SessionState(str, Enum):
    """Connection lifecycle of one outbound presence session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(frozen=True)
class ActivityPayload:
    """Fully rendered activity for the presence display.

    Text fields are already normalized by the field-length policy. Equality
    compares timestamps at whole-second granularity, so sub-second jitter in
    "now - position" never causes a resend.
    """

    activity_type: ActivityType = ActivityType.LISTENING
    details: str | None = None
    state: str | None = None
    large_image: str | None = None
    large_text: str | None = None
    small_image: str | None = None
    small_text: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    @staticmethod
    def _seconds(value: datetime | None) -> int | None:
        return None if value is None else int(value.timestamp())

    def _key(self) -> tuple[object, ...]:
        return (
            self.activity_type,
            self.details,
            self.state,
            self.large_image,
            self.large_text,
            self.small_image,
            self.small_text,
            self._seconds(self.start_time),
            self._seconds(self.end_time),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ActivityPayload):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def to_discord(self) -> dict[str, object]:
        """Serialize into the SET_ACTIVITY "activity" object."""
        activity: dict[str, object] = {"type": int(self.activity_type)}
        if self.details:
            activity["details"] = self.details
        if self.state:
            activity["state"] = self.state

        timestamps: dict[str, int] = {}
        if self.start_time is not None:
            timestamps["start"] = int(self.start_time.timestamp())
        if self.end_time is not None:
            timestamps["end"] = int(self.end_time.timestamp())
        if timestamps:
            activity["timestamps"] = timestamps

        assets = {
            key: value
            for key, value in (
                ("large_image", self.large_image),
                ("large_text", self.large_text),
                ("small_image", self.small_image),
                ("small_text", self.small_text),
            )
            if value
        }
        if assets:
            activity["assets"] = assets
        return activity


__all__ = [
    "ActivityPayload",
    "ActivityType",
    "PlaybackSnapshot",
    "PlaybackStatus",
    "PlayerIdentity",
    "SessionState",
    "canonical_bus_name",
]

"""Player State Tracker - snapshots players and decides what is worth an update.

Hey future me - notability rules, first true wins:

    1. track identifier differs (no previous snapshot counts)  → notable
    2. status or volume differs                                 → notable
    3. position moved backward (seek back, repeat)              → notable
    4. position jumped forward by more than 2 × poll interval   → notable
    5. otherwise                                                → quiet

Positions are only compared when BOTH snapshots know theirs. Normal playback advances
about one poll interval per tick, so the 2× window absorbs timer jitter while a real seek
forward still triggers a new start timestamp.
"""

import asyncio
import logging
from typing import Any

from presencesync.domain.entities import PlaybackSnapshot, PlaybackStatus, PlayerIdentity
from presencesync.domain.exceptions import PlayerSourceError
from presencesync.domain.ports import IPlayerHandle

logger = logging.getLogger(__name__)


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


async def compute_snapshot(player: IPlayerHandle) -> PlaybackSnapshot:
    """Build a snapshot; every player call may fail on its own."""
    identity = player.identity()

    async def attempt(operation: str, call: Any) -> Any:
        try:
            return await call()
        except PlayerSourceError as e:
            logger.debug("%s: %s failed: %s", identity.identity, operation, e.message)
            return None

    raw_status, position, volume, metadata = await asyncio.gather(
        attempt("status", player.status),
        attempt("position", player.position),
        attempt("volume", player.volume),
        attempt("metadata", player.metadata),
    )
    metadata = metadata or {}

    track_identifier = _str_or_none(metadata.get("mpris:trackid")) or _str_or_none(
        metadata.get("xesam:url")
    )
    volume_percent = None
    if volume is not None:
        volume_percent = max(0, min(100, round(float(volume) * 100)))

    return PlaybackSnapshot(
        status=PlaybackStatus.parse(raw_status),
        track_identifier=track_identifier,
        title=_str_or_none(metadata.get("xesam:title")),
        position_seconds=float(position) if position is not None else None,
        volume_percent=volume_percent,
    )


def is_notable(
    new: PlaybackSnapshot, previous: PlaybackSnapshot | None, poll_interval: float
) -> bool:
    if previous is None or new.track_identifier != previous.track_identifier:
        return True
    if new.status != previous.status or new.volume_percent != previous.volume_percent:
        return True
    if new.position_seconds is not None and previous.position_seconds is not None:
        delta = new.position_seconds - previous.position_seconds
        if delta < 0:
            return True
        if delta > 2 * poll_interval:
            return True
    return False


class PlayerStateTracker:
    """Remembers the last snapshot per player."""

    def __init__(self) -> None:
        self._snapshots: dict[PlayerIdentity, PlaybackSnapshot] = {}

    def observe(
        self, player_id: PlayerIdentity, snapshot: PlaybackSnapshot, poll_interval: float
    ) -> bool:
        """Store the snapshot unconditionally and report whether it is notable."""
        notable = is_notable(snapshot, self._snapshots.get(player_id), poll_interval)
        self._snapshots[player_id] = snapshot
        return notable

    def forget(self, player_id: PlayerIdentity) -> None:
        self._snapshots.pop(player_id, None)

    def last(self, player_id: PlayerIdentity) -> PlaybackSnapshot | None:
        return self._snapshots.get(player_id)

    def tracked(self) -> list[tuple[PlayerIdentity, PlaybackSnapshot]]:
        return list(self._snapshots.items())

# Hey future me - DAS ist der zentrale Event-Loop des Dienstes!
#
# Drei Quellen werden mit asyncio.wait(FIRST_COMPLETED) gemultiplext:
#   1. Poll-Timer (settings.interval, default 2s) → Player abfragen, Snapshots vergleichen
#   2. Config-Stream (ConfigStore.subscribe()) → Templates/Provider neu bauen
#   3. Event-Queue → max. 10 Events pro Iteration an die Player-Lanes verteilen
#
# LANES: pro Player ein eigener asyncio.Task + Queue. Innerhalb eines Players strikt FIFO
# (Update, Update, Remove kommen in genau der Reihenfolge an), zwischen Playern parallel -
# ein hängender ImgBB-Upload für VLC blockiert Spotify nicht.
#
# ConfigChanged geht durch DIESELBE Event-Queue wie die Player-Events, dadurch landet das
# Re-Dispatch der letzten Snapshots in jeder Lane VOR allen späteren Updates.
#
# USAGE:
#   orchestrator = EventOrchestrator(source=..., sessions=..., ...)
#   task = asyncio.create_task(orchestrator.run())
#   ...
#   orchestrator.stop(); await task
"""Event orchestrator - polling, config reload, batching and per-player lanes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from presencesync.application.services.art_sources import ArtSourceExtractor
from presencesync.application.services.cover_art_service import CoverArtResolver
from presencesync.application.services.metadata_service import MetadataService
from presencesync.application.services.player_state import PlayerStateTracker, compute_snapshot
from presencesync.application.services.presence_service import PresenceSessionManager
from presencesync.config.settings import Settings
from presencesync.config.store import ConfigStore
from presencesync.domain.entities import PlaybackSnapshot, PlayerIdentity
from presencesync.domain.exceptions import (
    PlayerSourceError,
    PresenceSyncError,
    TemplateError,
    TransportError,
)
from presencesync.domain.ports import (
    ICoverArtProvider,
    IPlayerHandle,
    IPlayerSource,
    ITemplateRenderer,
)
from presencesync.domain.value_objects import TrackMetadata
from presencesync.infrastructure.observability.logging import player_context

logger = logging.getLogger(__name__)

MAX_BATCH = 10
CACHE_SWEEP_INTERVAL = 6 * 60 * 60

RendererFactory = Callable[[Settings], ITemplateRenderer]
CoverFactory = Callable[[Settings], tuple[ArtSourceExtractor, Sequence[ICoverArtProvider]]]


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class PlayerUpdate:
    player: PlayerIdentity
    snapshot: PlaybackSnapshot


@dataclass(frozen=True)
class PlayerRemove:
    player: PlayerIdentity


@dataclass(frozen=True)
class ConfigChanged:
    settings: Settings


Event = PlayerUpdate | PlayerRemove | ConfigChanged


class OrchestratorState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class _Lane:
    queue: asyncio.Queue[PlayerUpdate | PlayerRemove | None]
    task: asyncio.Task[None]


@dataclass
class OrchestratorStats:
    polls: int = 0
    events_dispatched: int = 0
    updates_sent: int = 0
    update_errors: int = 0
    config_reloads: int = 0
    cache_sweeps: int = 0
    started_at: datetime | None = None
    last_poll_at: datetime | None = None
    last_error: str | None = None
    per_player_errors: dict[str, int] = field(default_factory=dict)


class EventOrchestrator:
    """Drives the whole presence engine from one asyncio loop."""

    def __init__(
        self,
        *,
        source: IPlayerSource,
        sessions: PresenceSessionManager,
        metadata: MetadataService,
        resolver: CoverArtResolver,
        config_store: ConfigStore,
        renderer_factory: RendererFactory,
        cover_factory: CoverFactory,
        tracker: PlayerStateTracker | None = None,
        sweep_interval: float = CACHE_SWEEP_INTERVAL,
    ) -> None:
        self._source = source
        self._sessions = sessions
        self._metadata = metadata
        self._resolver = resolver
        self._config_store = config_store
        self._renderer_factory = renderer_factory
        self._cover_factory = cover_factory
        self._tracker = tracker or PlayerStateTracker()
        self._sweep_interval = sweep_interval

        self._settings = config_store.current
        self._events: asyncio.Queue[Event] = asyncio.Queue()
        self._lanes: dict[PlayerIdentity, _Lane] = {}
        # lanes that got a PlayerRemove but may still be working through their queue
        self._retiring: dict[PlayerIdentity, asyncio.Task[None]] = {}
        self._handles: dict[PlayerIdentity, IPlayerHandle] = {}
        # players whose last update failed, re-dispatched on the next poll even when quiet
        self._retry: set[PlayerIdentity] = set()
        self._stop_event = asyncio.Event()
        self._state = OrchestratorState.IDLE
        self.stats = OrchestratorStats()

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def tracker(self) -> PlayerStateTracker:
        return self._tracker

    def stop(self) -> None:
        """Ask run() to finish; it drains lanes and closes sessions before returning."""
        if self._state is OrchestratorState.RUNNING:
            self._state = OrchestratorState.STOPPING
        self._stop_event.set()
        self._config_store.close()

    # =========================================================================
    # Main loop
    # =========================================================================

    async def run(self) -> None:
        self._state = OrchestratorState.RUNNING
        self.stats.started_at = datetime.now(UTC)
        config_stream = self._config_store.subscribe()
        loop = asyncio.get_running_loop()
        next_sweep = loop.time() + self._sweep_interval

        logger.info(
            "Presence engine started (interval=%dms, providers=%s)",
            self._settings.interval,
            ", ".join(p.name for p in self._resolver.providers) or "none",
        )

        pending: dict[str, asyncio.Task[Any]] = {
            "stop": asyncio.create_task(self._stop_event.wait()),
        }
        config_open = True
        # first poll right away, not one interval after startup
        await self._poll_players()

        try:
            while True:
                if "timer" not in pending:
                    pending["timer"] = asyncio.create_task(
                        asyncio.sleep(self._settings.poll_interval_seconds)
                    )
                if config_open and "config" not in pending:
                    pending["config"] = asyncio.create_task(config_stream.get())
                if "events" not in pending:
                    pending["events"] = asyncio.create_task(self._events.get())

                done, _ = await asyncio.wait(
                    pending.values(), return_when=asyncio.FIRST_COMPLETED
                )
                finished = {name for name, task in pending.items() if task in done}
                results = {name: pending.pop(name).result() for name in finished}

                if "stop" in finished:
                    break

                if "config" in results:
                    new_settings = results["config"]
                    if new_settings is None:
                        config_open = False
                    else:
                        await self._apply_config(new_settings)

                if "events" in results:
                    await self._dispatch_batch(results["events"])

                if "timer" in finished:
                    await self._poll_players()
                    if loop.time() >= next_sweep:
                        next_sweep = loop.time() + self._sweep_interval
                        await self._sweep_cache()
        finally:
            for task in pending.values():
                task.cancel()
            await asyncio.gather(*pending.values(), return_exceptions=True)
            await self._shutdown()

    # =========================================================================
    # Source 1: polling
    # =========================================================================

    async def _poll_players(self) -> None:
        settings = self._settings
        self.stats.polls += 1
        self.stats.last_poll_at = datetime.now(UTC)
        try:
            handles = await self._source.list_players()
        except PlayerSourceError as e:
            logger.warning("Listing players failed: %s", e.message)
            return

        current: dict[PlayerIdentity, IPlayerHandle] = {}
        for handle in handles:
            player_id = handle.identity()
            if settings.player_config(player_id.identity).ignore:
                continue
            current[player_id] = handle

        snapshots = await asyncio.gather(*(compute_snapshot(h) for h in current.values()))
        for (player_id, handle), snapshot in zip(current.items(), snapshots, strict=True):
            self._handles[player_id] = handle
            notable = self._tracker.observe(player_id, snapshot, settings.poll_interval_seconds)
            if notable:
                logger.debug(
                    "%s changed: %s %r", player_id.identity, snapshot.status.value, snapshot.title
                )
            elif player_id in self._retry:
                logger.debug("Retrying presence update for %s", player_id.identity)
            if notable or player_id in self._retry:
                self._retry.discard(player_id)
                self._events.put_nowait(PlayerUpdate(player_id, snapshot))

        for player_id, _snapshot in self._tracker.tracked():
            if player_id not in current:
                logger.info("Player %s disappeared", player_id.identity)
                self._tracker.forget(player_id)
                self._handles.pop(player_id, None)
                self._retry.discard(player_id)
                self._events.put_nowait(PlayerRemove(player_id))

    # =========================================================================
    # Source 2: config changes
    # =========================================================================

    async def _apply_config(self, settings: Settings) -> None:
        renderer: ITemplateRenderer | None
        try:
            renderer = self._renderer_factory(settings)
        except TemplateError as e:
            logger.error("Template reload failed, keeping previous templates: %s", e.message)
            renderer = None

        extractor, providers = self._cover_factory(settings)
        await self._resolver.apply(extractor, providers)
        self._sessions.apply_settings(settings, renderer)
        self._settings = settings
        self.stats.config_reloads += 1
        self._events.put_nowait(ConfigChanged(settings))

    # =========================================================================
    # Source 3: event queue → lanes
    # =========================================================================

    async def _dispatch_batch(self, first: Event) -> None:
        batch = [first]
        while len(batch) < MAX_BATCH:
            try:
                batch.append(self._events.get_nowait())
            except asyncio.QueueEmpty:
                break

        for event in batch:
            self.stats.events_dispatched += 1
            if isinstance(event, ConfigChanged):
                for player_id, snapshot in self._tracker.tracked():
                    self._lane(player_id).queue.put_nowait(PlayerUpdate(player_id, snapshot))
            elif isinstance(event, PlayerRemove):
                lane = self._lanes.pop(event.player, None)
                if lane is not None:
                    lane.queue.put_nowait(event)
                    self._retiring[event.player] = lane.task
                else:
                    await self._sessions.remove(event.player)
            else:
                self._lane(event.player).queue.put_nowait(event)

    def _lane(self, player_id: PlayerIdentity) -> _Lane:
        lane = self._lanes.get(player_id)
        if lane is None or lane.task.done():
            queue: asyncio.Queue[PlayerUpdate | PlayerRemove | None] = asyncio.Queue()
            previous = self._retiring.pop(player_id, None)
            task = asyncio.create_task(
                self._run_lane(player_id, queue, previous), name=f"lane:{player_id.identity}"
            )
            lane = _Lane(queue=queue, task=task)
            self._lanes[player_id] = lane
        return lane

    async def _run_lane(
        self,
        player_id: PlayerIdentity,
        queue: asyncio.Queue[PlayerUpdate | PlayerRemove | None],
        previous: asyncio.Task[None] | None = None,
    ) -> None:
        if previous is not None:
            # the player came back before its old lane finished closing the session
            await asyncio.gather(previous, return_exceptions=True)
        with player_context(player_id.identity):
            while True:
                event = await queue.get()
                if event is None:
                    return
                if isinstance(event, PlayerRemove):
                    await self._sessions.remove(player_id)
                    return
                await self._handle_update(event)

    async def _handle_update(self, event: PlayerUpdate) -> None:
        player_id = event.player
        try:
            metadata = await self._load_metadata(player_id)
            if await self._sessions.update(player_id, event.snapshot, metadata):
                self.stats.updates_sent += 1
        except TransportError as e:
            self._retry.add(player_id)
            self._record_error(player_id, e)
            logger.warning("Presence update for %s failed: %s", player_id.identity, e.message)
        except PresenceSyncError as e:
            self._retry.add(player_id)
            self._record_error(player_id, e)
            logger.error("Presence update for %s failed: %s", player_id.identity, e.message)
        except Exception as e:
            # keep the lane alive, the next poll gets a fresh attempt
            self._retry.add(player_id)
            self.stats.update_errors += 1
            self.stats.last_error = str(e)
            logger.exception("Unexpected error updating %s: %s", player_id.identity, e)

    async def _load_metadata(self, player_id: PlayerIdentity) -> TrackMetadata:
        handle = self._handles.get(player_id)
        if handle is None:
            return TrackMetadata()
        try:
            raw = await handle.metadata()
        except PlayerSourceError as e:
            logger.debug("Metadata for %s unavailable: %s", player_id.identity, e.message)
            raw = {}
        return await self._metadata.load(raw)

    def _record_error(self, player_id: PlayerIdentity, error: PresenceSyncError) -> None:
        self.stats.update_errors += 1
        self.stats.last_error = error.message
        key = player_id.identity
        self.stats.per_player_errors[key] = self.stats.per_player_errors.get(key, 0) + 1

    # =========================================================================
    # Maintenance + shutdown
    # =========================================================================

    async def _sweep_cache(self) -> None:
        try:
            await self._resolver.sweep_cache()
            self.stats.cache_sweeps += 1
        except PresenceSyncError as e:
            logger.warning("Cover cache sweep failed: %s", e.message)

    async def _shutdown(self) -> None:
        lanes = list(self._lanes.values())
        self._lanes.clear()
        for lane in lanes:
            lane.queue.put_nowait(None)
        tasks = [lane.task for lane in lanes] + list(self._retiring.values())
        self._retiring.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self._sessions.close_all()
        await self._resolver.close()
        await self._source.close()
        self._state = OrchestratorState.STOPPED
        logger.info("Presence engine stopped")

    def get_status(self) -> dict[str, Any]:
        return {
            "name": "Presence Orchestrator",
            "state": self._state.value,
            "players": [player_id.identity for player_id, _ in self._tracker.tracked()],
            "sessions": {
                handle.player_id.identity: handle.state.value
                for handle in self._sessions.sessions()
            },
            "stats": {
                "polls": self.stats.polls,
                "events_dispatched": self.stats.events_dispatched,
                "updates_sent": self.stats.updates_sent,
                "update_errors": self.stats.update_errors,
                "config_reloads": self.stats.config_reloads,
                "cache_sweeps": self.stats.cache_sweeps,
                "last_error": self.stats.last_error,
            },
        }

"""Application lifecycle: wiring, startup and graceful shutdown.

Hey future me - this is the ONLY place that knows every concrete class. Everything below
the orchestrator talks to ports, so tests build the same graph with fakes via
build_application(source=..., transport_factory=...).

STARTUP:
    ConfigStore (initial load, ConfigurationError is fatal here)
        └─► ArtUrlCache (FileCache or InMemoryCache) + extractor + providers → CoverArtResolver
        └─► JinjaTemplateRenderer (TemplateError is fatal here, on reload it's only logged)
        └─► PresenceSessionManager(transport_factory = DiscordIpcTransport)
        └─► EventOrchestrator
RUN:
    orchestrator.run() + config_store.watch() side by side, SIGINT/SIGTERM → stop()
SHUTDOWN:
    orchestrator drains lanes and closes sessions/providers/source,
    then the watch task is cancelled and the shared HTTP pool closed.
"""

import asyncio
import logging
import signal
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

from presencesync import __version__
from presencesync.application.cache import ArtUrlCache, CachedArt, FileCache, InMemoryCache
from presencesync.application.cache.base_cache import BaseCache
from presencesync.application.services.cover_art_service import CoverArtResolver
from presencesync.application.services.metadata_service import MetadataService
from presencesync.application.services.presence_service import (
    PresenceSessionManager,
    TransportFactory,
)
from presencesync.application.services.template_service import JinjaTemplateRenderer
from presencesync.application.workers.orchestrator import EventOrchestrator
from presencesync.config.settings import APP_NAME, Settings
from presencesync.config.store import ConfigStore
from presencesync.domain.ports import IPlayerSource, ITagReader
from presencesync.infrastructure.image_providers.factory import build_cover_pipeline
from presencesync.infrastructure.integrations.http_pool import HttpClientPool
from presencesync.infrastructure.media.playerctl_source import PlayerctlSource
from presencesync.infrastructure.media.tag_reader import MutagenTagReader
from presencesync.infrastructure.observability.logging import configure_logging
from presencesync.infrastructure.transport.discord_ipc import DiscordIpcTransport

logger = logging.getLogger(__name__)

CONFIG_WATCH_INTERVAL = 1.0


def build_renderer(settings: Settings) -> JinjaTemplateRenderer:
    return JinjaTemplateRenderer(settings.template.as_dict())


def build_cache(settings: Settings) -> ArtUrlCache:
    backend: BaseCache[str, CachedArt]
    if settings.cover.persist_cache:
        backend = FileCache(settings.cover.cache_dir)
    else:
        backend = InMemoryCache()
    return ArtUrlCache(backend, ttl_seconds=settings.cover.cache_ttl)


@dataclass
class Application:
    """The wired object graph of one service run."""

    config_store: ConfigStore
    resolver: CoverArtResolver
    sessions: PresenceSessionManager
    orchestrator: EventOrchestrator


def build_application(
    config_store: ConfigStore,
    source: IPlayerSource | None = None,
    transport_factory: TransportFactory | None = None,
    tag_reader: ITagReader | None = None,
) -> Application:
    """Wire every component for the config store's current settings.

    Raises:
        TemplateError: a configured template does not compile
    """
    settings = config_store.current
    extractor, providers = build_cover_pipeline(settings)
    resolver = CoverArtResolver(build_cache(settings), extractor, providers)
    sessions = PresenceSessionManager(
        settings,
        build_renderer(settings),
        resolver,
        transport_factory or DiscordIpcTransport,
    )
    orchestrator = EventOrchestrator(
        source=source or PlayerctlSource(),
        sessions=sessions,
        metadata=MetadataService(tag_reader or MutagenTagReader()),
        resolver=resolver,
        config_store=config_store,
        renderer_factory=build_renderer,
        cover_factory=build_cover_pipeline,
    )
    return Application(config_store, resolver, sessions, orchestrator)


def _install_signal_handlers(orchestrator: EventOrchestrator) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # not available on every platform / inside some test runners
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, orchestrator.stop)


async def run_service(
    config_path: Path | str | None = None, settings: Settings | None = None
) -> None:
    """Run the presence engine until SIGINT/SIGTERM.

    Raises:
        ConfigurationError: the initial configuration is invalid
        TemplateError: the initial templates don't compile
    """
    config_store = ConfigStore(config_path, settings=settings)
    app = build_application(config_store)
    logger.info(
        "Starting %s %s (config: %s, cache: %s)",
        APP_NAME,
        __version__,
        config_store.path,
        app.resolver.cache.describe()["location"],
    )

    _install_signal_handlers(app.orchestrator)
    watch_task = asyncio.create_task(
        config_store.watch(CONFIG_WATCH_INTERVAL), name="config-watch"
    )
    try:
        await app.orchestrator.run()
    finally:
        config_store.close()
        watch_task.cancel()
        with suppress(asyncio.CancelledError):
            await watch_task
        await HttpClientPool.close()
        logger.info("Shutdown complete")


def setup_logging(
    settings: Settings, level: str | None = None, json_format: bool | None = None
) -> None:
    """CLI flags win over the [logging] section."""
    configure_logging(
        log_level=level or settings.logging.level,
        json_format=settings.logging.json_format if json_format is None else json_format,
        app_name=APP_NAME,
    )

"""ConfigStore - current settings snapshot plus a change stream.

FLOW:
    watch() polls the config file's mtime
        └─► mtime changed → reload()
                ├─► load_settings() OK → current = new snapshot → every subscriber queue
                └─► ConfigurationError → logged, previous snapshot stays active
    close() → None sentinel into every subscriber queue (stream finished)
"""

import asyncio
import logging
from pathlib import Path

from presencesync.config.settings import Settings, load_settings, resolve_config_path
from presencesync.domain.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class ConfigStore:
    """Holds the active Settings and broadcasts reloads to subscribers."""

    def __init__(self, path: Path | str | None = None, settings: Settings | None = None) -> None:
        self._path = resolve_config_path(path)
        self._current = settings if settings is not None else load_settings(self._path)
        self._subscribers: list[asyncio.Queue[Settings | None]] = []
        self._last_mtime = self._mtime()
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def current(self) -> Settings:
        return self._current

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> "asyncio.Queue[Settings | None]":
        """Register a change stream; a None item means the store was closed."""
        queue: asyncio.Queue[Settings | None] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(None)
        else:
            self._subscribers.append(queue)
        return queue

    def reload(self) -> Settings:
        """Re-read the file and broadcast the new snapshot.

        Raises:
            ConfigurationError: the file is broken; the old snapshot stays current
        """
        settings = load_settings(self._path)
        self._current = settings
        self._last_mtime = self._mtime()
        logger.info("Configuration reloaded from %s", self._path)
        for queue in self._subscribers:
            queue.put_nowait(settings)
        return settings

    # Hey future me - plain mtime polling instead of inotify: zero extra dependencies and
    # editors that replace the file (vim writes a new inode) are handled the same way.
    # A deleted file shows up as mtime None and reloads into defaults.
    async def watch(self, interval: float = 1.0) -> None:
        """Poll the config file until close() and reload on every change."""
        while not self._closed:
            await asyncio.sleep(interval)
            mtime = self._mtime()
            if mtime == self._last_mtime:
                continue
            self._last_mtime = mtime
            try:
                self.reload()
            except ConfigurationError as e:
                logger.error("Config reload failed, keeping previous settings: %s", e.message)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(None)
        self._subscribers.clear()

    def _mtime(self) -> float | None:
        try:
            return self._path.stat().st_mtime
        except OSError:
            return None

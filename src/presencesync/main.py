"""Command line entry point.

    presencesync [--config PATH] [--log-level LEVEL] [--json-logs] [run]
    presencesync config        effective configuration as JSON
    presencesync players       detected players and their current snapshot
    presencesync clean-cache   remove expired cover art cache entries
"""

import argparse
import asyncio
import json
import logging
from collections.abc import Sequence

from presencesync import __version__
from presencesync.application.services.player_state import compute_snapshot
from presencesync.config.settings import Settings, load_settings
from presencesync.domain.exceptions import PresenceSyncError
from presencesync.infrastructure.lifecycle import build_cache, run_service, setup_logging
from presencesync.infrastructure.media.playerctl_source import PlayerctlSource

logger = logging.getLogger(__name__)

COMMANDS = ("run", "config", "players", "clean-cache")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="presencesync",
        description="Show what your media players are playing as Discord Rich Presence.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c", "--config", help="config file (default: $XDG_CONFIG_HOME/presencesync/config.toml)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="override [logging] level",
    )
    parser.add_argument(
        "--json-logs", action="store_true", default=None, help="log one JSON object per line"
    )
    parser.add_argument("command", nargs="?", default="run", choices=COMMANDS)
    return parser


async def _list_players(settings: Settings) -> list[dict[str, object]]:
    source = PlayerctlSource()
    try:
        handles = await source.list_players()
        snapshots = await asyncio.gather(*(compute_snapshot(h) for h in handles))
    finally:
        await source.close()

    rows = []
    for handle, snapshot in zip(handles, snapshots, strict=True):
        player_id = handle.identity()
        rows.append(
            {
                "identity": player_id.identity,
                "bus_name": player_id.bus_name,
                "unique_name": player_id.unique_name,
                "ignored": settings.player_config(player_id.identity).ignore,
                "status": snapshot.status.value,
                "title": snapshot.title,
                "track": snapshot.track_identifier,
                "position": snapshot.position_seconds,
                "volume": snapshot.volume_percent,
            }
        )
    return rows


def cmd_config(settings: Settings) -> int:
    print(settings.model_dump_json(indent=2))
    return 0


def cmd_players(settings: Settings) -> int:
    rows = asyncio.run(_list_players(settings))
    if not rows:
        print("No players found")
        return 0
    print(json.dumps(rows, indent=2, ensure_ascii=False))
    return 0


def cmd_clean_cache(settings: Settings) -> int:
    cache = build_cache(settings)
    removed = asyncio.run(cache.sweep())
    print(f"Removed {removed} expired entries from {cache.describe()['location']}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except PresenceSyncError as e:
        setup_logging(Settings(), args.log_level, args.json_logs)
        logger.error("%s", e.message)
        return 2

    setup_logging(settings, args.log_level, args.json_logs)

    try:
        if args.command == "config":
            return cmd_config(settings)
        if args.command == "players":
            return cmd_players(settings)
        if args.command == "clean-cache":
            return cmd_clean_cache(settings)
        asyncio.run(run_service(args.config, settings))
    except PresenceSyncError as e:
        logger.error("%s", e.message)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

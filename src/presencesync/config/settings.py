"""Application settings.

Hey future me - the TOML file is the primary source, PRESENCESYNC_* environment variables
override it (nested with "__", e.g. PRESENCESYNC_LOGGING__LEVEL=DEBUG or
PRESENCESYNC_COVER__PROVIDER__IMGBB__API_KEY=...). Settings objects are FROZEN snapshots:
a config reload builds a brand new Settings and the ConfigStore broadcasts it, nobody
mutates a live instance.

Player sections are keyed by the snake_case identity ("VLC media player" →
"vlc_media_player"). A player-specific section only overrides the keys it sets, the rest
comes from [player.default] (and from built-in defaults after that).
"""

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from presencesync.domain.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

APP_NAME = "presencesync"
DEFAULT_APP_ID = "1121632048155742288"
# asset key uploaded to the Discord application, or any https image URL
DEFAULT_ICON = "icon"

ActivityTypeName = Literal["listening", "watching", "playing", "competing"]
ProviderName = Literal["musicbrainz", "imgbb", "catbox"]

LITTER_HOURS = (1, 12, 24, 72)


def to_snake_case(value: str) -> str:
    """Normalize a player identity into a config section name.

    "VLC media player" → "vlc_media_player", "MusicBee" → "music_bee",
    "HTTPServer" → "http_server".
    """
    value = re.sub(r"\s+", "_", value.strip())
    value = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", value)
    value = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", value)
    return re.sub(r"_+", "_", value).lower()


def _xdg_dir(env_var: str, fallback: str) -> Path:
    base = os.environ.get(env_var)
    return Path(base) if base else Path.home() / fallback


def default_config_path() -> Path:
    return _xdg_dir("XDG_CONFIG_HOME", ".config") / APP_NAME / "config.toml"


def default_cache_dir() -> Path:
    return _xdg_dir("XDG_CACHE_HOME", ".cache") / APP_NAME / "cover_art"


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class TemplateSettings(_Section):
    """Jinja2 templates for the four activity text fields."""

    detail: str = "{{ title }}"
    state: str = "{{ artist_display }}"
    large_text: str = (
        "{% if album %}{{ album }}{% if year %} ({{ year }}){% endif %}"
        "{% if album_artist_display %} by {{ album_artist_display }}{% endif %}{% endif %}"
    )
    small_text: str = "{% if player %}Playing on {{ player }}{% else %}MPRIS{% endif %}"

    def as_dict(self) -> dict[str, str]:
        return {
            "detail": self.detail,
            "state": self.state,
            "large_text": self.large_text,
            "small_text": self.small_text,
        }


class TimeSettings(_Section):
    show: bool = True
    # True = elapsed time only, False = also send an end timestamp (remaining time)
    as_elapsed: bool = False


class ActivityTypeSettings(_Section):
    use_content_type: bool = True
    default: ActivityTypeName = "listening"


class ImgBBSettings(_Section):
    api_key: str | None = None
    # seconds, None/0 = keep forever
    expiration: int | None = Field(default=86400, ge=0)
    default_name: str | None = None
    timeout: float = Field(default=30.0, gt=0)


class CatboxSettings(_Section):
    user_hash: str | None = None
    use_litter: bool = False
    litter_hours: int = 24

    @field_validator("litter_hours")
    @classmethod
    def _litter_hours_allowed(cls, value: int) -> int:
        if value not in LITTER_HOURS:
            logger.warning(
                "Invalid litter duration (%sh). Falling back to 24 hours (allowed: 1, 12, 24, 72).",
                value,
            )
            return 24
        return value


class MusicBrainzSettings(_Section):
    # Cover Art Archive thumbnail size, 250/500/1200 or None for the original
    thumbnail_size: Literal[250, 500, 1200] | None = 250
    # rapidfuzz ratio (0-100) a candidate must reach to be tried
    min_score: int = Field(default=70, ge=0, le=100)
    max_candidates: int = Field(default=2, ge=1)
    contact: str = "https://github.com/presencesync/presencesync"


class ImageProcessingSettings(_Section):
    max_size: int = Field(default=500, gt=0)
    quality: int = Field(default=85, ge=1, le=95)


class CoverProviderSettings(_Section):
    provider: list[ProviderName] = ["musicbrainz", "imgbb"]
    imgbb: ImgBBSettings = ImgBBSettings()
    catbox: CatboxSettings = CatboxSettings()
    musicbrainz: MusicBrainzSettings = MusicBrainzSettings()
    image: ImageProcessingSettings = ImageProcessingSettings()


class CoverSettings(_Section):
    file_names: list[str] = ["cover", "folder", "front", "album", "art"]
    extensions: list[str] = ["jpg", "jpeg", "png", "gif", "webp"]
    search_depth: int = Field(default=1, ge=0)
    cache_ttl: int = Field(default=86400, gt=0)
    cache_dir: Path = Field(default_factory=default_cache_dir)
    persist_cache: bool = True
    provider: CoverProviderSettings = CoverProviderSettings()


class PlayerSettings(_Section):
    ignore: bool = False
    app_id: str = DEFAULT_APP_ID
    icon: str = DEFAULT_ICON
    show_icon: bool = False
    allow_streaming: bool = False
    override_activity_type: ActivityTypeName | None = None


class LoggingSettings(_Section):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_format: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class Settings(BaseSettings):
    """Immutable snapshot of the whole configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PRESENCESYNC_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    clear_on_pause: bool = True
    # poll interval in milliseconds
    interval: int = Field(default=2000, gt=0)
    template: TemplateSettings = TemplateSettings()
    time: TimeSettings = TimeSettings()
    activity_type: ActivityTypeSettings = ActivityTypeSettings()
    cover: CoverSettings = CoverSettings()
    player: dict[str, PlayerSettings] = {}
    logging: LoggingSettings = LoggingSettings()

    # Listen, pydantic-settings gives init kwargs (our TOML data) priority over env by
    # default. We want env to win so PRESENCESYNC_* can override a checked-in config file.
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (env_settings, init_settings)

    @field_validator("player", mode="before")
    @classmethod
    def _normalize_player_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {to_snake_case(str(key)): section for key, section in value.items()}
        return value

    @property
    def poll_interval_seconds(self) -> float:
        return self.interval / 1000.0

    def player_config(self, identity: str) -> PlayerSettings:
        """Effective settings for a player: its own section layered over "default"."""
        base = self.player.get("default", PlayerSettings())
        specific = self.player.get(to_snake_case(identity))
        if specific is None:
            return base
        overrides = {name: getattr(specific, name) for name in specific.model_fields_set}
        return base.model_copy(update=overrides)


def resolve_config_path(path: Path | str | None = None) -> Path:
    """CLI argument > PRESENCESYNC_CONFIG > $XDG_CONFIG_HOME/presencesync/config.toml."""
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get("PRESENCESYNC_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return default_config_path()


def load_settings(path: Path | str | None = None) -> Settings:
    """Load settings from a TOML file; a missing file means all defaults.

    Raises:
        ConfigurationError: unreadable file, broken TOML or invalid values
    """
    config_path = resolve_config_path(path)
    data: dict[str, Any] = {}
    if config_path.is_file():
        try:
            with config_path.open("rb") as fh:
                data = tomllib.load(fh)
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e
    else:
        logger.debug("No config file at %s, using defaults", config_path)

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

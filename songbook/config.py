"""
Configuration management for a songbook data root.

The configuration is stored as a TOML file in the data root. Environment
variables override what the file says, so a container can be pointed at
another port or songs directory without editing it.
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional

import tomli_w

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "songbook.toml"
CONFIG_VERSION = 1

DEFAULT_PORT = 8080
DEFAULT_HOST = "localhost"
DEFAULT_WEB_ROOT = "web"
DEFAULT_DATA_ROOT = "data"


@dataclass
class SongbookConfig:
    """Complete songbook configuration."""
    data_root: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    # Empty means <data_root>/songs
    songs: str = ""
    web: str = DEFAULT_WEB_ROOT

    log_level: str = "INFO"

    # Storage backend; "local" is files + SQLite FTS5, others via entry points
    backend: str = "local"

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.data_root / CONFIG_FILENAME

    @property
    def songs_root(self) -> Path:
        return Path(self.songs) if self.songs else self.data_root / "songs"

    @property
    def web_root(self) -> Path:
        return Path(self.web)

    @property
    def index_dir(self) -> Path:
        return self.data_root / "index"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def load_config(data_root: Path) -> SongbookConfig:
    """
    Load configuration from a data root.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = data_root / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    server = data.get("server", {})
    paths = data.get("paths", {})
    logging_section = data.get("logging", {})

    port = server.get("port", DEFAULT_PORT)
    if not isinstance(port, int):
        raise ValueError(f"Invalid port in {config_path}: {port!r}")

    return SongbookConfig(
        data_root=data_root,
        version=version,
        created=store.get("created", ""),
        host=server.get("host", DEFAULT_HOST),
        port=port,
        songs=paths.get("songs", ""),
        web=paths.get("web", DEFAULT_WEB_ROOT),
        log_level=logging_section.get("level", "INFO"),
        backend=store.get("backend", "local"),
    )


def save_config(config: SongbookConfig) -> None:
    """
    Save configuration to the data root.

    Creates the directory if it doesn't exist.
    """
    config.data_root.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
        },
        "server": {
            "host": config.host,
            "port": config.port,
        },
        "paths": {
            "songs": config.songs,
            "web": config.web,
        },
        "logging": {
            "level": config.log_level,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(data_root: Path) -> SongbookConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = data_root / CONFIG_FILENAME

    if config_path.exists():
        return load_config(data_root)
    config = SongbookConfig(data_root=data_root)
    save_config(config)
    return config


def get_data_root(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Data root from DATA_ROOT, defaulting to ./data."""
    environ = os.environ if environ is None else environ
    return Path(environ.get("DATA_ROOT") or DEFAULT_DATA_ROOT)


def apply_env_overrides(config: SongbookConfig,
                        environ: Optional[Mapping[str, str]] = None) -> SongbookConfig:
    """
    Override config values from the environment (not persisted).

    SONGS_ROOT, WEB_ROOT, PORT, then HOST falling back to HOSTNAME.
    A PORT that is not a number is ignored with a warning.
    """
    environ = os.environ if environ is None else environ

    if environ.get("SONGS_ROOT"):
        config.songs = environ["SONGS_ROOT"]
    if environ.get("WEB_ROOT"):
        config.web = environ["WEB_ROOT"]
    port = environ.get("PORT")
    if port:
        try:
            config.port = int(port)
        except ValueError:
            logger.warning("Ignoring non-numeric PORT %r, keeping %d", port, config.port)
    host = environ.get("HOST") or environ.get("HOSTNAME")
    if host:
        config.host = host
    return config


def resolve_config(data_root: Optional[Path] = None,
                   environ: Optional[Mapping[str, str]] = None) -> SongbookConfig:
    """Load (or create) the config for a data root and apply env overrides."""
    if data_root is None:
        data_root = get_data_root(environ)
    return apply_env_overrides(load_or_create_config(Path(data_root)), environ)

"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Minimum spacing between request-triggered update checks in seconds.
MIN_CHECK_INTERVAL = 10

DEFAULT_CHECK_INTERVAL = 600  # 10 minutes
DEFAULT_FETCH_TIMEOUT = 10
DEFAULT_CACHE_NAME = "assetsync-v1"
DEFAULT_DESCRIPTOR_PATH = "version.json"

# Resources cached on first install when the descriptor cannot be fetched,
# and always re-checked by the differential refresher.
DEFAULT_BOOTSTRAP = (
    "./",
    "index.html",
    "style.css",
    "manifest.json",
    "icon-192.png",
    "icon-512.png",
)

SYNC_MODES = ("descriptor", "differential")


@dataclass(frozen=True)
class OriginConfig:
    """Configuration for the remote origin serving the application resources."""

    base_url: str
    descriptor_path: str = DEFAULT_DESCRIPTOR_PATH
    fetch_timeout: int = DEFAULT_FETCH_TIMEOUT  # seconds per resource fetch
    user_agent: str = "assetsync/0.1"

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ConfigError("Origin base_url cannot be empty")
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigError(f"Origin base_url must start with http:// or https://, got '{self.base_url}'")
        if not self.descriptor_path:
            raise ConfigError("Origin descriptor_path cannot be empty")
        if self.fetch_timeout < 1:
            raise ConfigError(f"Fetch timeout must be at least 1 second (got {self.fetch_timeout})")
        if not self.user_agent:
            raise ConfigError("User-Agent cannot be empty")


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for the update strategy and its scheduling."""

    mode: str = "descriptor"
    cache_name: str = DEFAULT_CACHE_NAME
    check_interval: int = DEFAULT_CHECK_INTERVAL
    max_workers: int = 3  # concurrent fetches while building a generation
    bootstrap: tuple[str, ...] = DEFAULT_BOOTSTRAP

    def __post_init__(self) -> None:
        if self.mode not in SYNC_MODES:
            raise ConfigError(f"Invalid sync mode '{self.mode}'. Must be one of: {SYNC_MODES}")
        if not self.cache_name:
            raise ConfigError("Cache name cannot be empty")
        if "-temp-" in self.cache_name:
            raise ConfigError(f"Cache name '{self.cache_name}' must not contain '-temp-'")
        if self.check_interval < MIN_CHECK_INTERVAL:
            raise ConfigError(
                f"Check interval must be at least {MIN_CHECK_INTERVAL} seconds (got {self.check_interval})"
            )
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1 (got {self.max_workers})")


def _get_default_store_path() -> str:
    """Get the default store path using XDG-compliant directory.

    Returns ~/.local/share/assetsync/cache.db which is the standard
    location for user-specific data files on Linux/macOS.
    """
    home = Path.home()
    return str(home / ".local" / "share" / "assetsync" / "cache.db")


DEFAULT_STORE_PATH = _get_default_store_path()


@dataclass(frozen=True)
class StoreConfig:
    """Configuration for the SQLite generation store."""

    path: str = DEFAULT_STORE_PATH

    def __post_init__(self) -> None:
        if not self.path:
            raise ConfigError("Store path cannot be empty")


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the local HTTP front serving intercepted reads."""

    enabled: bool = True
    port: int = 8080

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"Server port must be between 1 and 65535, got {self.port}")


@dataclass(frozen=True)
class WebhookConfig:
    """Configuration for a single update-notification webhook."""

    url: str
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("Webhook URL cannot be empty")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Webhook URL must start with http:// or https://, got '{self.url}'")


@dataclass(frozen=True)
class NotifyConfig:
    """Configuration for update notifications."""

    webhooks: list[WebhookConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.webhooks, list):
            raise ConfigError("Webhooks must be a list")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    origin: OriginConfig
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)


def _parse_origin_config(data: dict | None) -> OriginConfig:
    """Parse origin configuration section."""
    if data is None:
        raise ConfigError("Configuration must contain an 'origin' section")
    if not isinstance(data, dict):
        raise ConfigError("'origin' section must be a dictionary")

    base_url = data.get("base_url")
    if base_url is None:
        raise ConfigError("'origin' section is missing 'base_url' field")

    return OriginConfig(
        base_url=str(base_url),
        descriptor_path=str(data.get("descriptor_path", DEFAULT_DESCRIPTOR_PATH)),
        fetch_timeout=int(data.get("fetch_timeout", DEFAULT_FETCH_TIMEOUT)),
        user_agent=str(data.get("user_agent", "assetsync/0.1")),
    )


def _parse_bootstrap(data: list | None) -> tuple[str, ...]:
    """Parse the bootstrap resource list."""
    if data is None:
        return DEFAULT_BOOTSTRAP
    if not isinstance(data, list):
        raise ConfigError("'sync.bootstrap' must be a list")

    bootstrap: list[str] = []
    for i, entry in enumerate(data):
        if not isinstance(entry, str) or not entry:
            raise ConfigError(f"Bootstrap entry {i} must be a non-empty string")
        bootstrap.append(entry)
    return tuple(bootstrap)


def _parse_sync_config(data: dict | None) -> SyncConfig:
    """Parse sync configuration section."""
    if data is None:
        return SyncConfig()
    if not isinstance(data, dict):
        raise ConfigError("'sync' section must be a dictionary")

    return SyncConfig(
        mode=str(data.get("mode", "descriptor")),
        cache_name=str(data.get("cache_name", DEFAULT_CACHE_NAME)),
        check_interval=int(data.get("check_interval", DEFAULT_CHECK_INTERVAL)),
        max_workers=int(data.get("max_workers", 3)),
        bootstrap=_parse_bootstrap(data.get("bootstrap")),
    )


def _parse_store_config(data: dict | None) -> StoreConfig:
    """Parse store configuration section."""
    if data is None:
        return StoreConfig()
    if not isinstance(data, dict):
        raise ConfigError("'store' section must be a dictionary")

    return StoreConfig(path=os.path.expanduser(str(data.get("path", DEFAULT_STORE_PATH))))


def _parse_server_config(data: dict | None) -> ServerConfig:
    """Parse server configuration section."""
    if data is None:
        return ServerConfig()
    if not isinstance(data, dict):
        raise ConfigError("'server' section must be a dictionary")

    return ServerConfig(
        enabled=bool(data.get("enabled", True)),
        port=int(data.get("port", 8080)),
    )


def _parse_webhook_config(data: dict, index: int) -> WebhookConfig:
    """Parse a single webhook configuration entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Webhook entry {index} must be a dictionary")

    url = data.get("url")
    if url is None:
        raise ConfigError(f"Webhook entry {index} is missing 'url' field")

    return WebhookConfig(
        url=str(url),
        enabled=bool(data.get("enabled", True)),
    )


def _parse_notify_config(data: dict | None) -> NotifyConfig:
    """Parse notify configuration section."""
    if data is None:
        return NotifyConfig()
    if not isinstance(data, dict):
        raise ConfigError("'notify' section must be a dictionary")

    webhooks_data = data.get("webhooks", [])
    if not isinstance(webhooks_data, list):
        raise ConfigError("'notify.webhooks' must be a list")

    webhooks = [_parse_webhook_config(webhook_data, i) for i, webhook_data in enumerate(webhooks_data)]

    return NotifyConfig(webhooks=webhooks)


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - ASSETSYNC_ORIGIN_URL: Override origin.base_url
    - ASSETSYNC_SYNC_MODE: Override sync.mode
    - ASSETSYNC_CHECK_INTERVAL: Override sync.check_interval
    - ASSETSYNC_STORE_PATH: Override store.path
    - ASSETSYNC_SERVER_PORT: Override server.port
    - ASSETSYNC_SERVER_ENABLED: Override server.enabled (true/false)
    """
    for section in ("origin", "sync", "store", "server"):
        if config_data.get(section) is None:
            config_data[section] = {}

    origin_url = os.environ.get("ASSETSYNC_ORIGIN_URL")
    if origin_url is not None:
        config_data["origin"]["base_url"] = origin_url

    sync_mode = os.environ.get("ASSETSYNC_SYNC_MODE")
    if sync_mode is not None:
        config_data["sync"]["mode"] = sync_mode

    check_interval = os.environ.get("ASSETSYNC_CHECK_INTERVAL")
    if check_interval is not None:
        config_data["sync"]["check_interval"] = int(check_interval)

    store_path = os.environ.get("ASSETSYNC_STORE_PATH")
    if store_path is not None:
        config_data["store"]["path"] = store_path

    server_port = os.environ.get("ASSETSYNC_SERVER_PORT")
    if server_port is not None:
        config_data["server"]["port"] = int(server_port)

    server_enabled = os.environ.get("ASSETSYNC_SERVER_ENABLED")
    if server_enabled is not None:
        config_data["server"]["enabled"] = server_enabled.lower() in ("true", "1", "yes")

    return config_data


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    try:
        data = _apply_env_overrides(data)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid environment override: {e}")

    try:
        return Config(
            origin=_parse_origin_config(data.get("origin")),
            sync=_parse_sync_config(data.get("sync")),
            store=_parse_store_config(data.get("store")),
            server=_parse_server_config(data.get("server")),
            notify=_parse_notify_config(data.get("notify")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")

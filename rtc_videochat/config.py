"""Configuration management for rtc-videochat.

This module handles loading configuration from multiple sources with the following priority:
1. CLI arguments (handled by caller)
2. Environment variables (RTC_VIDEOCHAT_SIGNALING_WS, RTC_VIDEOCHAT_HOST,
   RTC_VIDEOCHAT_PORT, RTC_VIDEOCHAT_USERNAME)
3. TOML configuration file
4. Default values (local development relay)

Configuration files are loaded from:
- rtc-videochat.toml in current working directory
- ~/.rtc-videochat/config.toml

Environment selection via RTC_VIDEOCHAT_ENV (development, staging, production).
Defaults to production if not set.

Example file::

    [server]
    host = "0.0.0.0"
    port = 3000

    [client]
    username = "alice"
    room = "standup"
    ice_servers = ["stun:stun.l.google.com:19302"]

    [environments.production]
    signaling_websocket = "wss://relay.example.org"
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger

DEFAULT_SIGNALING_WEBSOCKET = "ws://localhost:3000"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3000
DEFAULT_MAX_MESSAGE_SIZE = 16 * 1024 * 1024
DEFAULT_USERNAME = "You"

# Valid environment names
VALID_ENVIRONMENTS = {"development", "staging", "production"}


@dataclass
class ServerConfig:
    """Relay server settings.

    Attributes:
        host: Interface to bind.
        port: TCP port to listen on.
        max_message_size: Largest websocket frame accepted, in bytes.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        """Create ServerConfig from the TOML [server] section."""
        config = cls()
        if "host" in data:
            config.host = str(data["host"])
        for key in ("port", "max_message_size"):
            if key not in data:
                continue
            try:
                setattr(config, key, int(data[key]))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid server.{key} value: {data[key]!r}")
        return config


@dataclass
class ClientConfig:
    """Call client settings.

    Attributes:
        username: Display name sent with offers, answers and chat.
        room: Room joined on connect.
        media_file: Camera device or media file to stream. None uses the
            platform's default camera.
        media_format: FFmpeg input format for ``media_file``.
        ice_servers: STUN/TURN URLs passed to the peer connection.
        answer_with_media: Send local media when answering a call.
        downloads_dir: Where received files are saved.
    """

    username: str = DEFAULT_USERNAME
    room: Optional[str] = None
    media_file: Optional[str] = None
    media_format: Optional[str] = None
    ice_servers: List[str] = field(default_factory=list)
    answer_with_media: bool = False
    downloads_dir: str = "downloads"

    @classmethod
    def from_dict(cls, data: dict) -> "ClientConfig":
        """Create ClientConfig from the TOML [client] section."""
        config = cls()
        for key in ("username", "room", "media_file", "media_format", "downloads_dir"):
            if key in data:
                setattr(config, key, str(data[key]))

        ice_servers = data.get("ice_servers", [])
        if isinstance(ice_servers, str):
            ice_servers = [ice_servers]
        if isinstance(ice_servers, list):
            config.ice_servers = [str(url) for url in ice_servers]
        else:
            logger.warning(f"Ignoring invalid client.ice_servers value: {ice_servers!r}")

        if "answer_with_media" in data:
            config.answer_with_media = bool(data["answer_with_media"])
        return config


class Config:
    """Configuration manager for rtc-videochat."""

    def __init__(self):
        """Initialize configuration with defaults."""
        self.signaling_websocket: str = DEFAULT_SIGNALING_WEBSOCKET
        self.environment: str = "production"
        self.server = ServerConfig()
        self.client = ClientConfig()
        self.config_file: Optional[Path] = None
        self._config_data: dict = {}

    def load(self) -> None:
        """Load configuration from all sources.

        Priority order:
        1. Environment variables
        2. TOML configuration file
        3. Default values
        """
        self.environment = self._get_environment()

        config_file = self._find_config_file()
        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _get_environment(self) -> str:
        """Get the current environment from RTC_VIDEOCHAT_ENV.

        Returns:
            Environment name (development, staging, or production).
            Defaults to production if not set or invalid.
        """
        env = os.getenv("RTC_VIDEOCHAT_ENV", "production").lower()
        if env not in VALID_ENVIRONMENTS:
            logger.warning(
                f"Invalid RTC_VIDEOCHAT_ENV value '{env}'. "
                f"Valid values are: {', '.join(sorted(VALID_ENVIRONMENTS))}. "
                f"Defaulting to 'production'."
            )
            env = "production"
        return env

    def _home_config_path(self) -> Path:
        return Path.home() / ".rtc-videochat" / "config.toml"

    def _find_config_file(self) -> Optional[Path]:
        """Find the configuration file.

        Searches in order:
        1. rtc-videochat.toml in current working directory
        2. ~/.rtc-videochat/config.toml

        Returns:
            Path to config file if found, None otherwise.
        """
        cwd_config = Path.cwd() / "rtc-videochat.toml"
        if cwd_config.exists():
            logger.info(f"Loading config from {cwd_config}")
            return cwd_config

        home_config = self._home_config_path()
        if home_config.exists():
            logger.info(f"Loading config from {home_config}")
            return home_config

        logger.debug("No config file found, using defaults")
        return None

    def _load_config_file(self, config_file: Path) -> None:
        """Load configuration from TOML file.

        Args:
            config_file: Path to the TOML configuration file.
        """
        try:
            with open(config_file, "rb") as f:
                self._config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(f"Failed to load config file {config_file}: {e}. Using defaults.")
            return

        self.config_file = config_file
        self.server = ServerConfig.from_dict(self._config_data.get("server", {}))
        self.client = ClientConfig.from_dict(self._config_data.get("client", {}))

        environments = self._config_data.get("environments", {})
        env_config = environments.get(self.environment, {})
        if not env_config:
            logger.debug(
                f"No configuration found for environment '{self.environment}' "
                f"in {config_file}, using defaults"
            )
            return

        if "signaling_websocket" in env_config:
            self.signaling_websocket = env_config["signaling_websocket"]
            logger.debug(f"Loaded signaling_websocket from config: {self.signaling_websocket}")

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        Environment variables take precedence over config file settings
        but are overridden by CLI arguments (handled by caller).
        """
        ws_override = os.getenv("RTC_VIDEOCHAT_SIGNALING_WS")
        if ws_override:
            self.signaling_websocket = ws_override
            logger.info(f"Overriding signaling_websocket from env: {self.signaling_websocket}")

        host_override = os.getenv("RTC_VIDEOCHAT_HOST")
        if host_override:
            self.server.host = host_override
            logger.info(f"Overriding server host from env: {self.server.host}")

        port_override = os.getenv("RTC_VIDEOCHAT_PORT")
        if port_override:
            try:
                self.server.port = int(port_override)
                logger.info(f"Overriding server port from env: {self.server.port}")
            except ValueError:
                logger.warning(f"Ignoring invalid RTC_VIDEOCHAT_PORT value: {port_override!r}")

        username_override = os.getenv("RTC_VIDEOCHAT_USERNAME")
        if username_override:
            self.client.username = username_override

    def get_websocket_url(self, port: Optional[int] = None) -> str:
        """Get the WebSocket signaling server URL.

        Args:
            port: Port number to use if not specified in URL (default: server port).

        Returns:
            WebSocket URL with port.
        """
        url = self.signaling_websocket
        if ":" not in url.split("//")[-1]:
            url = f"{url}:{port or self.server.port}"
        return url


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Loads configuration on first call.

    Returns:
        Global Config instance.
    """
    global _config
    if _config is None:
        _config = Config()
        _config.load()
    return _config


def reload_config() -> Config:
    """Reload configuration from sources.

    Useful for testing or runtime reconfiguration.

    Returns:
        Reloaded Config instance.
    """
    global _config
    _config = Config()
    _config.load()
    return _config

"""Configuration management for rtc-call.

This module handles loading configuration from multiple sources with the following priority:
1. CLI arguments (handled by caller)
2. Environment variables (RTC_CALL_SIGNALING_WS, RTC_CALL_POLITE)
3. TOML configuration file
4. Default values

Configuration files are loaded from:
- rtc-call.toml in current working directory
- ~/.rtc-call/config.toml

Environment selection via RTC_CALL_ENV (development, staging, production).
Defaults to production if not set.

Example rtc-call.toml::

    [environments.production]
    signaling_websocket = "wss://relay.example.com"
    polite = true

    [[environments.production.ice_servers]]
    urls = "stun:stun.l.google.com:19302"

    [media]
    video = true
    audio = false
    play_from = "/dev/video0"
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from aiortc import RTCConfiguration, RTCIceServer
from loguru import logger

from rtc_call.exceptions import ConfigurationError


@dataclass
class IceServerConfig:
    """Configuration for a single STUN/TURN server.

    Attributes:
        urls: One URL or a list of URLs, e.g. ``stun:stun.l.google.com:19302``.
        username: TURN username, if any.
        credential: TURN credential, if any.
    """

    urls: Union[str, List[str]]
    username: Optional[str] = None
    credential: Optional[str] = None

    def __post_init__(self):
        """Validate ICE server configuration after initialization."""
        if not self.urls:
            raise ConfigurationError("ICE server urls cannot be empty")

    @classmethod
    def from_dict(cls, data: dict) -> "IceServerConfig":
        return cls(
            urls=data.get("urls"),
            username=data.get("username"),
            credential=data.get("credential"),
        )

    def to_rtc(self) -> RTCIceServer:
        return RTCIceServer(
            urls=self.urls, username=self.username, credential=self.credential
        )


@dataclass
class MediaConfig:
    """Local media settings.

    Attributes:
        audio: Whether to send audio.
        video: Whether to send video.
        play_from: File or device to read local media from. No local media is
            sent when unset.
        play_format: Optional container/device format (e.g. ``v4l2``).
        record_to: File to record remote media to. Remote media is
            discarded when unset.
    """

    audio: bool = False
    video: bool = True
    play_from: Optional[str] = None
    play_format: Optional[str] = None
    record_to: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "MediaConfig":
        """Create MediaConfig from the TOML [media] section.

        Args:
            data: Dictionary from TOML [media] section.

        Returns:
            MediaConfig instance.
        """
        return cls(
            audio=bool(data.get("audio", False)),
            video=bool(data.get("video", True)),
            play_from=data.get("play_from"),
            play_format=data.get("play_format"),
            record_to=data.get("record_to"),
        )


DEFAULT_SIGNALING_WEBSOCKET = "ws://localhost:8080"
DEFAULT_ICE_SERVERS = [IceServerConfig(urls="stun:stun.l.google.com:19302")]

# Valid environment names
VALID_ENVIRONMENTS = {"development", "staging", "production"}


def parse_bool(value: str) -> Optional[bool]:
    """Parse a boolean environment value.

    Returns:
        True/False for recognised spellings, None otherwise.
    """
    value = value.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return None


class Config:
    """Configuration manager for rtc-call."""

    def __init__(self):
        """Initialize configuration with defaults."""
        self.signaling_websocket: str = DEFAULT_SIGNALING_WEBSOCKET
        self.ice_servers: List[IceServerConfig] = list(DEFAULT_ICE_SERVERS)
        self.polite: Optional[bool] = None
        self.media: MediaConfig = MediaConfig()
        self.environment: str = "production"
        self._config_data: dict = {}

    def load(self) -> None:
        """Load configuration from all sources.

        Priority order:
        1. Environment variables (RTC_CALL_SIGNALING_WS, RTC_CALL_POLITE)
        2. TOML configuration file
        3. Default values
        """
        self.environment = self._get_environment()

        config_file = self._find_config_file()
        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _get_environment(self) -> str:
        """Get the current environment from RTC_CALL_ENV.

        Returns:
            Environment name (development, staging, or production).
            Defaults to production if not set or invalid.
        """
        env = os.getenv("RTC_CALL_ENV", "production").lower()
        if env not in VALID_ENVIRONMENTS:
            logger.warning(
                f"Invalid RTC_CALL_ENV value '{env}'. "
                f"Valid values are: {', '.join(sorted(VALID_ENVIRONMENTS))}. "
                f"Defaulting to 'production'."
            )
            env = "production"
        return env

    def _home_config_path(self) -> Path:
        return Path.home() / ".rtc-call" / "config.toml"

    def _find_config_file(self) -> Optional[Path]:
        """Find the configuration file.

        Searches in order:
        1. rtc-call.toml in current working directory
        2. ~/.rtc-call/config.toml

        Returns:
            Path to config file if found, None otherwise.
        """
        cwd_config = Path.cwd() / "rtc-call.toml"
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

        Invalid files or values are logged and the defaults kept.

        Args:
            config_file: Path to the TOML configuration file.
        """
        try:
            with open(config_file, "rb") as f:
                self._config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(
                f"Failed to load config file {config_file}: {e}. Using defaults."
            )
            return

        if "media" in self._config_data:
            self.media = MediaConfig.from_dict(self._config_data["media"])

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
            logger.debug(
                f"Loaded signaling_websocket from config: {self.signaling_websocket}"
            )

        if "polite" in env_config:
            self.polite = bool(env_config["polite"])

        if "ice_servers" in env_config:
            try:
                self.ice_servers = [
                    IceServerConfig.from_dict(entry)
                    for entry in env_config["ice_servers"]
                ]
            except (ConfigurationError, AttributeError, TypeError) as e:
                logger.warning(f"Invalid ice_servers in {config_file}: {e}. Using defaults.")
                self.ice_servers = list(DEFAULT_ICE_SERVERS)

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        Environment variables take precedence over config file settings
        but are overridden by CLI arguments (handled by caller).
        """
        ws_override = os.getenv("RTC_CALL_SIGNALING_WS")
        if ws_override:
            self.signaling_websocket = ws_override
            logger.info(
                f"Overriding signaling_websocket from env: {self.signaling_websocket}"
            )

        polite_override = os.getenv("RTC_CALL_POLITE")
        if polite_override:
            polite = parse_bool(polite_override)
            if polite is None:
                logger.warning(f"Ignoring invalid RTC_CALL_POLITE value '{polite_override}'")
            else:
                self.polite = polite
                logger.info(f"Overriding polite from env: {self.polite}")

    def get_rtc_configuration(self) -> RTCConfiguration:
        """Build the aiortc configuration for new connections."""
        return RTCConfiguration(iceServers=[s.to_rtc() for s in self.ice_servers])


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

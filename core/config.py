"""
Configuration Management - YAML-based configuration with environment overrides
=============================================================================

This module handles all configuration aspects including:
- Loading from YAML files
- Environment variable overrides
- Default values
- Configuration validation
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional, List
from dataclasses import dataclass, field, asdict

from .exceptions import ConfigError
from rules.engine import normalize_keywords


FAILURE_POLICIES = ("abort", "continue")
MAX_SEGMENT_LENGTH = 160


def _require_type(name: str, value: Any, expected: type) -> None:
    """Raise ConfigError unless value is an instance of expected (bools are not ints)."""
    if expected is not bool and isinstance(value, bool):
        raise ConfigError(f"{name} must be {expected.__name__}, got {value!r}")
    if not isinstance(value, expected):
        raise ConfigError(f"{name} must be {expected.__name__}, got {value!r}")


@dataclass
class ForwardConfig:
    """
    Forwarding rule configuration.

    Holds the destination number and the keyword rule set. Forwarding
    is disabled while either of them is empty.
    """
    destination_address: str = ""
    keywords: List[str] = field(default_factory=list)

    # Prepended to every forwarded message
    marker: str = "📱"

    # What to do when one segment fails: abort, continue
    failure_policy: str = "abort"

    def validate(self) -> None:
        """Validate and normalize forwarding settings."""
        # Unquoted numbers in YAML load as int
        if self.destination_address is None:
            self.destination_address = ""
        elif isinstance(self.destination_address, int) and not isinstance(self.destination_address, bool):
            self.destination_address = str(self.destination_address)
        _require_type("forward.destination_address", self.destination_address, str)
        self.destination_address = self.destination_address.strip()

        if self.keywords is None:
            self.keywords = []
        if isinstance(self.keywords, str):
            raise ConfigError("keywords must be a list, not a single string")
        if not isinstance(self.keywords, (list, tuple)):
            raise ConfigError(f"keywords must be a list, got {self.keywords!r}")
        for keyword in self.keywords:
            if keyword is not None and (isinstance(keyword, bool) or not isinstance(keyword, (str, int))):
                raise ConfigError(f"Invalid keyword: {keyword!r}")
        self.keywords = normalize_keywords(self.keywords)

        # An empty ``marker:`` line loads as None
        if self.marker is None:
            self.marker = ""
        _require_type("forward.marker", self.marker, str)

        if self.failure_policy not in FAILURE_POLICIES:
            raise ConfigError(
                f"Invalid failure_policy: {self.failure_policy}",
                {"allowed": list(FAILURE_POLICIES)}
            )

    @property
    def is_active(self) -> bool:
        return bool(self.destination_address) and bool(self.keywords)


@dataclass
class SMSConfig:
    """
    SMS transport configuration.

    Controls the Termux API commands, the inbound polling listener,
    outbound segmentation and the optional outcome webhook.
    """
    # Termux API settings
    termux_send_path: str = "termux-sms-send"
    termux_list_path: str = "termux-sms-list"
    sms_timeout: int = 10
    sim_slot: Optional[int] = None

    # Listener
    poll_interval: int = 3

    # Characters (code points) per outbound segment
    segment_length: int = MAX_SEGMENT_LENGTH

    # Webhook notified with every forwarding outcome
    webhook_enabled: bool = False
    webhook_url: str = ""
    webhook_headers: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate SMS configuration parameters."""
        _require_type("sms.termux_send_path", self.termux_send_path, str)
        _require_type("sms.termux_list_path", self.termux_list_path, str)
        _require_type("sms.segment_length", self.segment_length, int)
        _require_type("sms.sms_timeout", self.sms_timeout, int)
        _require_type("sms.poll_interval", self.poll_interval, int)
        _require_type("sms.webhook_enabled", self.webhook_enabled, bool)

        if self.webhook_url is None:
            self.webhook_url = ""
        _require_type("sms.webhook_url", self.webhook_url, str)

        if self.webhook_headers is None:
            self.webhook_headers = {}
        _require_type("sms.webhook_headers", self.webhook_headers, dict)

        if not 1 <= self.segment_length <= MAX_SEGMENT_LENGTH:
            raise ConfigError(
                f"segment_length must be between 1 and {MAX_SEGMENT_LENGTH}, got {self.segment_length}"
            )

        if self.sms_timeout < 1:
            raise ConfigError(f"sms_timeout must be at least 1, got {self.sms_timeout}")

        if self.poll_interval < 1:
            raise ConfigError(f"poll_interval must be at least 1, got {self.poll_interval}")

        if self.sim_slot is not None:
            _require_type("sms.sim_slot", self.sim_slot, int)
            if self.sim_slot not in (0, 1):
                raise ConfigError(f"sim_slot must be 0 or 1, got {self.sim_slot}")

        if self.webhook_enabled and not self.webhook_url:
            raise ConfigError("webhook_url is required when webhook_enabled is set")


@dataclass
class UIConfig:
    """Web settings editor configuration."""
    web_host: str = "127.0.0.1"
    web_port: int = 8080
    web_debug: bool = False

    def validate(self) -> None:
        _require_type("ui.web_host", self.web_host, str)
        _require_type("ui.web_port", self.web_port, int)
        _require_type("ui.web_debug", self.web_debug, bool)

        if self.web_port < 1 or self.web_port > 65535:
            raise ConfigError(f"Invalid web port: {self.web_port}")


@dataclass
class LoggingConfig:
    """Log output configuration."""
    level: str = "INFO"
    json_format: bool = False
    max_bytes: int = 1_048_576
    backup_count: int = 3

    def validate(self) -> None:
        _require_type("logging.level", self.level, str)
        _require_type("logging.json_format", self.json_format, bool)
        _require_type("logging.max_bytes", self.max_bytes, int)
        _require_type("logging.backup_count", self.backup_count, int)

        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Invalid log level: {self.level}")

        if self.max_bytes < 1024:
            raise ConfigError("max_bytes must be at least 1024")

        if self.backup_count < 0:
            raise ConfigError("backup_count must not be negative")


@dataclass
class Config:
    """
    Main configuration container.

    Aggregates all configuration sections into a single object
    and provides methods for validating and serializing them.
    """
    app_name: str = "SMS Forwarder"
    version: str = "1.0.0"
    debug: bool = False

    forward: ForwardConfig = field(default_factory=ForwardConfig)
    sms: SMSConfig = field(default_factory=SMSConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Paths (set at runtime)
    config_dir: str = ""
    data_dir: str = ""
    log_dir: str = ""
    config_path: str = ""

    def validate(self) -> None:
        """
        Validate all configuration sections.

        Raises:
            ConfigError: If any configuration section is invalid
        """
        self.forward.validate()
        self.sms.validate()
        self.ui.validate()
        self.logging.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (runtime paths excluded)."""
        return {
            "app_name": self.app_name,
            "version": self.version,
            "debug": self.debug,
            "forward": asdict(self.forward),
            "sms": asdict(self.sms),
            "ui": asdict(self.ui),
            "logging": asdict(self.logging),
        }


SECTIONS = ("forward", "sms", "ui", "logging")


def get_default_config_dir() -> Path:
    """
    Get the default configuration directory path.

    Returns:
        Path to the configuration directory
    """
    if "SMS_FORWARDER_CONFIG_DIR" in os.environ:
        return Path(os.environ["SMS_FORWARDER_CONFIG_DIR"])

    if "XDG_CONFIG_HOME" in os.environ:
        return Path(os.environ["XDG_CONFIG_HOME"]) / "sms-forwarder"

    home = Path.home()
    config_home = home / ".config"

    if config_home.exists():
        return config_home / "sms-forwarder"

    return home / ".sms-forwarder"


def get_default_data_dir() -> Path:
    """
    Get the default data directory path.

    Returns:
        Path to the data directory
    """
    if "SMS_FORWARDER_DATA_DIR" in os.environ:
        return Path(os.environ["SMS_FORWARDER_DATA_DIR"])

    if "XDG_DATA_HOME" in os.environ:
        return Path(os.environ["XDG_DATA_HOME"]) / "sms-forwarder"

    return Path.home() / ".local" / "share" / "sms-forwarder"


def load_config(config_path: Optional[str] = None, load_env: bool = True) -> Config:
    """
    Load configuration from YAML file with environment variable overrides.

    This function loads configuration in the following order:
    1. Default values from dataclass
    2. Values from YAML file
    3. Environment variable overrides (including a ``.env`` file)

    Args:
        config_path: Path to configuration file (optional)
        load_env: Whether to load environment variable overrides

    Returns:
        Config object with loaded values

    Raises:
        ConfigError: If configuration is invalid or cannot be loaded
    """
    config = Config()

    config.config_dir = str(get_default_config_dir())
    config.data_dir = str(get_default_data_dir())
    config.log_dir = str(Path(config.data_dir) / "logs")

    if config_path:
        yaml_path = Path(config_path).expanduser()
        config.config_dir = str(yaml_path.parent)
    else:
        yaml_path = Path(config.config_dir) / "config.yaml"
    config.config_path = str(yaml_path)

    if load_env:
        _load_env_file(Path(config.config_dir) / ".env")

    if yaml_path.exists():
        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file: {e}", {"path": str(yaml_path)})
        except OSError as e:
            raise ConfigError(f"Failed to read config file: {e}", {"path": str(yaml_path)})

        if not isinstance(yaml_config, dict):
            raise ConfigError("Config file must contain a mapping", {"path": str(yaml_path)})

        _apply_yaml_config(config, yaml_config)

    if load_env:
        _apply_env_overrides(config)

    config.validate()

    return config


def _load_env_file(env_file: Path) -> None:
    """Export KEY=VALUE lines from a ``.env`` file without overriding the environment."""
    if not env_file.exists():
        return

    try:
        with open(env_file, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except OSError as e:
        raise ConfigError(f"Failed to read env file: {e}", {"path": str(env_file)})

    for line in lines:
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, value = line.split("=", 1)
            key = key.strip()
            if key and key not in os.environ:
                os.environ[key] = value.strip()


def _apply_yaml_config(config: Config, yaml_config: Dict[str, Any]) -> None:
    """
    Apply YAML configuration values to Config object.

    Unknown keys are ignored.

    Args:
        config: Config object to update
        yaml_config: Dictionary of configuration values from YAML
    """
    for key in ("app_name", "version", "debug"):
        if key in yaml_config:
            setattr(config, key, yaml_config[key])

    for section in SECTIONS:
        section_cfg = yaml_config.get(section)
        if not section_cfg:
            continue
        if not isinstance(section_cfg, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")

        section_obj = getattr(config, section)
        for key, value in section_cfg.items():
            if hasattr(section_obj, key):
                setattr(section_obj, key, value)


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _to_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes", "on")


def _apply_env_overrides(config: Config) -> None:
    """
    Apply environment variable overrides to Config object.

    Environment variables follow the pattern: SMS_FORWARDER_SECTION_KEY
    For example: SMS_FORWARDER_FORWARD_DESTINATION, SMS_FORWARDER_SMS_SEGMENT_LENGTH

    Args:
        config: Config object to update
    """
    env_mappings = {
        # Forward settings
        "SMS_FORWARDER_FORWARD_DESTINATION": ("forward", "destination_address"),
        "SMS_FORWARDER_FORWARD_KEYWORDS": ("forward", "keywords", _split_list),
        "SMS_FORWARDER_FORWARD_MARKER": ("forward", "marker"),
        "SMS_FORWARDER_FORWARD_FAILURE_POLICY": ("forward", "failure_policy"),

        # SMS settings
        "SMS_FORWARDER_SMS_TIMEOUT": ("sms", "sms_timeout", int),
        "SMS_FORWARDER_SMS_POLL_INTERVAL": ("sms", "poll_interval", int),
        "SMS_FORWARDER_SMS_SEGMENT_LENGTH": ("sms", "segment_length", int),
        "SMS_FORWARDER_SMS_WEBHOOK_ENABLED": ("sms", "webhook_enabled", _to_bool),
        "SMS_FORWARDER_SMS_WEBHOOK_URL": ("sms", "webhook_url"),

        # UI settings
        "SMS_FORWARDER_UI_WEB_HOST": ("ui", "web_host"),
        "SMS_FORWARDER_UI_WEB_PORT": ("ui", "web_port", int),
        "SMS_FORWARDER_UI_WEB_DEBUG": ("ui", "web_debug", _to_bool),

        # Logging
        "SMS_FORWARDER_LOG_LEVEL": ("logging", "level"),
    }

    for env_var, mapping in env_mappings.items():
        value = os.environ.get(env_var)
        if value is None:
            continue

        section, key = mapping[0], mapping[1]
        converter = mapping[2] if len(mapping) > 2 else str

        try:
            converted = converter(value)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {env_var}: {value}", {"error": str(e)})

        setattr(getattr(config, section), key, converted)


def save_config(config: Config, config_path: Optional[str] = None) -> None:
    """
    Save configuration to YAML file.

    The file is written to a temporary sibling first and then renamed,
    so a concurrent reader never sees a half-written file.

    Args:
        config: Config object to save
        config_path: Path to save configuration (optional)

    Raises:
        ConfigError: If configuration cannot be saved
    """
    if config_path:
        yaml_path = Path(config_path)
    elif config.config_path:
        yaml_path = Path(config.config_path)
    else:
        yaml_path = Path(config.config_dir) / "config.yaml"

    try:
        yaml_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = yaml_path.with_name(yaml_path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                config.to_dict(), f,
                default_flow_style=False, sort_keys=False, allow_unicode=True
            )
        os.replace(tmp_path, yaml_path)
    except OSError as e:
        raise ConfigError(f"Failed to save config file: {e}", {"path": str(yaml_path)})


def create_default_config(config_dir: Optional[str] = None, overwrite: bool = False) -> Config:
    """
    Create a default configuration file.

    Creates the configuration directory structure and writes a default
    config.yaml that can be edited by hand, from the CLI or the web UI.

    Args:
        config_dir: Directory to create configuration in (optional)
        overwrite: Replace an existing config.yaml (and its saved settings)

    Returns:
        Config object with default values

    Raises:
        ConfigError: If config.yaml already exists and overwrite is not set
    """
    config = Config()

    if config_dir:
        config.config_dir = config_dir
        config.data_dir = str(Path(config_dir) / "data")
        config.log_dir = str(Path(config_dir) / "logs")
    else:
        config.config_dir = str(get_default_config_dir())
        config.data_dir = str(get_default_data_dir())
        config.log_dir = str(Path(config.data_dir) / "logs")
    config.config_path = str(Path(config.config_dir) / "config.yaml")

    if Path(config.config_path).exists() and not overwrite:
        raise ConfigError(
            f"Configuration already exists: {config.config_path}",
            {"path": config.config_path}
        )

    Path(config.config_dir).mkdir(parents=True, exist_ok=True)
    Path(config.data_dir).mkdir(parents=True, exist_ok=True)
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)

    save_config(config)

    return config

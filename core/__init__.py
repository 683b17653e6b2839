"""
Core Module - Foundation components for SMS Forwarder
=====================================================

This module provides the foundational components including:
- Configuration management and the persisted settings store
- Pipeline data models and collaborator ports
- Logging setup
- Exception handling
"""

from .config import Config, load_config, save_config, create_default_config
from .exceptions import (
    ForwarderError,
    ConfigError,
    ConfigurationUnavailable,
    SettingsError,
    SMSError,
    SendError,
    FatalSendError,
)
from .logging import setup_logging, get_logger
from .models import ForwardingConfiguration, InboundMessage
from .ports import ConfigurationSource, SendCapability
from .settings import SettingsStore

__all__ = [
    "Config",
    "load_config",
    "save_config",
    "create_default_config",
    "ForwarderError",
    "ConfigError",
    "ConfigurationUnavailable",
    "SettingsError",
    "SMSError",
    "SendError",
    "FatalSendError",
    "setup_logging",
    "get_logger",
    "ForwardingConfiguration",
    "InboundMessage",
    "ConfigurationSource",
    "SendCapability",
    "SettingsStore",
]

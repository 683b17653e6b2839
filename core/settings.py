"""
Settings Store - Persisted forwarding settings
==============================================

This module keeps the destination number and keyword list in the YAML
configuration file. It is the configuration source of the forwarding
engine and the backend of the settings editors (CLI and web UI).

Every ``read()`` goes back to the file, so edits made by the editor are
picked up by the next inbound message without restarting the listener.
"""

import os
import threading
from pathlib import Path
from typing import List, Optional

from .config import Config, load_config, save_config
from .exceptions import ConfigError, ConfigurationUnavailable, SettingsError
from .logging import get_logger, mask_phone
from .models import ForwardingConfiguration

logger = get_logger("settings")

# Environment variables that take precedence over the saved settings
ENV_OVERRIDES = {
    "destination_address": "SMS_FORWARDER_FORWARD_DESTINATION",
    "keywords": "SMS_FORWARDER_FORWARD_KEYWORDS",
}


class SettingsStore:
    """
    YAML-backed forwarding settings.

    Example:
        store = SettingsStore("~/.config/sms-forwarder/config.yaml")
        store.set_destination("+1234567890")
        store.add_keyword("urgent")

        snapshot = store.read()
        print(snapshot.is_active)  # True
    """

    def __init__(self, config_path: str, load_env: bool = True):
        """
        Initialize the settings store.

        Args:
            config_path: Path to the YAML configuration file
            load_env: Apply environment overrides when reading
        """
        self.config_path = str(Path(config_path).expanduser())
        self.load_env = load_env
        self._lock = threading.Lock()

    def read(self) -> ForwardingConfiguration:
        """
        Read a fresh snapshot of the forwarding settings.

        Returns:
            ForwardingConfiguration built from the current file contents

        Raises:
            ConfigurationUnavailable: If the file cannot be loaded
        """
        try:
            config = load_config(self.config_path, load_env=self.load_env)
        except ConfigError as e:
            raise ConfigurationUnavailable(
                "Forwarding settings could not be read",
                {"path": self.config_path, "error": e.message}
            ) from e

        return ForwardingConfiguration.create(
            config.forward.destination_address,
            config.forward.keywords
        )

    def load(self) -> Config:
        """Load the full configuration as stored on disk (no env overrides)."""
        return load_config(self.config_path, load_env=False)

    def overridden_fields(self) -> List[str]:
        """
        Settings whose stored value is shadowed by an environment variable.

        Edits to these fields are saved but ``read()`` keeps returning the
        environment value until the variable is unset.
        """
        if not self.load_env:
            return []
        return [name for name, var in ENV_OVERRIDES.items() if var in os.environ]

    def _warn_if_overridden(self, name: str) -> None:
        if name in self.overridden_fields():
            logger.warning(
                f"{ENV_OVERRIDES[name]} is set and overrides the saved {name}; "
                "the edit takes effect once it is unset"
            )

    def get_keywords(self) -> List[str]:
        return list(self.load().forward.keywords)

    def get_destination(self) -> str:
        return self.load().forward.destination_address

    def set_destination(self, address: Optional[str]) -> str:
        """
        Store the destination number.

        A blank value is allowed and disables forwarding.

        Args:
            address: Destination phone number

        Returns:
            The stored (trimmed) value
        """
        cleaned = (address or "").strip()
        with self._lock:
            config = self.load()
            config.forward.destination_address = cleaned
            save_config(config, self.config_path)

        if cleaned:
            logger.info(f"Destination set to {mask_phone(cleaned)}")
        else:
            logger.info("Destination cleared, forwarding disabled")
        self._warn_if_overridden("destination_address")
        return cleaned

    def add_keyword(self, keyword: Optional[str]) -> bool:
        """
        Add a keyword to the rule set.

        Args:
            keyword: Keyword to add (trimmed before storing)

        Returns:
            True if added, False if an equal keyword (ignoring case) exists

        Raises:
            SettingsError: If the keyword is blank
        """
        cleaned = (keyword or "").strip()
        if not cleaned:
            raise SettingsError("Keyword must not be blank")

        with self._lock:
            config = self.load()
            existing = {k.lower() for k in config.forward.keywords}
            if cleaned.lower() in existing:
                return False
            config.forward.keywords = list(config.forward.keywords) + [cleaned]
            save_config(config, self.config_path)

        logger.info(f"Keyword added: {cleaned}")
        self._warn_if_overridden("keywords")
        return True

    def remove_keyword(self, keyword: Optional[str]) -> bool:
        """
        Remove a keyword, ignoring case.

        Args:
            keyword: Keyword to remove

        Returns:
            True if a keyword was removed
        """
        needle = (keyword or "").strip().lower()
        if not needle:
            return False

        with self._lock:
            config = self.load()
            remaining = [k for k in config.forward.keywords if k.lower() != needle]
            if len(remaining) == len(config.forward.keywords):
                return False
            config.forward.keywords = remaining
            save_config(config, self.config_path)

        logger.info(f"Keyword removed: {keyword.strip()}")
        self._warn_if_overridden("keywords")
        return True

    def clear_keywords(self) -> int:
        """
        Remove all keywords.

        Returns:
            Number of keywords removed
        """
        with self._lock:
            config = self.load()
            count = len(config.forward.keywords)
            if count:
                config.forward.keywords = []
                save_config(config, self.config_path)

        logger.info(f"Cleared {count} keyword(s)")
        self._warn_if_overridden("keywords")
        return count

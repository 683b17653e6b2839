"""
Exception Definitions - Custom exceptions for SMS Forwarder
===========================================================

This module defines the custom exceptions used throughout the application.
Skip decisions (empty body, not configured, no keyword match) are outcome
values, not exceptions; only real failures are raised.
"""

from typing import Optional


class ForwarderError(Exception):
    """
    Base exception for all SMS Forwarder errors.

    Attributes:
        message (str): Human-readable error description
        details (dict): Additional error details for debugging
    """

    def __init__(self, message: str, details: dict = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            details: Optional dictionary with additional error context
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return formatted error message with details if present."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigError(ForwarderError):
    """
    Configuration-related errors.

    Raised when there are issues with:
    - Unreadable configuration files
    - YAML parsing errors
    - Invalid configuration values
    """
    pass


class ConfigurationUnavailable(ForwarderError):
    """
    The configuration source could not be read during an evaluation.

    Raised by configuration sources and by the forwarding engine before
    any keyword matching is attempted. The underlying error is chained
    as ``__cause__``.
    """
    pass


class SettingsError(ForwarderError):
    """Rejected settings edit, such as adding a blank keyword."""
    pass


class SMSError(ForwarderError):
    """
    SMS handling errors.

    Raised when there are issues with:
    - Termux API failures
    - SMS listing or parsing errors
    - Permission issues
    """
    pass


class SendError(SMSError):
    """
    A single outbound segment could not be sent.

    The forwarding engine never retries a failed send. Depending on the
    failure policy it either stops or moves on to the next segment.

    Attributes:
        destination (str): Number the segment was addressed to
    """

    def __init__(self, message: str, destination: Optional[str] = None, details: dict = None):
        self.destination = destination
        super().__init__(message, details)


class FatalSendError(SendError):
    """
    The transport is unusable (Termux API missing, command not found).

    Always stops the remaining segments of a message, whatever the
    failure policy says.
    """
    pass

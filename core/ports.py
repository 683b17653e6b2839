"""Ports (interfaces) used by the forwarding engine.

The engine only needs to read the current settings and to hand one
segment at a time to a transport, so both collaborators are described
as minimal protocols.
"""

from typing import Protocol

from core.models import ForwardingConfiguration


class ConfigurationSource(Protocol):
    """Read access to the current forwarding settings."""

    def read(self) -> ForwardingConfiguration:
        """
        Return a snapshot of the settings.

        Raises:
            ConfigurationUnavailable: If the settings cannot be read
        """
        ...


class SendCapability(Protocol):
    """Dispatch of one transport-level unit to one destination."""

    def send(self, destination: str, segment: str) -> None:
        """
        Send one segment.

        Raises:
            SendError: If this segment could not be sent
            FatalSendError: If the transport is unusable
        """
        ...

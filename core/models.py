"""
Core Models - Data passed through the forwarding pipeline
=========================================================

These dataclasses are shared by the forwarding engine, the settings
store and the SMS transport, so none of them depends on the others'
types.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from rules.engine import normalize_keywords


@dataclass(frozen=True)
class ForwardingConfiguration:
    """
    Snapshot of the forwarding settings for one evaluation.

    Attributes:
        destination_address (str): Number messages are relayed to;
            blank disables forwarding
        keywords (tuple): Normalized keyword rule set; empty disables
            forwarding
    """
    destination_address: str = ""
    keywords: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "destination_address", (self.destination_address or "").strip())
        object.__setattr__(self, "keywords", tuple(normalize_keywords(self.keywords)))

    @property
    def is_active(self) -> bool:
        """Forwarding runs only with a destination and at least one keyword."""
        return bool(self.destination_address) and bool(self.keywords)

    @classmethod
    def create(cls, destination_address: str, keywords: Optional[Iterable[str]]) -> "ForwardingConfiguration":
        """Build a snapshot from loosely typed settings values."""
        return cls(destination_address=destination_address or "", keywords=tuple(keywords or ()))


@dataclass(frozen=True)
class InboundMessage:
    """
    One logical inbound message.

    A long SMS arrives as several transport fragments; ``parts`` holds
    them in arrival order. ``metadata`` (sender, timestamp, ...) is
    carried along for logging and never interpreted by the engine.
    """
    parts: Tuple[Optional[str], ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.parts, str):
            object.__setattr__(self, "parts", (self.parts,))
        else:
            object.__setattr__(self, "parts", tuple(self.parts))

    @property
    def body(self) -> str:
        """Parts joined in order with no separator; missing parts count as empty."""
        return "".join(part or "" for part in self.parts)

    @classmethod
    def from_text(cls, text: str, **metadata) -> "InboundMessage":
        """Create a single-part message."""
        return cls(parts=(text,), metadata=dict(metadata))

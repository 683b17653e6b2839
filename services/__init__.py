"""
Services Module - Forwarding services for SMS Forwarder
=======================================================

This module provides the main services:
- Segmenter: splits outbound text into SMS-sized segments
- Forwarder: keyword evaluation and ordered dispatch
- SMS Handler: Termux API transport and inbound listener
- Outcome Webhook: optional HTTP reporting of outcomes
"""

from .segmenter import segment, SEGMENT_MAX_LENGTH
from .forwarder import (
    evaluate_and_forward,
    build_message_callback,
    ForwardingEngine,
    ForwardOutcome,
    FailurePolicy,
    OutcomeStatus,
    SkipReason,
    RecordingTransport,
    FORWARD_MARKER,
)
from .sms_handler import SMSHandler, SMSMessage
from .webhook import OutcomeWebhook

__all__ = [
    "segment",
    "SEGMENT_MAX_LENGTH",
    "evaluate_and_forward",
    "build_message_callback",
    "ForwardingEngine",
    "ForwardOutcome",
    "FailurePolicy",
    "OutcomeStatus",
    "SkipReason",
    "RecordingTransport",
    "FORWARD_MARKER",
    "SMSHandler",
    "SMSMessage",
    "OutcomeWebhook",
]

"""
Forwarder - Keyword-triggered SMS forwarding
============================================

This module decides whether an inbound message is relayed to the
configured destination and, if so, sends it segment by segment.

``evaluate_and_forward`` is the pure decision-and-dispatch function; it
never logs and has no side effects other than calling the transport.
``ForwardingEngine`` wraps it for the listener, the CLI and the web UI:
it reads a fresh settings snapshot per message and logs every outcome.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass
from enum import Enum

from core.config import Config
from core.exceptions import ConfigurationUnavailable, FatalSendError, SendError
from core.logging import get_logger, mask_phone, set_log_context, clear_log_context
from core.models import ForwardingConfiguration, InboundMessage
from core.ports import ConfigurationSource, SendCapability
from rules.engine import KeywordRuleSet
from .segmenter import SEGMENT_MAX_LENGTH, segment

logger = get_logger("services.forwarder")

FORWARD_MARKER = "📱"


class FailurePolicy(Enum):
    """What to do with the remaining segments after a send failure."""
    ABORT = "abort"         # Stop at the first failed segment
    CONTINUE = "continue"   # Keep attempting later segments


class OutcomeStatus(Enum):
    """Overall result of evaluating one message."""
    SKIPPED = "skipped"
    FORWARDED = "forwarded"
    PARTIALLY_FORWARDED = "partially_forwarded"


class SkipReason(Enum):
    """Why a message was not forwarded."""
    EMPTY_BODY = "empty_body"
    NOT_CONFIGURED = "not_configured"
    NO_KEYWORD_MATCH = "no_keyword_match"


@dataclass(frozen=True)
class ForwardOutcome:
    """
    Result of evaluating one inbound message.

    Attributes:
        status (OutcomeStatus): Skipped, forwarded or partially forwarded
        reason (SkipReason): Why the message was skipped (skips only)
        segment_count (int): Segments produced for the message
        sent_count (int): Segments the transport accepted
        failed_count (int): Segments whose send failed
        error (SendError): First send failure, if any
        matched_keyword (str): Keyword that triggered forwarding
    """
    status: OutcomeStatus
    reason: Optional[SkipReason] = None
    segment_count: int = 0
    sent_count: int = 0
    failed_count: int = 0
    error: Optional[SendError] = None
    matched_keyword: Optional[str] = None

    @classmethod
    def skipped(cls, reason: SkipReason) -> "ForwardOutcome":
        return cls(status=OutcomeStatus.SKIPPED, reason=reason)

    @classmethod
    def forwarded(cls, segment_count: int, matched_keyword: Optional[str] = None) -> "ForwardOutcome":
        return cls(
            status=OutcomeStatus.FORWARDED,
            segment_count=segment_count,
            sent_count=segment_count,
            matched_keyword=matched_keyword,
        )

    @classmethod
    def partially_forwarded(
        cls,
        segment_count: int,
        sent_count: int,
        failed_count: int,
        error: SendError,
        matched_keyword: Optional[str] = None
    ) -> "ForwardOutcome":
        return cls(
            status=OutcomeStatus.PARTIALLY_FORWARDED,
            segment_count=segment_count,
            sent_count=sent_count,
            failed_count=failed_count,
            error=error,
            matched_keyword=matched_keyword,
        )

    @property
    def is_skipped(self) -> bool:
        return self.status is OutcomeStatus.SKIPPED

    @property
    def is_forwarded(self) -> bool:
        return self.status is OutcomeStatus.FORWARDED

    @property
    def is_partial(self) -> bool:
        return self.status is OutcomeStatus.PARTIALLY_FORWARDED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "segment_count": self.segment_count,
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "error": str(self.error) if self.error else None,
            "matched_keyword": self.matched_keyword,
        }

    def __str__(self) -> str:
        if self.is_skipped:
            return f"Skipped({self.reason.value})"
        if self.is_forwarded:
            return f"Forwarded({self.segment_count})"
        return f"PartiallyForwarded(sent={self.sent_count}/{self.segment_count}, error={self.error})"


def evaluate_and_forward(
    message: InboundMessage,
    config: ForwardingConfiguration,
    transport: SendCapability,
    marker: str = FORWARD_MARKER,
    policy: FailurePolicy = FailurePolicy.ABORT,
    max_length: int = SEGMENT_MAX_LENGTH
) -> ForwardOutcome:
    """
    Decide whether to forward a message and dispatch it if so.

    The reconstructed body is matched case-insensitively against the
    keyword set. On a match, ``marker + body`` is segmented and every
    segment is handed to ``transport.send`` in order. Send failures are
    never retried.

    Args:
        message: Inbound message (parts joined with no separator)
        config: Settings snapshot for this evaluation
        transport: Capability used to send each segment
        marker: Prefix marking the message as auto-forwarded
        policy: Failure policy for the remaining segments
        max_length: Maximum segment length

    Returns:
        ForwardOutcome describing what happened
    """
    body = message.body
    if not body:
        return ForwardOutcome.skipped(SkipReason.EMPTY_BODY)

    if not config.is_active:
        return ForwardOutcome.skipped(SkipReason.NOT_CONFIGURED)

    keyword = KeywordRuleSet(config.keywords).match(body)
    if keyword is None:
        return ForwardOutcome.skipped(SkipReason.NO_KEYWORD_MATCH)

    segments = segment(f"{marker}{body}", max_length)
    destination = config.destination_address

    sent = 0
    failed = 0
    first_error: Optional[SendError] = None

    for chunk in segments:
        try:
            transport.send(destination, chunk)
        except SendError as e:
            failed += 1
            if first_error is None:
                first_error = e
            if policy is FailurePolicy.ABORT or isinstance(e, FatalSendError):
                break
        else:
            sent += 1

    if first_error is not None:
        return ForwardOutcome.partially_forwarded(
            segment_count=len(segments),
            sent_count=sent,
            failed_count=failed,
            error=first_error,
            matched_keyword=keyword,
        )

    return ForwardOutcome.forwarded(len(segments), matched_keyword=keyword)


class ForwardingEngine:
    """
    Forwarding service used by the listener, the CLI and the web UI.

    Holds no mutable state of its own, so ``handle`` can be called from
    several threads for distinct messages.

    Example:
        engine = ForwardingEngine(SettingsStore(path), sms_handler)

        outcome = engine.handle(InboundMessage.from_text("URGENT: call now"))
        print(outcome)  # Forwarded(1)
    """

    def __init__(
        self,
        config_source: ConfigurationSource,
        transport: SendCapability,
        marker: str = FORWARD_MARKER,
        policy: FailurePolicy = FailurePolicy.ABORT,
        max_length: int = SEGMENT_MAX_LENGTH
    ):
        """
        Initialize the forwarding engine.

        Args:
            config_source: Where settings snapshots are read from
            transport: Capability used to send segments
            marker: Prefix marking the message as auto-forwarded
            policy: Failure policy for the remaining segments
            max_length: Maximum segment length
        """
        self.config_source = config_source
        self.transport = transport
        self.marker = marker
        self.policy = policy
        self.max_length = max_length

    @classmethod
    def from_config(
        cls,
        config: Config,
        config_source: ConfigurationSource,
        transport: SendCapability
    ) -> "ForwardingEngine":
        """Build an engine from the ``forward`` and ``sms`` config sections."""
        return cls(
            config_source=config_source,
            transport=transport,
            marker=config.forward.marker,
            policy=FailurePolicy(config.forward.failure_policy),
            max_length=config.sms.segment_length,
        )

    def handle(self, message: InboundMessage) -> ForwardOutcome:
        """
        Evaluate one inbound message against the current settings.

        Args:
            message: Inbound message

        Returns:
            ForwardOutcome describing what happened

        Raises:
            ConfigurationUnavailable: If settings could not be read
        """
        if not message.body:
            outcome = ForwardOutcome.skipped(SkipReason.EMPTY_BODY)
            self._log_outcome(message, outcome, None)
            return outcome

        try:
            snapshot = self.config_source.read()
        except ConfigurationUnavailable:
            logger.error("Forwarding settings unavailable, message not evaluated")
            raise
        except Exception as e:
            logger.error(f"Forwarding settings unavailable: {e}")
            raise ConfigurationUnavailable(
                "Forwarding settings could not be read",
                {"error": str(e)}
            ) from e

        outcome = evaluate_and_forward(
            message,
            snapshot,
            self.transport,
            marker=self.marker,
            policy=self.policy,
            max_length=self.max_length,
        )
        self._log_outcome(message, outcome, snapshot)
        return outcome

    def _log_outcome(
        self,
        message: InboundMessage,
        outcome: ForwardOutcome,
        snapshot: Optional[ForwardingConfiguration]
    ) -> None:
        sender = message.metadata.get("sender")
        source = f" from {mask_phone(sender)}" if sender else ""
        extra = {"outcome": outcome.to_dict()}

        if outcome.is_skipped:
            logger.debug(f"Message{source} skipped: {outcome.reason.value}", extra=extra)
        elif outcome.is_forwarded:
            logger.info(
                f"Message{source} forwarded to {mask_phone(snapshot.destination_address)} "
                f"in {outcome.segment_count} segment(s) (keyword: {outcome.matched_keyword})",
                extra=extra
            )
        else:
            logger.error(
                f"Message{source} partially forwarded: {outcome.sent_count}/{outcome.segment_count} "
                f"segment(s) sent, first error: {outcome.error}",
                extra=extra
            )


def build_message_callback(engine: ForwardingEngine, webhook=None) -> Callable[[Any], Optional[ForwardOutcome]]:
    """
    Adapt the engine to the SMS listener callback interface.

    The callback converts each received SMS (anything with a
    ``to_inbound()`` method) to an ``InboundMessage``, runs it through
    the engine and reports the outcome to the webhook, if any. A
    settings read failure is logged and the message is dropped, so the
    listener keeps running.

    Args:
        engine: Forwarding engine
        webhook: Optional OutcomeWebhook

    Returns:
        Callback suitable for ``SMSHandler.on_message_received``
    """

    def handle_sms(sms) -> Optional[ForwardOutcome]:
        message = sms.to_inbound()
        sender = message.metadata.get("sender")
        set_log_context(sender=mask_phone(sender) if sender else None)
        try:
            outcome = engine.handle(message)
        except ConfigurationUnavailable as e:
            logger.error(f"Dropping message, settings unavailable: {e}")
            return None
        finally:
            clear_log_context()

        if webhook is not None:
            webhook.notify(message, outcome)
        return outcome

    return handle_sms


class RecordingTransport:
    """
    In-memory transport that records sends instead of transmitting them.

    Used for dry runs and tests. ``fail_on`` lists zero-based call
    indexes that raise ``SendError`` (or ``FatalSendError`` when
    ``fatal`` is set).
    """

    def __init__(self, fail_on: Optional[List[int]] = None, fatal: bool = False):
        self.sent: List[Tuple[str, str]] = []
        self.calls = 0
        self.fail_on = set(fail_on or [])
        self.fatal = fatal

    def send(self, destination: str, segment: str) -> None:
        index = self.calls
        self.calls += 1
        if index in self.fail_on:
            error_cls = FatalSendError if self.fatal else SendError
            raise error_cls(f"Simulated failure on segment {index + 1}", destination=destination)
        self.sent.append((destination, segment))

    @property
    def segments(self) -> List[str]:
        return [chunk for _, chunk in self.sent]

"""
Test Forwarder Module
=====================

Unit tests for the forwarding decision and dispatch pipeline.
"""

import pytest
import threading
import time
from collections import defaultdict
from unittest.mock import MagicMock
from pathlib import Path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import Config, load_config
from core.exceptions import ConfigError, ConfigurationUnavailable, SendError, FatalSendError
from core.models import ForwardingConfiguration, InboundMessage
from services.forwarder import (
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
from services.sms_handler import SMSMessage


@pytest.fixture
def config():
    return ForwardingConfiguration(destination_address="+100", keywords=("urgent",))


class StaticSource:
    """Configuration source returning a fixed snapshot and counting reads."""

    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.reads = 0

    def read(self):
        self.reads += 1
        return self.snapshot


class ThreadRecordingTransport:
    """Records segments per sending thread, yielding between sends."""

    def __init__(self):
        self.by_thread = defaultdict(list)
        self._lock = threading.Lock()

    def send(self, destination, segment):
        time.sleep(0.001)
        with self._lock:
            self.by_thread[threading.get_ident()].append(segment)


class BrokenSource:
    def __init__(self, error):
        self.error = error
        self.reads = 0

    def read(self):
        self.reads += 1
        raise self.error


class TestForwardingConfiguration:
    """Tests for the settings snapshot."""

    def test_active(self, config):
        assert config.is_active is True

    def test_blank_destination_inactive(self):
        assert ForwardingConfiguration("   ", ("urgent",)).is_active is False

    def test_no_keywords_inactive(self):
        assert ForwardingConfiguration("+100", ()).is_active is False

    def test_keywords_normalized(self):
        snapshot = ForwardingConfiguration.create(" +100 ", ["Urgent", " urgent ", ""])
        assert snapshot.destination_address == "+100"
        assert snapshot.keywords == ("Urgent",)


class TestInboundMessage:
    """Tests for message reconstruction."""

    def test_parts_joined_without_separator(self):
        message = InboundMessage(parts=("UR", "GENT now"))
        assert message.body == "URGENT now"

    def test_missing_parts_count_as_empty(self):
        message = InboundMessage(parts=("a", None, "b"))
        assert message.body == "ab"

    def test_from_text(self):
        message = InboundMessage.from_text("hello", sender="+1")
        assert message.parts == ("hello",)
        assert message.metadata == {"sender": "+1"}


class TestEvaluateAndForward:
    """Tests for evaluate_and_forward()."""

    def test_empty_body_skipped(self, config):
        transport = RecordingTransport()
        outcome = evaluate_and_forward(InboundMessage(parts=()), config, transport)
        assert outcome == ForwardOutcome.skipped(SkipReason.EMPTY_BODY)
        assert transport.calls == 0

    def test_empty_parts_skipped(self, config):
        transport = RecordingTransport()
        outcome = evaluate_and_forward(InboundMessage(parts=("", "")), config, transport)
        assert outcome.reason is SkipReason.EMPTY_BODY

    def test_blank_destination_not_configured(self):
        transport = RecordingTransport()
        snapshot = ForwardingConfiguration(destination_address="", keywords=("urgent",))
        outcome = evaluate_and_forward(InboundMessage.from_text("urgent stuff"), snapshot, transport)
        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.reason is SkipReason.NOT_CONFIGURED
        assert transport.calls == 0

    def test_no_keywords_not_configured(self):
        snapshot = ForwardingConfiguration(destination_address="+100", keywords=())
        outcome = evaluate_and_forward(InboundMessage.from_text("hello"), snapshot, RecordingTransport())
        assert outcome.reason is SkipReason.NOT_CONFIGURED

    def test_empty_body_checked_before_configuration(self):
        snapshot = ForwardingConfiguration()
        outcome = evaluate_and_forward(InboundMessage(parts=("",)), snapshot, RecordingTransport())
        assert outcome.reason is SkipReason.EMPTY_BODY

    def test_no_keyword_match(self, config):
        transport = RecordingTransport()
        outcome = evaluate_and_forward(InboundMessage.from_text("hello there"), config, transport)
        assert outcome.reason is SkipReason.NO_KEYWORD_MATCH
        assert transport.calls == 0

    def test_short_message_forwarded_once(self, config):
        """'URGENT: call now' is forwarded as one prefixed segment."""
        transport = RecordingTransport()
        outcome = evaluate_and_forward(InboundMessage.from_text("URGENT: call now"), config, transport)

        assert outcome.status is OutcomeStatus.FORWARDED
        assert outcome.segment_count == 1
        assert outcome.sent_count == 1
        assert outcome.matched_keyword == "urgent"
        assert transport.sent == [("+100", FORWARD_MARKER + "URGENT: call now")]

    def test_long_message_two_segments(self, config):
        body = "urgent " + "x" * 193
        assert len(body) == 200
        transport = RecordingTransport()

        outcome = evaluate_and_forward(InboundMessage.from_text(body), config, transport)

        assert outcome == ForwardOutcome.forwarded(2, matched_keyword="urgent")
        assert [d for d, _ in transport.sent] == ["+100", "+100"]
        joined = "".join(transport.segments)
        assert joined.startswith(FORWARD_MARKER)
        assert joined[len(FORWARD_MARKER):] == body
        assert all(len(s) <= 160 for s in transport.segments)

    def test_multipart_message_matched_after_join(self, config):
        transport = RecordingTransport()
        outcome = evaluate_and_forward(InboundMessage(parts=("UR", "GENT now")), config, transport)
        assert outcome.is_forwarded
        assert transport.segments == [FORWARD_MARKER + "URGENT now"]

    def test_case_insensitive_keyword(self):
        snapshot = ForwardingConfiguration("+100", ("Urgent",))
        transport = RecordingTransport()
        outcome = evaluate_and_forward(InboundMessage.from_text("this is urgent"), snapshot, transport)
        assert outcome.is_forwarded
        assert outcome.matched_keyword == "Urgent"

    def test_custom_marker(self, config):
        transport = RecordingTransport()
        evaluate_and_forward(InboundMessage.from_text("urgent"), config, transport, marker="[FWD] ")
        assert transport.segments == ["[FWD] urgent"]

    def test_custom_segment_length(self, config):
        transport = RecordingTransport()
        outcome = evaluate_and_forward(
            InboundMessage.from_text("urgent" + "y" * 94), config, transport, max_length=70
        )
        assert outcome.segment_count == 2
        assert [len(s) for s in transport.segments] == [70, 31]

    def test_failure_on_second_of_three_aborts(self, config):
        body = "urgent" + "y" * 400
        transport = RecordingTransport(fail_on=[1])

        outcome = evaluate_and_forward(InboundMessage.from_text(body), config, transport)

        assert outcome.status is OutcomeStatus.PARTIALLY_FORWARDED
        assert outcome.segment_count == 3
        assert outcome.sent_count == 1
        assert outcome.failed_count == 1
        assert isinstance(outcome.error, SendError)
        assert transport.calls == 2

    def test_failure_on_first_segment(self, config):
        transport = RecordingTransport(fail_on=[0])
        outcome = evaluate_and_forward(InboundMessage.from_text("urgent"), config, transport)
        assert outcome.is_partial
        assert outcome.sent_count == 0
        assert outcome.error is not None

    def test_continue_policy_attempts_remaining(self, config):
        body = "urgent" + "y" * 400
        transport = RecordingTransport(fail_on=[1])

        outcome = evaluate_and_forward(
            InboundMessage.from_text(body), config, transport, policy=FailurePolicy.CONTINUE
        )

        assert outcome.is_partial
        assert outcome.sent_count == 2
        assert outcome.failed_count == 1
        assert transport.calls == 3

    def test_fatal_error_stops_continue_policy(self, config):
        body = "urgent" + "y" * 400
        transport = RecordingTransport(fail_on=[0], fatal=True)

        outcome = evaluate_and_forward(
            InboundMessage.from_text(body), config, transport, policy=FailurePolicy.CONTINUE
        )

        assert isinstance(outcome.error, FatalSendError)
        assert outcome.sent_count == 0
        assert transport.calls == 1

    def test_unexpected_transport_error_propagates(self, config):
        transport = MagicMock()
        transport.send.side_effect = RuntimeError("bug")
        with pytest.raises(RuntimeError):
            evaluate_and_forward(InboundMessage.from_text("urgent"), config, transport)

    def test_outcome_to_dict(self, config):
        transport = RecordingTransport(fail_on=[0])
        outcome = evaluate_and_forward(InboundMessage.from_text("urgent"), config, transport)
        data = outcome.to_dict()
        assert data["status"] == "partially_forwarded"
        assert data["reason"] is None
        assert data["sent_count"] == 0
        assert "Simulated failure" in data["error"]

    def test_outcome_str(self):
        assert str(ForwardOutcome.skipped(SkipReason.NOT_CONFIGURED)) == "Skipped(not_configured)"
        assert str(ForwardOutcome.forwarded(2)) == "Forwarded(2)"


class TestForwardingEngine:
    """Tests for the ForwardingEngine service."""

    def test_reads_configuration_once_per_message(self, config):
        source = StaticSource(config)
        engine = ForwardingEngine(source, RecordingTransport())

        engine.handle(InboundMessage.from_text("urgent"))
        engine.handle(InboundMessage.from_text("hello"))

        assert source.reads == 2

    def test_picks_up_new_configuration(self, config):
        source = StaticSource(ForwardingConfiguration())
        transport = RecordingTransport()
        engine = ForwardingEngine(source, transport)

        assert engine.handle(InboundMessage.from_text("urgent")).reason is SkipReason.NOT_CONFIGURED

        source.snapshot = config
        assert engine.handle(InboundMessage.from_text("urgent")).is_forwarded
        assert transport.calls == 1

    def test_empty_body_does_not_read_configuration(self):
        source = BrokenSource(ConfigError("broken"))
        engine = ForwardingEngine(source, RecordingTransport())

        outcome = engine.handle(InboundMessage(parts=("",)))

        assert outcome.reason is SkipReason.EMPTY_BODY
        assert source.reads == 0

    def test_read_failure_raises_configuration_unavailable(self):
        transport = RecordingTransport()
        engine = ForwardingEngine(BrokenSource(OSError("disk gone")), transport)

        with pytest.raises(ConfigurationUnavailable) as exc_info:
            engine.handle(InboundMessage.from_text("urgent"))

        assert isinstance(exc_info.value.__cause__, OSError)
        assert transport.calls == 0

    def test_configuration_unavailable_passes_through(self):
        error = ConfigurationUnavailable("nope")
        engine = ForwardingEngine(BrokenSource(error), RecordingTransport())

        with pytest.raises(ConfigurationUnavailable) as exc_info:
            engine.handle(InboundMessage.from_text("urgent"))

        assert exc_info.value is error

    def test_from_config(self):
        app_config = Config()
        app_config.forward.marker = ">> "
        app_config.forward.failure_policy = "continue"
        app_config.sms.segment_length = 70

        engine = ForwardingEngine.from_config(app_config, StaticSource(ForwardingConfiguration()), RecordingTransport())

        assert engine.marker == ">> "
        assert engine.policy is FailurePolicy.CONTINUE
        assert engine.max_length == 70

    def test_empty_marker_from_file(self, config, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("forward:\n  marker:\n", encoding="utf-8")
        app_config = load_config(str(path), load_env=False)
        transport = RecordingTransport()

        engine = ForwardingEngine.from_config(app_config, StaticSource(config), transport)
        engine.handle(InboundMessage.from_text("urgent"))

        assert transport.segments == ["urgent"]

    def test_partial_outcome_returned(self, config):
        engine = ForwardingEngine(StaticSource(config), RecordingTransport(fail_on=[0]))
        outcome = engine.handle(InboundMessage.from_text("urgent", sender="+1234567890"))
        assert outcome.is_partial

    def test_concurrent_messages_keep_segments_together(self, config):
        thread_count = 8
        transport = ThreadRecordingTransport()
        engine = ForwardingEngine(StaticSource(config), transport)
        barrier = threading.Barrier(thread_count)
        messages = {}
        outcomes = {}

        def worker(index):
            message = InboundMessage.from_text(f"urgent {index} " + chr(ord("a") + index) * 400)
            barrier.wait()
            outcome = engine.handle(message)
            messages[threading.get_ident()] = message
            outcomes[threading.get_ident()] = outcome

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(thread_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert len(outcomes) == thread_count
        for ident, message in messages.items():
            expected = RecordingTransport()
            evaluate_and_forward(message, config, expected)

            assert outcomes[ident] == ForwardOutcome.forwarded(3, matched_keyword="urgent")
            assert transport.by_thread[ident] == expected.segments
            assert "".join(transport.by_thread[ident]) == FORWARD_MARKER + message.body


class TestMessageCallback:
    """Tests for the SMS listener callback."""

    def test_forwards_sms(self, config):
        transport = RecordingTransport()
        webhook = MagicMock()
        callback = build_message_callback(ForwardingEngine(StaticSource(config), transport), webhook)

        outcome = callback(SMSMessage(phone_number="+1234567890", message="urgent: call"))

        assert outcome.is_forwarded
        assert transport.segments == [FORWARD_MARKER + "urgent: call"]
        webhook.notify.assert_called_once()
        message, reported = webhook.notify.call_args[0]
        assert message.metadata["sender"] == "+1234567890"
        assert reported is outcome

    def test_settings_unavailable_drops_message(self):
        webhook = MagicMock()
        engine = ForwardingEngine(BrokenSource(ConfigError("broken")), RecordingTransport())
        callback = build_message_callback(engine, webhook)

        assert callback(SMSMessage(phone_number="+1", message="urgent")) is None
        webhook.notify.assert_not_called()

    def test_without_webhook(self, config):
        callback = build_message_callback(ForwardingEngine(StaticSource(config), RecordingTransport()))
        outcome = callback(SMSMessage(phone_number="+1", message="nothing here"))
        assert outcome.reason is SkipReason.NO_KEYWORD_MATCH


class TestRecordingTransport:
    """Tests for the dry-run transport."""

    def test_records_sends(self):
        transport = RecordingTransport()
        transport.send("+1", "a")
        transport.send("+1", "b")
        assert transport.sent == [("+1", "a"), ("+1", "b")]
        assert transport.segments == ["a", "b"]

    def test_fail_on(self):
        transport = RecordingTransport(fail_on=[1])
        transport.send("+1", "a")
        with pytest.raises(SendError):
            transport.send("+1", "b")
        assert transport.calls == 2
        assert transport.sent == [("+1", "a")]

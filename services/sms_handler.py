"""
SMS Handler - Termux API integration for SMS operations
======================================================

This module provides SMS functionality using Termux API,
including:
- Sending message segments (the forwarding transport)
- Listing received messages
- Polling listener for new inbound messages
- Diagnostics for Termux API availability
"""

import subprocess
import json
import re
import hashlib
import shutil
from datetime import datetime
from typing import Optional, List, Dict, Any, Callable
from dataclasses import dataclass, field
import threading

from core.exceptions import SMSError, SendError, FatalSendError
from core.logging import get_logger, mask_phone
from core.models import InboundMessage

logger = get_logger("services.sms")


@dataclass
class SMSMessage:
    """
    Represents an SMS message as reported by Termux.

    Attributes:
        phone_number (str): Sender/recipient phone number
        message (str): Message content
        timestamp (datetime): Message timestamp
        direction (str): 'incoming' or 'outgoing'
        thread_id (int): Conversation thread ID
        read (bool): Whether message has been read
        message_id (int): Row id in the Android SMS store, if reported
        metadata (dict): Additional metadata
    """
    phone_number: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    direction: str = "incoming"
    thread_id: Optional[int] = None
    read: bool = False
    message_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.direction}] {self.phone_number}: {self.message[:50]}"

    def to_inbound(self) -> InboundMessage:
        """
        Convert to a pipeline message.

        Termux already reassembles multipart SMS, so the result has a
        single part. Sender and timestamp travel as metadata.
        """
        metadata = dict(self.metadata)
        metadata.update({
            "sender": self.phone_number,
            "timestamp": self.timestamp.isoformat(),
            "thread_id": self.thread_id,
        })
        return InboundMessage(parts=(self.message,), metadata=metadata)


class SMSHandler:
    """
    Handles SMS operations using Termux API.

    Sends through ``termux-sms-send`` and polls ``termux-sms-list`` for
    new messages. ``send`` is the transport used by the forwarding
    engine; it sends exactly one segment per call.

    Requirements:
    - Termux app installed
    - Termux:API app installed
    - termux-api package: pkg install termux-api
    - SMS permissions granted

    Example:
        handler = SMSHandler()

        handler.send("+1234567890", "Hello")

        for msg in handler.list_messages(limit=10):
            print(msg)
    """

    # Android SMS type values
    SMS_TYPE_MAP = {
        1: "incoming",    # MESSAGE_TYPE_INBOX
        2: "outgoing",    # MESSAGE_TYPE_SENT
        3: "draft",       # MESSAGE_TYPE_DRAFT
        4: "outgoing",    # MESSAGE_TYPE_OUTBOX
        5: "failed",      # MESSAGE_TYPE_FAILED
        6: "outgoing",    # MESSAGE_TYPE_QUEUED
    }

    # Newest messages fetched per listener poll
    POLL_WINDOW = 20

    def __init__(
        self,
        termux_send_path: str = "termux-sms-send",
        termux_list_path: str = "termux-sms-list",
        timeout: int = 10,
        sim_slot: Optional[int] = None,
        check_availability: bool = True
    ):
        """
        Initialize SMS handler.

        Args:
            termux_send_path: Path to termux-sms-send command
            termux_list_path: Path to termux-sms-list command
            timeout: Command timeout in seconds
            sim_slot: SIM slot to send from (0 or 1, optional)
            check_availability: Check the Termux API on startup
        """
        self.termux_send_path = termux_send_path
        self.termux_list_path = termux_list_path
        self.timeout = timeout
        self.sim_slot = sim_slot

        # Messages older than this are never dispatched. Termux reports
        # whole seconds, so the cutoff is truncated to match.
        self.start_time = datetime.now().replace(microsecond=0)

        self._callbacks: List[Callable[[SMSMessage], None]] = []
        self._listener_thread: Optional[threading.Thread] = None
        self._running = False
        self._stop_event = threading.Event()

        self._available = self._check_availability() if check_availability else True

        logger.info(
            "SMS Handler initialized",
            extra={"available": self._available}
        )

    @classmethod
    def from_config(cls, sms_config, **kwargs) -> "SMSHandler":
        """Build a handler from the ``sms`` config section."""
        return cls(
            termux_send_path=sms_config.termux_send_path,
            termux_list_path=sms_config.termux_list_path,
            timeout=sms_config.sms_timeout,
            sim_slot=sms_config.sim_slot,
            **kwargs
        )

    def _check_availability(self) -> bool:
        """
        Check if Termux API is available AND SMS permissions are granted.

        Returns:
            True if Termux API commands are available and SMS permissions granted
        """
        if not shutil.which(self.termux_list_path):
            logger.error(f"{self.termux_list_path} command not found")
            return False

        try:
            # Listing one message exercises the SMS permission
            result = subprocess.run(
                [self.termux_list_path, "-l", "1"],
                capture_output=True,
                text=True,
                timeout=10
            )
        except subprocess.TimeoutExpired:
            logger.error("Availability check timed out")
            return False
        except OSError as e:
            logger.error(f"Availability check failed: {e}")
            return False

        if result.returncode != 0:
            error = result.stderr.strip() if result.stderr else "Unknown error"
            logger.error(f"SMS list failed: {error}")

            if "permission" in error.lower() or "denied" in error.lower():
                logger.error("SMS permission not granted!")
                logger.error("Grant permission: Settings → Apps → Termux:API → Permissions → SMS")
            return False

        if not shutil.which(self.termux_send_path):
            logger.warning(f"{self.termux_send_path} not found, forwarding will fail")

        logger.info("SMS permissions verified successfully")
        return True

    @property
    def is_available(self) -> bool:
        """Check if SMS handler is available."""
        return self._available

    def send(self, destination: str, segment: str) -> None:
        """
        Send one segment to one destination.

        Args:
            destination: Recipient phone number
            segment: Text to send, already within the segment limit

        Raises:
            SendError: If this send failed
            FatalSendError: If the Termux API is unavailable
        """
        if not self._available:
            raise FatalSendError(
                "Termux API not available",
                destination=destination,
                details={"hint": "Install Termux:API app and run 'pkg install termux-api'"}
            )

        phone_number = self._normalize_phone_number(destination)
        if not phone_number:
            raise SendError(f"Invalid destination number: {destination!r}", destination=destination)

        cmd = [self.termux_send_path]

        if self.sim_slot is not None:
            cmd.extend(["-s", str(self.sim_slot)])

        cmd.extend(["-n", phone_number])

        logger.debug(
            "Sending SMS segment",
            extra={"phone": mask_phone(phone_number), "length": len(segment)}
        )

        try:
            result = subprocess.run(
                cmd,
                input=segment,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            raise SendError(
                "SMS send command timed out",
                destination=phone_number,
                details={"timeout": self.timeout}
            )
        except FileNotFoundError:
            raise FatalSendError(
                f"Termux API command not found: {self.termux_send_path}",
                destination=phone_number,
                details={"hint": "Install termux-api package: pkg install termux-api"}
            )
        except OSError as e:
            raise FatalSendError(
                f"Cannot run {self.termux_send_path}: {e}",
                destination=phone_number,
                details={"error": type(e).__name__}
            ) from e

        if result.returncode != 0:
            error_msg = result.stderr.strip() if result.stderr else ""
            raise SendError(
                f"Failed to send SMS: {error_msg or 'Unknown error'}",
                destination=phone_number,
                details={"returncode": result.returncode}
            )

        logger.debug(f"SMS segment sent to {mask_phone(phone_number)}")

    def list_messages(
        self,
        limit: int = 10,
        offset: int = 0,
        phone_number: Optional[str] = None
    ) -> List[SMSMessage]:
        """
        List SMS messages from device.

        Args:
            limit: Maximum number of messages
            offset: Number of messages to skip
            phone_number: Filter by phone number (optional)

        Returns:
            List of SMSMessage objects

        Raises:
            SMSError: If listing fails
        """
        if not self._available:
            raise SMSError("Termux API not available")

        cmd = [self.termux_list_path]

        if limit:
            cmd.extend(["-l", str(limit)])

        if offset:
            cmd.extend(["-o", str(offset)])

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            raise SMSError("SMS list command timed out")
        except OSError as e:
            raise SMSError(f"Cannot run {self.termux_list_path}: {e}") from e

        if result.returncode != 0:
            error_msg = result.stderr.strip() or "Unknown error"
            raise SMSError(f"Failed to list SMS: {error_msg}")

        try:
            messages_data = json.loads(result.stdout)
        except json.JSONDecodeError:
            raise SMSError("Failed to parse SMS list response")

        wanted = self._normalize_phone_number(phone_number) if phone_number else None

        messages = []
        for msg_data in messages_data:
            msg_type = msg_data.get("type", 1)
            direction = self.SMS_TYPE_MAP.get(msg_type, "incoming")

            msg = SMSMessage(
                phone_number=msg_data.get("number", msg_data.get("address", "")),
                message=msg_data.get("body", msg_data.get("text", "")) or "",
                timestamp=self._parse_timestamp(msg_data.get("received", msg_data.get("date"))),
                direction=direction,
                thread_id=msg_data.get("thread_id"),
                read=msg_data.get("read", 1) == 1,
                message_id=msg_data.get("_id"),
            )

            if wanted and self._normalize_phone_number(msg.phone_number) != wanted:
                continue

            messages.append(msg)

        return messages

    def on_message_received(self, callback: Callable[[SMSMessage], None]) -> None:
        """
        Register a callback for incoming messages.

        Args:
            callback: Function to call when message is received
        """
        self._callbacks.append(callback)

    def start_listener(self, poll_interval: int = 3) -> None:
        """
        Start listening for new messages.

        Uses polling to check for new messages periodically.

        Args:
            poll_interval: Seconds between checks
        """
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._listener_thread = threading.Thread(
            target=self._listener_loop,
            args=(poll_interval,),
            daemon=True
        )
        self._listener_thread.start()
        logger.info(f"Started SMS listener (poll interval: {poll_interval}s)")

    def stop_listener(self) -> None:
        """Stop the message listener."""
        self._running = False
        self._stop_event.set()
        if self._listener_thread:
            self._listener_thread.join(timeout=5)
        logger.info("Stopped SMS listener")

    def poll_once(self, seen_ids: set, dispatch: bool = True) -> List[SMSMessage]:
        """
        Run one polling pass.

        Messages received before the handler started, outgoing messages and
        messages already in ``seen_ids`` are ignored. New ones are added to
        ``seen_ids`` and, when ``dispatch`` is set, passed to every callback.

        Only the newest ``POLL_WINDOW`` messages are listed, so identifiers
        that dropped out of the listing are removed from ``seen_ids``.

        Args:
            seen_ids: Identifiers of messages already handled (updated in place)
            dispatch: Invoke callbacks for the new messages

        Returns:
            The new incoming messages
        """
        new_incoming = []
        listed_ids = set()

        for msg in self.list_messages(limit=self.POLL_WINDOW):
            msg_id = self._message_id(msg)
            listed_ids.add(msg_id)

            if msg.direction != "incoming":
                continue

            if msg.timestamp < self.start_time:
                continue

            if msg_id in seen_ids:
                continue

            seen_ids.add(msg_id)
            new_incoming.append(msg)

        seen_ids.intersection_update(listed_ids)

        if dispatch:
            # Oldest first, the list comes back newest first
            for msg in reversed(new_incoming):
                logger.info(
                    f"New SMS from {mask_phone(msg.phone_number)} "
                    f"({len(msg.message)} chars)"
                )
                for callback in self._callbacks:
                    try:
                        callback(msg)
                    except Exception as e:
                        logger.error(f"Callback error: {e}", exc_info=True)

        return new_incoming

    def _listener_loop(self, poll_interval: int) -> None:
        """
        Listener loop for polling messages.

        Uses polling since Termux API doesn't support real-time SMS broadcast.
        The first pass only records what is already in the inbox.

        Args:
            poll_interval: Seconds between polls
        """
        seen_ids: set = set()
        first_run = True

        while self._running:
            try:
                self.poll_once(seen_ids, dispatch=not first_run)
                if first_run:
                    logger.info(f"Initial scan complete. Tracking {len(seen_ids)} existing messages")
                    first_run = False
            except SMSError as e:
                logger.error(f"Listener poll failed: {e}")

            self._stop_event.wait(poll_interval)

    @staticmethod
    def _message_id(msg: SMSMessage) -> str:
        if msg.message_id is not None:
            return f"id:{msg.message_id}"

        content_preview = msg.message[:50] if msg.message else ""
        unique_string = f"{msg.phone_number}|{msg.timestamp.isoformat()}|{content_preview}"
        return hashlib.sha256(unique_string.encode()).hexdigest()[:16]

    def diagnose(self) -> Dict[str, Any]:
        """
        Run diagnostic checks for SMS functionality.

        Returns:
            Dictionary with diagnostic results
        """
        results = {
            "termux_api_installed": bool(shutil.which(self.termux_list_path)),
            "sms_list_works": False,
            "sms_send_available": bool(shutil.which(self.termux_send_path)),
            "device_info": None,
            "sample_messages": [],
            "errors": []
        }

        try:
            result = subprocess.run(
                [self.termux_list_path, "-l", "5"],
                capture_output=True,
                text=True,
                timeout=15
            )
            if result.returncode == 0:
                results["sms_list_works"] = True
                try:
                    messages = json.loads(result.stdout)
                    results["sample_messages"] = [
                        {
                            "number": mask_phone(m.get("number", m.get("address", ""))),
                            "preview": (m.get("body", m.get("text", "")) or "")[:30],
                            "type": m.get("type", "unknown")
                        }
                        for m in messages[:3]
                    ]
                except json.JSONDecodeError:
                    results["errors"].append("Invalid JSON from termux-sms-list")
            else:
                results["errors"].append(f"SMS list failed: {result.stderr}")
        except (OSError, subprocess.TimeoutExpired) as e:
            results["errors"].append(f"SMS list test failed: {e}")

        results["device_info"] = self._read_device_info(results["errors"])

        return results

    def _read_device_info(self, errors: List[str]) -> Optional[Dict[str, Any]]:
        try:
            result = subprocess.run(
                ["termux-telephony-deviceinfo"],
                capture_output=True,
                text=True,
                timeout=10
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            errors.append(f"Device info failed: {e}")
            return None

        if result.returncode != 0:
            errors.append(f"Device info failed: {result.stderr.strip() or 'Unknown error'}")
            return None

        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError:
            errors.append("Invalid JSON from termux-telephony-deviceinfo")
            return None

    def _normalize_phone_number(self, phone: str) -> str:
        """
        Normalize phone number format.

        Removes non-numeric characters except +.

        Args:
            phone: Phone number string

        Returns:
            Normalized phone number
        """
        return re.sub(r'[^\d+]', '', phone or "")

    def _parse_timestamp(self, timestamp_str: Optional[str]) -> datetime:
        """
        Parse timestamp from various formats.

        Args:
            timestamp_str: Timestamp string

        Returns:
            datetime object
        """
        if not timestamp_str:
            return datetime.now()

        # Termux reports local time as "YYYY-MM-DD HH:MM:SS"
        try:
            parsed = datetime.fromisoformat(str(timestamp_str).replace("Z", "+00:00"))
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone().replace(tzinfo=None)
            return parsed
        except ValueError:
            pass

        # Unix timestamp in milliseconds
        try:
            return datetime.fromtimestamp(int(timestamp_str) / 1000)
        except (ValueError, TypeError, OverflowError, OSError):
            pass

        return datetime.now()

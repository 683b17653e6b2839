#!/usr/bin/env python3
"""
SMS Forwarder - Main Entry Point
================================

Command-line interface for running the forwarder and editing its
settings.

Usage:
    python main.py --daemon                 # Forward matching SMS (listener only)
    python main.py --web                    # Settings editor + listener
    python main.py --status                 # Show settings and transport status
    python main.py --test "URGENT: call"    # Dry-run a message
    python main.py --add-keyword urgent     # Edit settings
    python main.py --help                   # Show help
"""

import sys
import argparse
import signal
from pathlib import Path
from typing import List

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from core.config import load_config, create_default_config, get_default_config_dir, Config
from core.exceptions import ForwarderError
from core.logging import setup_logging, get_logger, mask_phone
from core.settings import SettingsStore, ENV_OVERRIDES

logger = get_logger("main")


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="SMS Forwarder - relay SMS containing keywords to another number",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --setup                       Create a default config file
  python main.py --set-destination +123456789  Set the number to forward to
  python main.py --add-keyword urgent          Add a keyword
  python main.py --test "URGENT: call now"     Dry-run a message
  python main.py --daemon                      Forward matching SMS
  python main.py --web --port 9000             Settings editor on port 9000
        """
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--daemon",
        action="store_true",
        help="Run as background daemon (SMS listener only)"
    )
    mode_group.add_argument(
        "--web",
        action="store_true",
        help="Start the web settings editor (also runs the listener)"
    )
    mode_group.add_argument(
        "--status",
        action="store_true",
        help="Show forwarding settings and transport status"
    )
    mode_group.add_argument(
        "--test",
        nargs="+",
        metavar="PART",
        help="Dry-run a message; several PARTs are joined without separator"
    )
    mode_group.add_argument(
        "--diagnose",
        action="store_true",
        help="Run diagnostic checks for SMS functionality"
    )
    mode_group.add_argument(
        "--setup",
        action="store_true",
        help="Create a default configuration file"
    )
    mode_group.add_argument(
        "--set-destination",
        metavar="NUMBER",
        help="Set the destination number (empty string disables forwarding)"
    )
    mode_group.add_argument(
        "--add-keyword",
        metavar="KEYWORD",
        help="Add a keyword"
    )
    mode_group.add_argument(
        "--remove-keyword",
        metavar="KEYWORD",
        help="Remove a keyword"
    )

    parser.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        help="Path to configuration file"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for web UI (default: from config, 8080)"
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host for web UI (default: from config, 127.0.0.1)"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="With --setup, replace an existing configuration file"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )

    return parser.parse_args(argv)


def run_setup(config_path: str = None, force: bool = False) -> int:
    """Create a default configuration file."""
    config_dir = str(Path(config_path).expanduser().parent) if config_path else str(get_default_config_dir())
    existing = Path(config_dir) / "config.yaml"
    if existing.exists() and not force:
        print(f"Configuration already exists: {existing}")
        print("Use --force to replace it (saved destination and keywords are lost)")
        return 1

    config = create_default_config(config_dir, overwrite=force)
    print(f"✓ Created default configuration: {config.config_path}")
    print("\nNext steps:")
    print("  python main.py --set-destination +1234567890")
    print("  python main.py --add-keyword urgent")
    print("  python main.py --daemon")
    return 0


def run_status_check(config: Config) -> None:
    """Check and display forwarding settings and transport status."""
    from services.sms_handler import SMSHandler

    store = SettingsStore(config.config_path)
    snapshot = store.read()

    print("\n" + "=" * 50)
    print("SMS Forwarder - Status")
    print("=" * 50 + "\n")

    print("Forwarding")
    print("-" * 30)
    print(f"  Status: {'✓ Active' if snapshot.is_active else '✗ Inactive'}")
    print(f"  Destination: {snapshot.destination_address or '(not set)'}")
    print(f"  Keywords ({len(snapshot.keywords)}): {', '.join(snapshot.keywords) or '(none)'}")
    for name in store.overridden_fields():
        print(f"  ⚠ {name} comes from {ENV_OVERRIDES[name]}, saved edits are ignored")
    print(f"  Failure policy: {config.forward.failure_policy}")
    print(f"  Segment length: {config.sms.segment_length}")

    print("\nSMS Transport")
    print("-" * 30)
    sms_handler = SMSHandler.from_config(config.sms)
    if sms_handler.is_available:
        print("  Status: ✓ Available")
    else:
        print("  Status: ✗ Unavailable")
        print("  Note: Install Termux:API and grant SMS permission")

    print(f"\nConfig file: {config.config_path}")
    print("\n" + "=" * 50 + "\n")


def run_test_message(config: Config, parts: List[str]) -> None:
    """Dry-run a message against the current settings."""
    from core.models import InboundMessage
    from services.forwarder import ForwardingEngine, RecordingTransport

    transport = RecordingTransport()
    engine = ForwardingEngine.from_config(config, SettingsStore(config.config_path), transport)
    message = InboundMessage(parts=tuple(parts), metadata={"sender": "cli"})

    outcome = engine.handle(message)

    print(f"\nMessage: {message.body}")
    print("-" * 50)
    print(f"Outcome: {outcome}")
    if outcome.matched_keyword:
        print(f"Keyword: {outcome.matched_keyword}")
    for index, (destination, chunk) in enumerate(transport.sent, 1):
        print(f"  [{index}] -> {destination} ({len(chunk)} chars): {chunk}")


def run_diagnosis(config: Config) -> None:
    """Run diagnostic checks for SMS functionality."""
    from services.sms_handler import SMSHandler

    print("\n" + "=" * 50)
    print("SMS Forwarder - Diagnostic Mode")
    print("=" * 50 + "\n")

    handler = SMSHandler.from_config(config.sms, check_availability=False)
    results = handler.diagnose()

    print("1. Termux API Installation")
    print("-" * 30)
    if results["termux_api_installed"]:
        print(f"   ✓ {config.sms.termux_list_path} is installed")
    else:
        print(f"   ✗ {config.sms.termux_list_path} NOT found")
        print("   → Run: pkg install termux-api")

    print("\n2. SMS List Capability")
    print("-" * 30)
    if results["sms_list_works"]:
        print("   ✓ Can read SMS messages")
        for m in results["sample_messages"]:
            print(f"     - {m['number']}: '{m['preview']}...' (type={m['type']})")
    else:
        print("   ✗ Cannot read SMS - permission issue likely")
        print("   → Settings → Apps → Termux:API → Permissions → SMS")

    print("\n3. SMS Send Capability")
    print("-" * 30)
    if results["sms_send_available"]:
        print(f"   ✓ {config.sms.termux_send_path} is available")
    else:
        print(f"   ✗ {config.sms.termux_send_path} NOT found")

    print("\n4. Device Info")
    print("-" * 30)
    if results["device_info"]:
        print(f"   Network: {results['device_info'].get('network_operator_name', 'Unknown')}")
    else:
        print("   ⚠ Could not get device info")

    if results["errors"]:
        print("\n5. Errors Found")
        print("-" * 30)
        for err in results["errors"]:
            print(f"   • {err}")

    print()


def run_edit(config: Config, args: argparse.Namespace) -> int:
    """Apply a settings edit from the command line."""
    store = SettingsStore(config.config_path)
    field = "destination_address" if args.set_destination is not None else "keywords"

    if args.set_destination is not None:
        stored = store.set_destination(args.set_destination)
        if stored:
            print(f"✓ Destination set to {stored}")
        else:
            print("✓ Destination cleared (forwarding disabled)")
        code = 0
    elif args.add_keyword is not None:
        if store.add_keyword(args.add_keyword):
            print(f"✓ Keyword added: {args.add_keyword.strip()}")
            code = 0
        else:
            print(f"Keyword already exists: {args.add_keyword.strip()}")
            code = 1
    elif store.remove_keyword(args.remove_keyword):
        print(f"✓ Keyword removed: {args.remove_keyword.strip()}")
        code = 0
    else:
        print(f"Keyword not found: {args.remove_keyword}")
        code = 1

    if field in store.overridden_fields():
        print(f"⚠ {ENV_OVERRIDES[field]} is set; the saved {field} is ignored until it is unset")
    return code


def run_web_ui(config: Config, host: str, port: int, debug: bool) -> None:
    """Run the web UI server."""
    from ui.web.app import run_app

    print(f"\nStarting Web UI on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")

    run_app(host=host, port=port, debug=debug, config=config)


def run_daemon(config: Config) -> None:
    """Run as background daemon."""
    from services.forwarder import ForwardingEngine, build_message_callback
    from services.sms_handler import SMSHandler
    from services.webhook import OutcomeWebhook

    print("\nStarting SMS Forwarder daemon...")
    print("Press Ctrl+C to stop\n")

    store = SettingsStore(config.config_path)
    sms_handler = SMSHandler.from_config(config.sms)

    if not sms_handler.is_available:
        print("✗ SMS handler not available!")
        print("\nPossible causes:")
        print("1. Termux:API app not installed")
        print("2. termux-api package not installed (run: pkg install termux-api)")
        print("3. SMS permission not granted")
        print("\nRun: python main.py --diagnose")
        return

    snapshot = store.read()
    if not snapshot.is_active:
        logger.warning("Forwarding is inactive until a destination and keywords are set")
    else:
        logger.info(
            f"Forwarding to {mask_phone(snapshot.destination_address)} "
            f"on {len(snapshot.keywords)} keyword(s)"
        )

    engine = ForwardingEngine.from_config(config, store, sms_handler)
    webhook = OutcomeWebhook.from_config(config.sms)
    sms_handler.on_message_received(build_message_callback(engine, webhook))

    def shutdown(signum, frame):
        logger.info("Shutting down...")
        sms_handler.stop_listener()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    sms_handler.start_listener(poll_interval=config.sms.poll_interval)

    try:
        import time
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        shutdown(None, None)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        if args.setup:
            return run_setup(args.config, args.force)

        config = load_config(args.config)

        if args.debug:
            config.debug = True

        setup_logging(
            log_dir=config.log_dir,
            log_level="DEBUG" if args.debug else config.logging.level,
            json_format=config.logging.json_format,
            max_bytes=config.logging.max_bytes,
            backup_count=config.logging.backup_count,
            console_output=True
        )

        if args.daemon:
            run_daemon(config)
        elif args.web:
            run_web_ui(
                config,
                args.host or config.ui.web_host,
                args.port or config.ui.web_port,
                args.debug or config.ui.web_debug
            )
        elif args.diagnose:
            run_diagnosis(config)
        elif args.test:
            run_test_message(config, args.test)
        elif (args.set_destination is not None or args.add_keyword is not None
              or args.remove_keyword is not None):
            return run_edit(config, args)
        else:
            run_status_check(config)
            print("No mode specified. Use --daemon, --web, --test or --help")

        return 0

    except ForwarderError as e:
        print(f"\nError: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())

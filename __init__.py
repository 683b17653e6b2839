"""
SMS Forwarder - Keyword-based SMS forwarding for Termux
=======================================================

Watches incoming SMS on an Android device (via Termux) and relays every
message containing one of the configured keywords to another number.
Settings are edited from the command line or a small web UI.

License: MIT
Version: 1.0.0
"""

__version__ = "1.0.0"
__license__ = "MIT"

"""
Web UI Module - FastAPI-based settings editor
=============================================

This module provides a web interface for:
- Setting the destination number
- Adding and removing keywords
- Dry-running a message against the current rules
- Checking transport status
"""

from .app import create_app, run_app
from .routes import router

__all__ = [
    "create_app",
    "run_app",
    "router",
]

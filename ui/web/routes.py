"""
Web Routes - API endpoints and page routes
=========================================

This module defines the settings editor page and its JSON API.
"""

from datetime import datetime, timezone
from typing import Optional, List

from fastapi import APIRouter, Request, HTTPException
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from core.exceptions import ConfigError, ConfigurationUnavailable, SettingsError
from core.logging import get_logger
from core.models import InboundMessage
from services.forwarder import RecordingTransport, evaluate_and_forward

logger = get_logger("web.routes")

router = APIRouter()


def _settings_payload(request: Request) -> dict:
    store = request.app.state.store
    try:
        snapshot = store.read()
    except ConfigurationUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "destination_address": snapshot.destination_address,
        "keywords": list(snapshot.keywords),
        "active": snapshot.is_active,
        # Saved edits to these fields have no effect while the env var is set
        "overridden": store.overridden_fields(),
    }


# === Page Routes ===

@router.get("/", response_class=HTMLResponse)
async def settings_page(request: Request):
    """Render the settings editor."""
    templates = request.app.state.templates
    config = request.app.state.config

    return templates.TemplateResponse(
        request,
        "settings.html",
        {
            "settings": _settings_payload(request),
            "sms_available": request.app.state.sms_handler.is_available,
            "app_name": config.app_name,
        }
    )


# === API Routes ===

class DestinationUpdate(BaseModel):
    """Destination update model."""
    destination_address: str


class KeywordCreate(BaseModel):
    """Keyword creation model."""
    keyword: str


class TestMessage(BaseModel):
    """Dry-run message model; ``parts`` takes precedence over ``message``."""
    message: Optional[str] = None
    parts: Optional[List[str]] = None
    sender: Optional[str] = None


@router.get("/api/settings")
async def get_settings(request: Request):
    """Get the current forwarding settings."""
    return _settings_payload(request)


@router.put("/api/settings/destination")
async def update_destination(request: Request, update: DestinationUpdate):
    """Set or clear the destination number."""
    store = request.app.state.store

    try:
        store.set_destination(update.destination_address)
    except ConfigError as e:
        logger.error(f"Failed to update destination: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"success": True, **_settings_payload(request)}


@router.post("/api/keywords", status_code=201)
async def add_keyword(request: Request, data: KeywordCreate):
    """Add a keyword to the rule set."""
    store = request.app.state.store

    try:
        added = store.add_keyword(data.keyword)
    except SettingsError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ConfigError as e:
        logger.error(f"Failed to add keyword: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if not added:
        raise HTTPException(status_code=409, detail=f"Keyword '{data.keyword.strip()}' already exists")

    return {"success": True, **_settings_payload(request)}


@router.delete("/api/keywords/{keyword}")
async def delete_keyword(request: Request, keyword: str):
    """Remove a keyword from the rule set."""
    store = request.app.state.store

    try:
        removed = store.remove_keyword(keyword)
    except ConfigError as e:
        logger.error(f"Failed to remove keyword: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if not removed:
        raise HTTPException(status_code=404, detail="Keyword not found")

    return {"success": True, **_settings_payload(request)}


@router.post("/api/test-message")
async def test_message(request: Request, data: TestMessage):
    """
    Evaluate a message against the current settings without sending it.

    Returns the outcome and the segments that would have been sent.
    """
    store = request.app.state.store
    engine = request.app.state.engine

    parts = data.parts if data.parts is not None else [data.message or ""]
    metadata = {"sender": data.sender} if data.sender else {}
    message = InboundMessage(parts=tuple(parts), metadata=metadata)

    try:
        snapshot = store.read()
    except ConfigurationUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    transport = RecordingTransport()
    outcome = evaluate_and_forward(
        message,
        snapshot,
        transport,
        marker=engine.marker,
        policy=engine.policy,
        max_length=engine.max_length,
    )

    return {
        "success": True,
        "outcome": outcome.to_dict(),
        "destination_address": snapshot.destination_address,
        "segments": transport.segments,
    }


@router.get("/api/status")
async def get_status(request: Request):
    """Get system status."""
    sms_handler = request.app.state.sms_handler
    engine = request.app.state.engine

    return {
        "sms": {"available": sms_handler.is_available},
        "forwarding": _settings_payload(request),
        "failure_policy": engine.policy.value,
        "segment_length": engine.max_length,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

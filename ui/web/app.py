"""
FastAPI Application - Main web application setup
===============================================

This module creates and configures the FastAPI application serving the
forwarding settings editor, and optionally runs the SMS listener in the
same process.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.templating import Jinja2Templates
from fastapi.responses import JSONResponse

from core.config import Config, load_config
from core.exceptions import ForwarderError
from core.logging import setup_logging, get_logger
from core.settings import SettingsStore
from services.forwarder import ForwardingEngine, build_message_callback
from services.sms_handler import SMSHandler
from services.webhook import OutcomeWebhook

logger = get_logger("web.app")


def create_app(
    config: Optional[Config] = None,
    store: Optional[SettingsStore] = None,
    sms_handler: Optional[SMSHandler] = None,
    start_listener: bool = True,
    debug: bool = False
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Application configuration
        store: Settings store (defaults to the config file)
        sms_handler: SMS transport (defaults to a Termux handler)
        start_listener: Forward incoming SMS while the server runs
        debug: Enable debug mode

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = load_config()

    setup_logging(
        log_dir=config.log_dir,
        log_level="DEBUG" if debug else config.logging.level,
        json_format=config.logging.json_format,
        max_bytes=config.logging.max_bytes,
        backup_count=config.logging.backup_count,
        console_output=True
    )

    if store is None:
        store = SettingsStore(config.config_path)

    if sms_handler is None:
        sms_handler = SMSHandler.from_config(config.sms)

    engine = ForwardingEngine.from_config(config, store, sms_handler)
    listen = start_listener and sms_handler.is_available

    if start_listener and not listen:
        logger.warning("SMS handler unavailable, web UI runs without the listener")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if listen:
            webhook = OutcomeWebhook.from_config(config.sms)
            sms_handler.on_message_received(build_message_callback(engine, webhook))
            sms_handler.start_listener(poll_interval=config.sms.poll_interval)
        yield
        if listen:
            sms_handler.stop_listener()

    app = FastAPI(
        title=config.app_name,
        description="Settings editor for keyword-based SMS forwarding",
        version=config.version,
        debug=debug or config.debug,
        lifespan=lifespan,
    )

    templates_dir = Path(__file__).parent / "templates"
    templates = Jinja2Templates(directory=str(templates_dir))

    app.state.config = config
    app.state.store = store
    app.state.sms_handler = sms_handler
    app.state.engine = engine
    app.state.templates = templates

    from .routes import router as main_router
    app.include_router(main_router, prefix="")

    @app.exception_handler(ForwarderError)
    async def forwarder_exception_handler(request: Request, exc: ForwarderError):
        logger.error(f"Request failed: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": exc.message, "detail": exc.details if debug else None}
        )

    logger.info("Web application created")

    return app


def run_app(
    host: str = "127.0.0.1",
    port: int = 8080,
    debug: bool = False,
    config: Optional[Config] = None
) -> None:
    """
    Run the web application server.

    Args:
        host: Host address to bind
        port: Port to listen on
        debug: Enable debug mode
        config: Application configuration
    """
    if config is None:
        config = load_config()

    app = create_app(config=config, debug=debug)

    logger.info(f"Starting web server on {host}:{port}")

    import uvicorn
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="debug" if debug else "info"
    )

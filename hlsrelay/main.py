"""
HLSRelay Main Application

FastAPI application entry point: serves the HLS output directory, streams
channel lifecycle events and runs one supervisor per channel.
"""

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from hlsrelay import __version__
from hlsrelay.bootstrap import bootstrap_directories
from hlsrelay.config import (
    HLSRelayConfig,
    apply_overrides,
    get_config,
    load_config,
    parse_size,
    set_config,
)
from hlsrelay.events.bus import EventBus
from hlsrelay.exceptions import FatalBootstrapError
from hlsrelay.ffmpeg.engine import TranscodeEngine
from hlsrelay.streaming.supervisor import SupervisorGroup

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Startup creates the output/log directories and starts every channel
    supervisor. Shutdown stops the supervisors (terminating FFmpeg) and
    closes all observer subscriptions so open event streams end.
    """
    config: HLSRelayConfig = app.state.config
    logger.info(f"Starting HLSRelay v{__version__}")

    bootstrap_directories(config)

    supervisors: SupervisorGroup = app.state.supervisors
    await supervisors.start()
    logger.info(
        f"Serving {config.channels.count} channels from "
        f"{config.channels.source_host}:{config.channels.udp_base_port}+"
    )

    try:
        yield
    finally:
        logger.info("Shutting down HLSRelay")
        await supervisors.stop()
        app.state.bus.close_all()


def create_app(
    config: Optional[HLSRelayConfig] = None,
    engine: Optional[TranscodeEngine] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Resolved configuration (defaults to the loaded global config).
        engine: Engine used by every supervisor (defaults to FFmpeg).

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = get_config()

    app = FastAPI(
        title="HLSRelay",
        description="Live UDP to HLS channel supervisor",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    bus = EventBus(
        inbox_size=config.events.inbox_size,
        log_drops=config.events.log_drops,
    )
    app.state.config = config
    app.state.bus = bus
    app.state.supervisors = SupervisorGroup.from_config(config, bus, engine=engine)

    from hlsrelay.api import api_router, events_router
    app.include_router(api_router)
    app.include_router(events_router)

    # The directory is created during startup, before the first request
    app.mount(
        "/streams",
        StaticFiles(directory=Path(config.paths.output_dir), check_dir=False),
        name="streams",
    )

    return app


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line flags."""
    parser = argparse.ArgumentParser(
        prog="hlsrelay",
        description="Convert live UDP channels to HLS and supervise them.",
    )
    parser.add_argument("-p", "--port", type=int, help="Port to serve HLS streams (default 3002)")
    parser.add_argument("-s", "--start-port", type=int, help="Starting port for UDP streams (default 2220)")
    parser.add_argument("-n", "--count", type=int, help="Number of streams to handle (default 1)")
    parser.add_argument("-i", "--ip", help="UDP source host (default localhost)")
    parser.add_argument("-c", "--config", help="Path to config.yaml")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> HLSRelayConfig:
    """Load configuration and apply command line overrides."""
    config = load_config(args.config)
    config = apply_overrides(config, {
        "server.port": args.port,
        "channels.udp_base_port": args.start_port,
        "channels.count": args.count,
        "channels.source_host": args.ip,
        "logging.level": args.log_level,
    })
    return set_config(config)


def main(argv: Optional[list[str]] = None) -> None:
    """
    Main entry point for running the server.

    Called when running `python -m hlsrelay` or the `hlsrelay` script.
    """
    import uvicorn
    from hlsrelay.utils.logging_setup import setup_logging

    config = resolve_config(parse_args(argv))

    setup_logging(
        log_level=config.logging.level,
        log_file_name=config.logging.file,
        log_to_console=True,
        log_to_file=True,
        max_bytes=parse_size(config.logging.max_size),
        backup_count=config.logging.backup_count,
        log_format=config.logging.format,
    )

    try:
        bootstrap_directories(config)
    except FatalBootstrapError as e:
        logger.critical(str(e))
        sys.exit(1)

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncGenerator
from pathlib import Path

import uvicorn
import yaml
from fastapi import FastAPI, Request
from fastapi.concurrency import asynccontextmanager
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError

from . import api, collector_api, config
from .poller import Poller
from .registry import NodeRegistry

# Configure basic logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

templates_dir = Path(__file__).parent / "templates"
templates = Jinja2Templates(directory=templates_dir)


# --- Lifespan Event Handler ---
@asynccontextmanager
async def aggregator_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Aggregator startup: starting poller...")
    poller: Poller = app.state.poller
    poll_task = asyncio.create_task(poller.run(), name="poller")

    try:
        yield
    finally:
        logger.info("Aggregator shutdown: cleaning up...")
        if not poll_task.done():
            poll_task.cancel()
            try:
                await poll_task
            except asyncio.CancelledError:
                logger.info("Poller task cancelled successfully.")
            except Exception:
                logger.exception("Error occurred during poller task cancellation.")
        else:
            logger.info("Poller task was already done.")


def create_aggregator_app(settings: config.AppConfig) -> FastAPI:
    """Build the aggregator: registry, poller, facade endpoints and the HTML page.

    The poller only runs while the app's lifespan is active.
    """
    app = FastAPI(
        title=settings.page_title,
        description="Aggregates GPU telemetry from the collectors on every configured node.",
        version="0.1.0",
        lifespan=aggregator_lifespan,
    )
    app.state.settings = settings
    app.state.registry = NodeRegistry(settings.nodes)
    app.state.status_stream = api.StatusStream(app.state.registry)
    app.state.poller = Poller(
        app.state.registry,
        settings.nodes,
        interval_sec=settings.aggregator.poll_interval_sec,
        fetch_timeout_sec=settings.aggregator.fetch_timeout_sec,
        on_tick=app.state.status_stream.publish,
    )
    app.include_router(api.router)

    @app.get("/", response_class=HTMLResponse)
    async def read_root(request: Request) -> HTMLResponse:
        """Serve the main HTML frontend page."""
        return templates.TemplateResponse(request, "index.html", {"page_title": settings.page_title})

    return app


def create_collector_app(settings: config.CollectorSettings) -> FastAPI:
    """Build the per-node collector exposing /gpu-info and /health."""
    app = FastAPI(
        title="GPU Collector",
        description="Serves this node's GPU telemetry from nvidia-smi.",
        version="0.1.0",
    )
    app.state.collector_settings = settings
    app.include_router(collector_api.router)
    return app


def parse_port(value: str) -> int:
    """argparse type for a TCP port."""
    try:
        port = int(value)
    except ValueError:
        msg = f"invalid port format: {value!r}"
        raise argparse.ArgumentTypeError(msg) from None
    if not 0 < port <= 65535:
        msg = f"port out of range: {port}"
        raise argparse.ArgumentTypeError(msg)
    return port


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Multi-node GPU monitor.")
    parser.add_argument("--mode", choices=["server", "aggregator"], default="aggregator",
                        help="'server' runs the per-node collector, 'aggregator' the central dashboard")
    parser.add_argument("--port", type=parse_port, default=None, help="Port to listen on (overrides config)")
    parser.add_argument("--config", type=Path, default=config.CONFIG_FILE_PATH, help="Path to config file")
    return parser


def load_settings(path: Path, required: bool) -> config.AppConfig:
    """Load the config file, exiting the process if it is unusable."""
    if not required and not path.exists():
        logger.info("No configuration file at %s, using defaults.", path)
        return config.AppConfig()
    try:
        return config.load_config(path)
    except (OSError, yaml.YAMLError, ValidationError, ValueError):
        logger.exception("FATAL ERROR loading configuration from %s", path)
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    args = build_arg_parser().parse_args(argv)

    if args.mode == "server":
        settings = load_settings(args.config, required=False)
        port = args.port or settings.collector.port
        app = create_collector_app(settings.collector)
        logger.info("GPU collector starting on port %d", port)
    else:
        settings = load_settings(args.config, required=True)
        port = args.port or settings.aggregator.port
        app = create_aggregator_app(settings)
        logger.info("Aggregator starting on port %d with %d node(s)", port, len(settings.nodes))

    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()

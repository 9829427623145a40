"""
Signaling service entrypoint.

Resolves the configuration profile, initialises logging and serves the
negotiation store API so two peers can exchange offers, answers and
candidates through one shared process.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from . import PeerConfig
from .api.server import create_app
from .config import load_config
from .store.memory import InMemoryNegotiationStore
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


async def serve(config: PeerConfig, host: str = "127.0.0.1", port: int = 8080) -> None:
    """
    Run the signaling API inside an asyncio loop.

    Parameters
    ----------
    config:
        Resolved peer configuration.
    host, port:
        Bind address for the FastAPI/uvicorn server.
    """

    import uvicorn

    store = InMemoryNegotiationStore()
    configure_logging()

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        LOG.info("Signaling service starting (profile %s)", config.profile)
        try:
            yield
        finally:
            await store.close()
            LOG.info("Signaling service shutting down")

    app = create_app(store=store, config=config, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level="info",
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="peerlink signaling server")
    parser.add_argument("--profile", default=None, help="configuration profile to load")
    parser.add_argument("--host", default="127.0.0.1", help="bind host for the API server")
    parser.add_argument("--port", type=int, default=8080, help="bind port for the API server")
    parser.add_argument("--log-level", default=None, help="root log level (default: PEERLINK_LOG_LEVEL or INFO)")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(level=args.log_level)
    config = load_config(args.profile)

    try:
        asyncio.run(serve(config=config, host=args.host, port=args.port))
    except KeyboardInterrupt:
        LOG.info("Signaling service interrupted by user.")


if __name__ == "__main__":
    run()

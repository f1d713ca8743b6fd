"""Entry point of the ``strength-workers`` process.

Startup order: config, logging, engine settings, health server, worker.
The health server outlives the worker loop so a lost database stays visible.
"""

import asyncio
import logging

from .config import Config
from .health import start_health_server
from .logging import setup_logging
from .registry import registered_types
from .runtime import configure_engine
from .worker import Worker

# Import handlers to register them
from . import handlers  # noqa: F401

logger = logging.getLogger(__name__)


def main() -> None:
    config = Config.from_env()
    setup_logging(config.log_format)
    settings = configure_engine(config)

    logger.info(
        "Ranking worker starting (job_types=%s, overall_scope=%s, log_capacity=%d, health_port=%d)",
        registered_types(),
        settings.overall_scope,
        settings.log_capacity,
        config.health_port,
    )
    asyncio.run(serve(config))


async def serve(config: Config) -> None:
    health_server = await start_health_server(config.health_port, config.database_url)
    try:
        await Worker(config).run()
    finally:
        health_server.close()
        await health_server.wait_closed()


if __name__ == "__main__":
    main()

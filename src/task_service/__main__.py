"""Entry point for the task service."""

import asyncio
import sys
from typing import NoReturn

import uvicorn

from task_service import __version__
from task_service.config import Settings, load_settings_with_toml
from task_service.utils.logging import get_logger, setup_logging


async def run_service(settings: Settings) -> None:
    """Serve the REST API until a shutdown signal arrives.

    uvicorn owns SIGINT/SIGTERM handling; the application lifespan starts and
    drains the webhook workers.
    """
    from task_service.api.http_server import create_app

    logger = get_logger(__name__)
    logger.info(
        "starting_task_service",
        version=__version__,
        host=settings.http_host,
        port=settings.http_port,
        auth_mode=settings.auth_mode,
    )

    http_config = uvicorn.Config(
        create_app(settings),
        host=settings.http_host,
        port=settings.http_port,
        log_config=None,
        log_level=settings.log_level.lower(),
    )
    http_server = uvicorn.Server(http_config)

    try:
        await http_server.serve()
    finally:
        logger.info("task_service_stopped")


def main() -> NoReturn:
    """Main entry point."""
    settings = load_settings_with_toml()
    setup_logging(settings)
    try:
        asyncio.run(run_service(settings))
    except KeyboardInterrupt:
        pass
    sys.exit(0)


if __name__ == "__main__":
    main()

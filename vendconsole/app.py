#!/usr/bin/env python3
import asyncio

import uvicorn

from .api import create_app
from .config import ConsoleConfig
from .utils import app_logger, configure_logging


async def main():
    config = ConsoleConfig()
    configure_logging(config.get("log_level"), config.get("log_file"))

    app = create_app(config)
    # uvicorn handles SIGINT/SIGTERM and runs the app shutdown, which closes
    # the dispense session
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.get("api_host"),
            port=config.get("api_port"),
            log_level=str(config.get("log_level")).lower(),
        )
    )

    try:
        app_logger.info(
            f"Starting console API on {config.get('api_host')}:{config.get('api_port')}"
        )
        app_logger.info(f"Relay transport: {config.get('relay_transport')}")
        await server.serve()
    except asyncio.CancelledError:
        app_logger.info("Shutdown completed")
    except Exception as e:
        app_logger.error(f"Error: {e}")
    finally:
        app_logger.info("Cleaning up...")
        await app.state.console.session.close()
        app.state.console.database.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        app_logger.info("Shutdown by user")


if __name__ == "__main__":
    run()

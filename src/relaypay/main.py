"""Main entry point - runs the API server."""

import asyncio
import logging
import signal

import uvicorn

from relaypay.api.app import create_app
from relaypay.config import get_settings
from relaypay.gasless.factory import close_orchestrator
from relaypay.ledger.database import close_db, init_db

logger = logging.getLogger(__name__)


class Application:
    """Main application running the HTTP API."""

    def __init__(self):
        self.settings = get_settings()
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        # Configure logging
        log_level = logging.DEBUG if self.settings.debug else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info("Starting RelayPay...")
        logger.info(f"Environment: {self.settings.environment}")

        if not self.settings.encryption_key:
            logger.critical("ENCRYPTION_KEY not set - wallets cannot be provisioned or used")
        if not self.settings.has_evm_relayer:
            logger.warning("RELAYER_PRIVATE_KEY not set - EVM gasless transfers disabled")
        if not self.settings.has_solana_relayer:
            logger.warning("SOLANA_RELAYER_PRIVATE_KEY not set - Solana gasless transfers disabled")

        # Initialize database
        await init_db()
        logger.info("Database initialized")

        api_task = asyncio.create_task(self._run_api())
        logger.info("API task created")

        # Wait for shutdown signal or the server exiting on its own
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())
        await asyncio.wait({api_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

        for task in (api_task, shutdown_task):
            task.cancel()
        await asyncio.gather(api_task, shutdown_task, return_exceptions=True)

        await self._cleanup()

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            app = create_app()
            config = uvicorn.Config(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    async def _cleanup(self):
        """Cleanup resources."""
        logger.info("Cleaning up...")

        await close_orchestrator()

        await close_db()
        logger.info("Cleanup complete")

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


def main():
    """Main entry point."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    app = Application()

    # Setup signal handlers
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()

"""Main entry point - runs the API server and the chain sync scheduler."""

import asyncio
import logging
import signal
from typing import Optional

import uvicorn

from ckbvault.api.app import create_app
from ckbvault.api.deps import get_sync_monitor
from ckbvault.config import get_settings
from ckbvault.services.sync_monitor import SyncScheduler
from ckbvault.store.database import close_db, init_db

logger = logging.getLogger(__name__)


class Application:
    """Main application that runs both the API and the sync scheduler."""

    def __init__(self):
        self.settings = get_settings()
        self.scheduler: Optional[SyncScheduler] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        # Configure logging
        log_level = logging.DEBUG if self.settings.debug else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info("Starting CKB Vault...")
        logger.info(f"Environment: {self.settings.environment}, network: {self.settings.ckb_network}")

        await init_db()
        logger.info("Counter store initialized")

        tasks = []

        if self.settings.sync_enabled and self.settings.has_wallet:
            self.scheduler = SyncScheduler(
                get_sync_monitor(), interval_seconds=self.settings.sync_interval_seconds
            )
            tasks.append(asyncio.create_task(self.scheduler.run()))
            logger.info("Sync task created")
        else:
            logger.warning("Chain sync disabled (SYNC_ENABLED off or PRIVATE_KEY not set)")

        tasks.append(asyncio.create_task(self._run_api()))
        logger.info("API task created")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

        if self.scheduler:
            self.scheduler.stop()

        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)

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

        if self.scheduler:
            await self.scheduler.wait_idle()

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

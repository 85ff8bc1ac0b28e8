"""Live relay node runner.

Starts the relay service for every configured chain and keeps the
reconciliation loops running until SIGINT/SIGTERM.

Processing flow:
1. Load settings from the environment (.env supported)
2. Restore the cache snapshot, if a snapshot database is configured
3. Run fast and full reconciliation passes per chain on their timers
4. On shutdown, stop scheduling and give in-flight passes
   SHUTDOWN_TIMEOUT_SECONDS before cancelling them

Usage:
    python src/live.py
"""

import signal
import sys

import asyncio

from src.helpers.config import RelaySettings, load_settings
from src.helpers.logging import configure_logging, get_logger
from src.relay.service import RelayService


logger = get_logger(__name__)


class LiveRelay:
    """Process wrapper around ``RelayService`` with signal handling."""

    def __init__(self, settings: RelaySettings, service: RelayService | None = None) -> None:
        """Initialize the runner.

        Args:
            settings: Process configuration
            service: Prebuilt service, built from ``settings`` when omitted
        """
        self.settings = settings
        self.service = service or RelayService(settings)
        self.should_shutdown = False
        self._shutdown_event = asyncio.Event()

    def shutdown(self) -> None:
        """Handle shutdown signal."""
        logger.info("Shutdown signal received, stopping...")
        self.should_shutdown = True
        self._shutdown_event.set()

    async def cleanup(self) -> None:
        """Stop loops and release connections."""
        await self.service.stop()

    async def run(self) -> None:
        """Run until a shutdown signal arrives."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.shutdown)

        if not self.settings.chains:
            logger.warning("No registry networks configured, nothing to do")
            return

        try:
            await self.service.start()
            for chain_id in self.service.chains:
                registration = self.service.get_registration(chain_id)
                logger.info(
                    "Chain %s ready (%s)",
                    chain_id,
                    registration.status if registration else "no snapshot",
                )
            await self._shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
            self.should_shutdown = True
        finally:
            await self.cleanup()

        logger.info("Live relay stopped")


async def main() -> None:
    """Main entry point."""
    try:
        settings = load_settings()
        configure_logging(settings.log_level, log_color=settings.log_color)
        relay = LiveRelay(settings)
        await relay.run()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, exiting...")
    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())

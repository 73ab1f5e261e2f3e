"""CLI entry point for the indexer daemon.

Allows running the indexer as a module:
    python -m prompt_patterns.indexer
"""

import signal
import sys
from types import FrameType

from prompt_patterns.config import load_config
from prompt_patterns.indexer.daemon import create_services, run_indexer
from prompt_patterns.logging import get_logger, setup_logging
from prompt_patterns.store import StoreError

logger = get_logger("indexer")


def main() -> None:
    """Main entry point for the indexer daemon."""
    setup_logging("indexer")
    config = load_config()

    try:
        services = create_services(config)
    except StoreError:
        logger.exception("Cannot open message store: path=%s", config.store.db_path)
        sys.exit(1)

    def signal_handler(signum: int, frame: FrameType | None) -> None:
        """Handle shutdown signals gracefully."""
        sig_name = signal.Signals(signum).name
        logger.info("Received signal %s, shutting down", sig_name)
        services.indexer.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        run_indexer(config, services)
    except KeyboardInterrupt:
        # Handle case where signal handler didn't catch it
        logger.info("Interrupted, shutting down")
        services.indexer.request_shutdown()
    finally:
        services.close()

    sys.exit(0)


if __name__ == "__main__":
    main()

"""
Entry point for running a pipeline worker as a module.

Usage: python -m app.workers signer|thumbnails
"""
import argparse
import logging
import signal
import sys

from app.logging import configure_logging
from app.workers.supervisor import WORKER_FACTORIES

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run a file pipeline worker.")
    parser.add_argument("role", choices=sorted(WORKER_FACTORIES))
    args = parser.parse_args(argv)

    configure_logging()
    worker = WORKER_FACTORIES[args.role]()

    def handle_signal(signum, _frame):
        logger.info("Received shutdown signal %s", signum)
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, handle_signal)

    try:
        worker.run()
    except Exception:
        # Lost database connection: exit so the process manager restarts us
        logger.exception("%s crashed", worker.name)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Entrypoint for the Legion maintenance worker.

Runs the ARQ worker that drains the like queue every minute and sweeps
generation jobs stuck in processing.
"""

import logging
import sys

from arq import run_worker

from app.workers.arq_tasks import WorkerSettings


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point for worker service."""
    logger.info("Starting Legion maintenance worker...")
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()

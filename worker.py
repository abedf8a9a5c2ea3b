#!/usr/bin/env python
"""
Sweep Worker

Standalone process for deployments that run the API with
SCHEDULER_ENABLED=false. Each cycle runs:
1. hold_expiry - release holds whose TTL has passed
2. reconciliation - finish pending_local_sync orders
3. hold_purge - every PURGE_EVERY cycles, delete old terminal holds and counters

Run with:
    python worker.py

Or with environment:
    WORKER_INTERVAL=60 python worker.py
"""

import os
import time
import logging
import signal

from marina_api.config import settings
from marina_api.services.scheduler import run_sweep
from marina_api.utils.logging_config import setup_logging

logger = logging.getLogger("marina_api.worker")

# Worker configuration
POLL_INTERVAL = int(os.getenv("WORKER_INTERVAL", "60"))  # seconds
PURGE_EVERY = int(os.getenv("WORKER_PURGE_EVERY", "60"))  # cycles
RUNNING = True


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    global RUNNING
    logger.info("Received shutdown signal, finishing current cycle...")
    RUNNING = False


def run_cycle(cycle: int) -> dict:
    names = ["hold_expiry", "reconciliation"]
    if cycle % PURGE_EVERY == 0:
        names.append("hold_purge")
    return {name: run_sweep(name) for name in names}


def run_worker():
    """Main worker loop"""
    logger.info("Starting sweep worker")
    logger.info(f"Poll interval: {POLL_INTERVAL}s, purge every {PURGE_EVERY} cycles")

    cycle = 0

    while RUNNING:
        cycle += 1
        start_time = time.time()

        results = run_cycle(cycle)

        failed = [name for name, result in results.items() if not result.get("ok")]
        if failed:
            logger.error(f"Cycle {cycle}: sweeps failed: {failed}")
        else:
            logger.debug(f"Cycle {cycle} done in {time.time() - start_time:.2f}s")

        # Sleep until next poll
        if RUNNING:
            time.sleep(POLL_INTERVAL)

    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    setup_logging(settings.log_level, settings.log_json)

    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        run_worker()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.critical(f"Worker crashed: {e}", exc_info=True)

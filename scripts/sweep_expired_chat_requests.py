#!/usr/bin/env python3
"""
Expire Chat Requests Script

Moves every pending chat request whose expires_at has passed to `expired`.
Meant for cron when the in-process sweeper is disabled (EXPIRY_SWEEP_ENABLED=false).

Usage:
    python scripts/sweep_expired_chat_requests.py            # sweep once
    python scripts/sweep_expired_chat_requests.py --loop     # sweep every interval
"""

import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import settings
from app.db.session import close_engines, get_write_session_factory
from app.observability.logging import get_logger, setup_logging
from app.services.expiry_sweeper import sweep_once
from app.services.notifications import build_notification_sender

logger = get_logger("scripts.sweep_expired_chat_requests")


async def sweep() -> int:
    """Run a single sweep and release the connection pool."""
    try:
        expired = await sweep_once(get_write_session_factory(), build_notification_sender(settings))
    finally:
        await close_engines()
    logger.info("chat_request_sweep_completed", expired=expired)
    return expired


async def run_loop() -> None:
    """Sweep every EXPIRY_SWEEP_INTERVAL_SECONDS."""
    interval = settings.expiry_sweep_interval_seconds
    logger.info("chat_request_sweep_loop_started", interval_seconds=interval)

    while True:
        try:
            await sweep()
        except Exception as e:
            logger.error("chat_request_sweep_error", error=str(e), exc_info=True)

        await asyncio.sleep(interval)


def main() -> None:
    """Main entry point."""
    setup_logging()
    try:
        if "--loop" in sys.argv[1:]:
            asyncio.run(run_loop())
        else:
            asyncio.run(sweep())
    except KeyboardInterrupt:
        logger.info("chat_request_sweep_stopped")
        sys.exit(0)


if __name__ == "__main__":
    main()

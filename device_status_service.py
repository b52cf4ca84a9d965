#!/usr/bin/env python3
"""
Device status service that probes devices and streams their state.
This service will:
1. Create the device tables if needed
2. Ping every registered device on a fixed interval and record transitions
3. Serve the REST API and push snapshots to WebSocket subscribers
"""

import logging

import uvicorn

from netwatch.core.config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("device_status_service")


def run_service():
    """Run the API server; the monitor loop starts with the application."""
    logger.info(
        f"Starting device status service on {settings.API_HOST}:{settings.API_PORT} "
        f"(ping interval {settings.PING_INTERVAL}s)"
    )
    uvicorn.run(
        "netwatch.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_config=None,
        reload=False,
    )


if __name__ == "__main__":
    try:
        run_service()
    except KeyboardInterrupt:
        logger.info("Service shutdown requested")
    logger.info("Service stopped")

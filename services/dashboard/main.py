"""
Dashboard service entry point.

This module runs the FastAPI monitoring dashboard using Uvicorn.

The dashboard:
- Runs on 0.0.0.0:8050 by default
- Provides REST API for events, health, metrics, dashboard and scheduler status
- Optionally runs the background scheduler in-process (api.run_scheduler)

Usage:
    python -m services.dashboard.main

    Or with uvicorn directly:
    uvicorn services.dashboard.main:app --host 0.0.0.0 --port 8050

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379)
    DATABASE_URL: PostgreSQL connection URL
    LOG_LEVEL: Logging level (default: INFO)
    CONFIG_PATH: Path to config directory (default: config)
    DASHBOARD_PORT: Port to run the dashboard on (default: 8050)
    DASHBOARD_HOST: Host to bind to (default: 0.0.0.0)
"""

import os
import sys
from pathlib import Path

import structlog
import uvicorn

# Add project root to path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from services.dashboard.app import create_app
from src.services.logging import setup_logging


def main() -> None:
    """
    Main entry point for the dashboard service.

    Configures logging and starts the Uvicorn server with the FastAPI application.
    """
    setup_logging()

    logger = structlog.get_logger(__name__)
    logger.info(
        "dashboard_service_starting",
        version="1.0.0",
        python_version=sys.version,
    )

    # Get configuration from environment
    host = os.getenv("DASHBOARD_HOST", "0.0.0.0")
    port = int(os.getenv("DASHBOARD_PORT", "8050"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    # Run uvicorn
    uvicorn.run(
        "services.dashboard.main:app",
        host=host,
        port=port,
        log_level=log_level,
        reload=False,
        workers=1,
        access_log=False,
    )


# Export the app for uvicorn direct usage
app = create_app()

if __name__ == "__main__":
    main()

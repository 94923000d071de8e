"""
Port Watch — Entry point.

Starts the FastAPI server with configuration from config.yaml / env vars.
"""

import logging
import sys

import structlog
import uvicorn

from .config import load_config
from .api import create_app


# Per-request chatter from the HTTP client stack
_NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str, fmt: str):
    """Route structlog through stdlib logging, rendered for a console or as JSON lines."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def main():
    config = load_config()

    setup_logging(config.logging.level, config.logging.format)

    log = structlog.get_logger()
    log.info("config_loaded",
             api_port=config.api.port,
             probe_timeout_ms=config.probe.timeout_ms,
             refresh_enabled=config.refresh.enabled,
             refresh_interval=config.refresh.interval_seconds,
             db_path=config.storage.db_path)

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
    )


if __name__ == "__main__":
    main()

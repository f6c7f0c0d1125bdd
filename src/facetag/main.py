from __future__ import annotations

import sys

import uvicorn
from loguru import logger

from .service.config import ServiceConfig


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def main() -> int:
    config = ServiceConfig.get_config()
    configure_logging(config.log_level)

    # Start server (blocks)
    try:
        # Pass app as import string for reload to work
        uvicorn.run(
            "facetag.service:app",
            host=config.host,
            port=config.port,
            reload=config.reload,
            log_level=config.log_level,
        )
    except Exception as exc:
        logger.error(f"Error starting service: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

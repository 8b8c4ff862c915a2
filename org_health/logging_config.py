"""
Organization Health - Logging Setup.

============================================================
LOG OUTPUT
============================================================
- json : one JSON object per line, for log shippers
- text : pipe separated, for local runs

Level and format default to ORG_HEALTH_LOG_LEVEL and
ORG_HEALTH_LOG_FORMAT. A run id can be stamped on every line
so that one recalculation run can be followed end to end.

============================================================
"""

import json
import logging
import os
import sys
from typing import Optional


SERVICE_NAME = "org_health"

# Chatty third-party loggers kept at WARNING unless DEBUG is requested
NOISY_LOGGERS = ("aiohttp.access", "sqlalchemy.engine", "uvicorn.access")


def setup_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Configure root logging for the scoring service.

    Args:
        level: Log level name (default ORG_HEALTH_LOG_LEVEL or INFO)
        log_format: "json" or "text" (default ORG_HEALTH_LOG_FORMAT or json)
        correlation_id: Run id stamped on every record

    Returns:
        The org_health package logger
    """
    level_name = (level or os.getenv("ORG_HEALTH_LOG_LEVEL") or "INFO").upper()
    log_level = getattr(logging, level_name, logging.INFO)
    fmt = (log_format or os.getenv("ORG_HEALTH_LOG_FORMAT") or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(fmt, correlation_id or ""))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    noisy_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    return logging.getLogger(SERVICE_NAME)


def _build_formatter(fmt: str, correlation_id: str) -> logging.Formatter:
    if fmt == "json":
        return logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "service": SERVICE_NAME,
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "correlation_id": correlation_id,
            })
        )
    return logging.Formatter(
        f"%(asctime)s | %(levelname)-8s | %(name)s | run={correlation_id or '-'} | %(message)s"
    )

"""
Simple structured logging setup for the extraction pipeline.
"""

import sys

from loguru import logger

from .config import ServiceSettings, get_settings


def setup_logging(service_name: str, settings: ServiceSettings | None = None) -> None:
    """Configure basic structured logging for a pipeline component."""
    settings = settings or get_settings()
    log_config = settings.get_log_config()

    # Remove default logger
    logger.remove()

    serialize = log_config.format.lower() == "json"
    if serialize:
        # loguru renders the full record (message, level, extra) as JSON
        format_string = "{message}"
    else:
        format_string = (
            "{time:HH:mm:ss} | {level: <8} | {extra[service]} | {message} | {extra}"
        )

    logger.configure(extra={"service": service_name})
    logger.add(
        sys.stdout,
        format=format_string,
        level=log_config.level,
        serialize=serialize,
    )


def get_logger(job_id: str | None = None):
    """Get a logger with optional extraction job ID."""
    if job_id:
        return logger.bind(job_id=str(job_id))
    return logger

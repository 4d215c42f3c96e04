"""
Logging configuration: uvicorn and application loggers share one level and format.
Payment incidents are additionally persisted as SecurityLog rows (app/services/audit.py).
"""
import logging
import sys


def setup_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
) -> None:
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stdout,
        force=True,
    )
    # Keep uvicorn access/error loggers aligned with the app
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        log = logging.getLogger(name)
        if level is not None:
            log.setLevel(level)
    logging.getLogger("dairypro").setLevel(level)
    logging.getLogger("app").setLevel(level)

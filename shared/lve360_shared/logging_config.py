import logging
import os
import sys
from logging import Logger
from logging.handlers import RotatingFileHandler

from .utils import PROJECT_ROOT


def setup_logging(level: str | None = None, component: str = "stack_generator") -> Logger:
    log_dir = PROJECT_ROOT / "logs" / component
    log_dir.mkdir(parents=True, exist_ok=True)
    logfile = log_dir / f"{component}.log"

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, (level or os.getenv("LOG_LEVEL") or "INFO").upper(), logging.INFO))
    logger.handlers.clear()

    fmt = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    fh = RotatingFileHandler(logfile, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger

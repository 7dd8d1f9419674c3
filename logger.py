import os
import sys
from datetime import datetime

from loguru import logger

from config import LOG_DIR

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# Clear default handlers
logger.remove()

logger.add(
    sys.stderr,
    colorize=True,
    format=_CONSOLE_FORMAT,
    level="DEBUG" if os.getenv("CAPTURE_DEBUG") == "1" else "INFO",
)


def setup_logging(debug=False, log_dir=LOG_DIR):
    """Reinstall the console sink at the requested level and add a daily file log."""
    logger.remove()
    logger.add(sys.stderr, colorize=True, format=_CONSOLE_FORMAT, level="DEBUG" if debug else "INFO")

    os.makedirs(log_dir, exist_ok=True)
    now = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    logger.add(
        os.path.join(log_dir, f"capture_{now}.log"),
        rotation="1 day",
        retention="7 days",
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
        encoding="utf8",
    )


# expose logger instance
log = logger

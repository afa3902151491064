"""
Logging configuration.

One `mdrunner` logger for the whole package, writing to the console and
to one file per calendar day. Sync passes run on the auto sync thread
and gateway calls on the gateway pool, so records carry the thread name.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "mdrunner"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"

# Fixed for the life of the process; shared by every handler instance
_STARTED_AT = datetime.now().strftime("%H%M%S")


class DailyRotatingFileHandler(logging.FileHandler):
    """
    File handler that switches to a new file at midnight.

    Files are named mdrunner_YYYYMMDD_<HHMMSS>.log where HHMMSS is the
    process start time, so restarts on the same day never share a file.
    """

    def __init__(self, log_dir: str = "logs", encoding: str = "utf-8"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._day = date.today()
        super().__init__(self.path_for(self._day), mode="a", encoding=encoding)

    def path_for(self, day: date) -> str:
        return str(self.log_dir / f"{LOGGER_NAME}_{day:%Y%m%d}_{_STARTED_AT}.log")

    def emit(self, record: logging.LogRecord) -> None:
        today = date.today()
        if today != self._day:
            self.close()
            self._day = today
            self.baseFilename = self.path_for(today)
            self.stream = self._open()
        super().emit(record)


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs") -> logging.Logger:
    """
    Configure the mdrunner logger and return it.

    Modules log through logging.getLogger(__name__), which makes them
    children of this logger. Calling this again replaces the handlers.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL (case-insensitive)
        log_dir: Directory for the daily files, None for console only
    """
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list = [logging.StreamHandler()]
    if log_dir is not None:
        handlers.append(DailyRotatingFileHandler(log_dir))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    target = handlers[-1].baseFilename if log_dir is not None else "console only"
    logger.info(f"Logging started - level: {logging.getLevelName(level)}, output: {target}")
    return logger

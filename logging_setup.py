from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os


class CustomFormatter(logging.Formatter):
    def __init__(self, tz_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record):
        line = super().format(record)
        if record.levelno >= logging.ERROR:
            return "✖ " + line
        if record.levelno == logging.WARNING:
            return "⚠ " + line
        return line


def setup_logging() -> logging.Logger:
    debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
    loglevel = logging.DEBUG if debug_mode else logging.INFO
    tz_name = os.getenv("TIMEZONE", "Europe/Paris")

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "()": CustomFormatter,
                "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "tz_name": tz_name,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": loglevel,
        },
    }

    logging.config.dictConfig(logging_config)

    # pymongo is chatty at debug level (heartbeats, pool events)
    logging.getLogger("pymongo").setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    return logging.getLogger("fpv")

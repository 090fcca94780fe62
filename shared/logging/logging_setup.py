from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os
from logging import Logger


debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.INFO if not debug_mode else logging.DEBUG

# Supported ANSI color names for the color= parameter
_ANSI_RESET = "\033[0m"
_COLOR_MAP: dict[str, str] = {
    "cyan":    "\033[36m",
    "green":   "\033[32m",
    "yellow":  "\033[33m",
    "red":     "\033[31m",
    "magenta": "\033[35m",
    "blue":    "\033[34m",
    "white":   "\033[37m",
}

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class CustomFormatter(logging.Formatter):
    """Formats timestamps in the configured timezone and marks warnings and errors."""

    def __init__(self, tz_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record):
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # Mismatched %-args, keep the raw template instead of dropping the line
            message = f"{record.msg} (args: {record.args!r})"

        if record.levelno >= logging.ERROR:
            message = "⛔ " + message
        elif record.levelno == logging.WARNING:
            message = "⚠️ " + message

        # Both handlers share the record, so format a copy
        record = logging.makeLogRecord(record.__dict__)
        record.msg = message
        record.args = ()
        return super().format(record)


class ColoredFormatter(CustomFormatter):
    """Console formatter with optional per-message ANSI color support.

    Colors are applied only when the log record carries a ``color`` attribute,
    which is set by passing ``color=<name>`` to :class:`ColorLogger` methods.
    """

    def format(self, record) -> str:
        line = super().format(record)
        color_name = getattr(record, "color", None)
        ansi = _COLOR_MAP.get(color_name, "") if color_name else ""
        return f"{ansi}{line}{_ANSI_RESET}" if ansi else line


class ColorLogger:
    """Wraps a :class:`logging.Logger` and accepts ``color=<name>`` on every log call.

    The color travels on the record as ``extra["color"]`` and is only rendered
    by the console handler::

        logger.info("Embedded %d messages", count, color="green")
    """

    def __init__(self, logger: Logger):
        self._logger = logger

    def _log(self, level: int, msg, args: tuple, color: str | None, kwargs: dict) -> None:
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        # stacklevel=3 so records point at the caller, not this wrapper
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.DEBUG, msg, args, color, kwargs)

    def info(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.INFO, msg, args, color, kwargs)

    def warning(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.WARNING, msg, args, color, kwargs)

    def error(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.ERROR, msg, args, color, kwargs)

    def critical(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.CRITICAL, msg, args, color, kwargs)

    def exception(self, msg, *args, color: str | None = None, **kwargs):
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, args, color, kwargs)

    def log(self, level: int, msg, *args, color: str | None = None, **kwargs):
        self._log(level, msg, args, color, kwargs)

    def __getattr__(self, name):
        # setLevel, handlers, isEnabledFor and friends
        return getattr(self._logger, name)


def _formatter(formatter_class: type, tz_name: str) -> dict:
    return {
        "()": formatter_class,
        "format": LOG_FORMAT,
        "datefmt": LOG_DATEFMT,
        "tz_name": tz_name,
    }


def setup_logging(name: str = "convo_index") -> ColorLogger:
    """Configure console and file logging and return the application logger.

    Log files go to ``$ROOT_DIR/logs/<name>.log`` (ROOT_DIR defaults to the
    working directory). Timestamps use the TIMEZONE setting.
    """
    log_dir = os.path.join(os.getenv("ROOT_DIR", os.getcwd()), "logs")
    tz_name = os.getenv("TIMEZONE", "Europe/Berlin")
    os.makedirs(log_dir, exist_ok=True)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": _formatter(CustomFormatter, tz_name),
            "colored": _formatter(ColoredFormatter, tz_name),
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "colored",
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.FileHandler",
                "formatter": "plain",
                "level": loglevel,
                "filename": os.path.join(log_dir, f"{name}.log"),
                "encoding": "utf-8",
            },
        },
        "root": {"handlers": ["console", "file"], "level": loglevel},
    })

    quiet_level = logging.DEBUG if debug_mode else logging.WARNING
    for quiet in _QUIET_LOGGERS:
        logging.getLogger(quiet).setLevel(quiet_level)

    return ColorLogger(logging.getLogger(name))

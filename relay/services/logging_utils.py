# services/logging_utils.py
import os
import logging
import logging.config
from pathlib import Path
import re

from constants import LOG_REDACT_ADDRESSES

#: Loggers whose warnings (rate-limit rejections, bans) also go to the admission log.
ADMISSION_LOGGERS = ("services.rate_limiter", "services.ban_registry", "services.admission")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"


class RedactingFilter(logging.Filter):
    """
    A logging.Filter that redacts chat content and, optionally, client addresses.
    """

    TEXT_PATTERN = re.compile(r'(text=).*')
    ADDRESS_PATTERN = re.compile(r'(ip=)\S+')

    def __init__(self, redact_addresses: bool = None):
        super().__init__()
        if redact_addresses is None:
            redact_addresses = LOG_REDACT_ADDRESSES
        self.patterns = [self.TEXT_PATTERN]
        if redact_addresses:
            self.patterns.append(self.ADDRESS_PATTERN)

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Rewrite record.msg so that chat text (everything after “text=”) and,
        when enabled, “ip=...” never reach a handler.
        """
        msg = record.getMessage()
        for pat in self.patterns:
            msg = pat.sub(r"\1***", msg)

        record.msg = msg
        record.args = ()
        return True


def _file_handler(path: Path, level: str, **rotation) -> dict:
    handler = {
        "formatter": "default",
        "filters": ["redact"],
        "filename": str(path),
        "encoding": "utf-8",
        "level": level,
    }
    if "maxBytes" in rotation:
        handler["class"] = "logging.handlers.RotatingFileHandler"
    else:
        handler["class"] = "logging.handlers.TimedRotatingFileHandler"
        rotation.setdefault("when", "midnight")
    handler.update(rotation)
    return handler


def build_logging_config(level: str, logs_dir: Path, console: bool = True) -> dict:
    """
    Build the dictConfig for the relay.

    Handlers:
        console   - stderr, at `level` (omitted when `console` is False)
        file      - relay.log, rotated at midnight, 14 days kept
        admission - admission.log, WARNING and up from the admission loggers only,
                    rotated at midnight, 30 days kept
        errors    - relay-error.log, ERROR and up, size-rotated

    Args:
        level (str): Root logging level name.
        logs_dir (Path): Directory holding the log files.
        console (bool): Whether to log to stderr as well.

    Returns:
        dict: Configuration accepted by logging.config.dictConfig.
    """
    handlers = {
        "file": _file_handler(logs_dir / "relay.log", level, backupCount=14),
        "admission": _file_handler(logs_dir / "admission.log", "WARNING", backupCount=30),
        "errors": _file_handler(logs_dir / "relay-error.log", "ERROR",
                                maxBytes=10 * 1024 * 1024, backupCount=5),    # 10 MiB
    }
    if console:
        handlers["console"] = {"class": "logging.StreamHandler",
                               "formatter": "default",
                               "filters": ["redact"],
                               "level": level}

    loggers = {name: {"handlers": ["admission"]} for name in ADMISSION_LOGGERS}
    # websockets logs every refused handshake at INFO
    loggers["websockets"] = {"level": "WARNING"}

    return {
        "version": 1,
        "disable_existing_loggers": False,          # keep 3rd-party logs
        "filters": {"redact": {"()": RedactingFilter}},
        "formatters": {"default": {"format": LOG_FORMAT, "datefmt": "%d-%m-%Y %H:%M:%S"}},
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": level,
                 "handlers": [name for name in ("console", "file", "errors") if name in handlers]},
    }


def setup_logging(level: str = None, logs_dir: str = None, console: bool = True) -> None:
    """
    Configure application-wide logging.

    Args:
        level (str, optional): Logging level (e.g., "INFO", "DEBUG").
            Defaults to the LOG_LEVEL environment variable or "INFO".
        logs_dir (str, optional): Directory for log files, created if missing.
            Defaults to the LOG_DIR environment variable or "logs".
        console (bool, optional): Also log to stderr. Defaults to True.

    Raises:
        OSError: If the logs directory cannot be created.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    path = Path(logs_dir or os.getenv("LOG_DIR", "logs"))
    path.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(build_logging_config(level, path, console))

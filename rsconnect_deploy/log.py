"""
Logging setup: the package logger, remote task output and stage progress lines
"""

from __future__ import annotations

import json
import logging
import sys
from functools import wraps
from typing import Callable, TypeVar

if sys.version_info >= (3, 10):
    from typing import ParamSpec
else:
    from typing_extensions import ParamSpec

import click

T = TypeVar("T")
P = ParamSpec("P")

VERBOSE = (logging.INFO + logging.DEBUG) // 2
logging.addLevelName(VERBOSE, "VERBOSE")

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
_TEXT_FORMAT = "[%(levelname)s] %(asctime)s %(message)s"


class LogOutputFormat(object):
    TEXT = "text"
    JSON = "json"
    DEFAULT = TEXT
    _all = [TEXT, JSON]


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record, with timestamp, level and message keys."""

    def __init__(self):
        super(JsonLogFormatter, self).__init__(datefmt=_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Bare messages, coloured by level."""

    colours = {
        logging.DEBUG: "green",
        logging.WARNING: "yellow",
        logging.ERROR: "red",
        logging.CRITICAL: "red",
    }

    def format(self, record: logging.LogRecord) -> str:
        message = super(ConsoleFormatter, self).format(record)
        colour = self.colours.get(record.levelno)
        return click.style(message, fg=colour) if colour else message


class StderrHandler(logging.StreamHandler):
    """Writes to whatever sys.stderr is when a record is emitted, not when the handler was made."""

    def __init__(self, terminator: str = "\n"):
        logging.Handler.__init__(self)
        self.terminator = terminator

    @property
    def stream(self):  # pyright: ignore[reportIncompatibleVariableOverride]
        return sys.stderr


class RSLogger(logging.LoggerAdapter):
    def __init__(self):
        super(RSLogger, self).__init__(logging.getLogger("rsconnect_deploy"), {})
        self._handler = StderrHandler()
        self.logger.addHandler(self._handler)
        self.set_log_output_format(LogOutputFormat.DEFAULT)

    def set_log_output_format(self, value: str):
        if value == LogOutputFormat.JSON:
            self._handler.setFormatter(JsonLogFormatter())
        else:
            self._handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT))

    def is_debugging(self) -> bool:
        return self.isEnabledFor(logging.DEBUG)


logger = RSLogger()


def _console_logger(name: str, terminator: str) -> logging.Logger:
    console = logging.getLogger(name)
    console.setLevel(logging.DEBUG)
    console.propagate = False
    handler = StderrHandler(terminator)
    handler.setFormatter(ConsoleFormatter())
    console.addHandler(handler)
    return console


# progress of the remote pipeline stages, one line per stage
stage_logger = _console_logger("rsconnect_deploy.stage", "")

# output of the deployment task running on Connect
task_logger = _console_logger("rsconnect_deploy.task", "\n")


def stage_logged(label: str):
    """Log label when the wrapped stage starts, then [OK] or [ERROR] when it ends."""

    def decorator(f: Callable[P, T]) -> Callable[P, T]:
        @wraps(f)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            stage_logger.info(label)
            try:
                result = f(*args, **kwargs)
            except Exception as exc:
                stage_logger.error(" \t[ERROR]: %s\n", exc)
                raise
            stage_logger.info(" \t[OK]\n")
            return result

        return wrapper

    return decorator

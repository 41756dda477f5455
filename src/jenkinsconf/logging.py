"""
    Copyright 2026 Inmanta

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        http://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.

    Contact: code@inmanta.com
"""

import logging
import logging.config
import os
import re
import sys
from argparse import Namespace
from collections.abc import Mapping, Sequence
from typing import Optional, TextIO

import colorlog
import yaml
from colorlog.formatter import LogColors

from jenkinsconf import const

LOGGER = logging.getLogger(__name__)


def _is_on_tty() -> bool:
    return (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()) or const.ENVIRON_FORCE_TTY in os.environ


def python_log_level_to_name(python_log_level: int) -> str:
    """Convert a python log level to a human readable version that works in log config files"""
    name_to_level = logging.getLevelNamesMapping()
    level_to_name = {v: k for k, v in name_to_level.items()}

    result = level_to_name.get(python_log_level)
    if result is not None:
        return result
    return str(python_log_level)


"""
This dictionary maps the verbosity levels to the corresponding Python log levels
"""
log_levels = {
    "0": logging.ERROR,
    "1": logging.WARNING,
    "2": logging.INFO,
    "3": logging.DEBUG,
    "4": 3,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "TRACE": 3,
}

logging.addLevelName(3, "TRACE")


def convert_log_level(log_level: str, cli: bool = False) -> int:
    """
    Convert the given verbosity level to the corresponding Python log level.

    :param log_level: The verbosity level, a digit or a level name
    :param cli: True if the logs will be outputted to the CLI.
    :return: python log level
    """
    # maximum of 4 v's
    if log_level.isdigit() and int(log_level) > 4:
        log_level = "4"
    # The minimal log level on the CLI is always WARNING
    if cli and (log_level == "ERROR" or (log_level.isdigit() and int(log_level) < 1)):
        log_level = "WARNING"
    if log_level not in log_levels:
        raise ValueError("Unknown log level: %r" % log_level)
    return log_levels[log_level]


class Options(Namespace):
    """
    The Options class provides a way to configure the LoggerConfig with the following attributes:

    :param log_file: if this attribute is set, the logs will be written to the specified file instead of the stream
                     specified in `get_instance`.
    :param log_file_level: the logging level for the file handler (if `log_file` is set).
    :param verbose: the verbosity level of the log messages. can be a number from 0 to 4.
                    if a bigger number is provided, 4 will be used. default is 1 (WARNING)
    :param timed: if true, adds the time to the formatter in the log lines.
    :param logging_config: Path to a yaml file with a dict-based logging config.
    """

    log_file: Optional[str] = None
    log_file_level: str = "INFO"
    verbose: int = 1
    timed: bool = False
    logging_config: Optional[str] = None


def read_logging_config_file(file_name: str) -> dict[str, object]:
    """
    Read a dict-based logging config from a yaml file.
    """
    file_name = os.path.abspath(file_name)
    try:
        with open(file_name, "r") as fh:
            logging_config_as_str = fh.read()
    except FileNotFoundError:
        raise Exception(f"Logging config file {file_name} doesn't exist.")

    try:
        result = yaml.safe_load(logging_config_as_str)
    except yaml.YAMLError:
        raise Exception(f"Failed to parse logging config file from {file_name} as yaml.")
    if not isinstance(result, dict):
        raise Exception(f"Logging config file {file_name} should contain a mapping.")
    return result


def get_console_formatter_config(options: Optional[Options] = None) -> dict[str, object]:
    """
    Returns the dict-based formatter config for logs that will be sent to the console.
    """
    log_format = "%(asctime)s " if options and options.timed else ""
    if _is_on_tty():
        log_format += "%(log_color)s%(name)-25s%(levelname)-8s%(reset)s%(blue)s%(message)s"
        log_colors = {"DEBUG": "cyan", "INFO": "green", "WARNING": "yellow", "ERROR": "red", "CRITICAL": "red"}
    else:
        log_format += "%(name)-25s%(levelname)-8s%(message)s"
        log_colors = None

    return {
        "()": "jenkinsconf.logging.MultiLineFormatter",
        "fmt": log_format,
        "log_colors": log_colors,
        "reset": _is_on_tty(),
        "no_color": not _is_on_tty(),
    }


def get_logging_config_from_options(stream: TextIO, options: Options) -> dict[str, object]:
    """
    Build the dictConfig for the given options.
    """
    handlers: dict[str, object] = {}
    if options.log_file:
        log_level = convert_log_level(options.log_file_level)
        handlers["root_handler"] = {
            "class": "logging.handlers.WatchedFileHandler",
            "level": python_log_level_to_name(log_level),
            "formatter": "core_log_formatter",
            "filename": options.log_file,
            "mode": "a+",
        }
    else:
        log_level = convert_log_level(str(options.verbose), cli=True)
        handlers["root_handler"] = {
            "class": "logging.StreamHandler",
            "formatter": "core_console_formatter",
            "level": python_log_level_to_name(log_level),
            "stream": stream,
        }

    return {
        "version": 1,
        "formatters": {
            "core_console_formatter": get_console_formatter_config(options),
            "core_log_formatter": {
                "format": "%(asctime)s %(levelname)-8s %(name)-10s %(message)s",
            },
        },
        "handlers": handlers,
        "loggers": {
            "tornado.general": {"level": "WARNING", "propagate": True},
        },
        "root": {"handlers": ["root_handler"], "level": python_log_level_to_name(log_level)},
        "disable_existing_loggers": False,
    }


class LoggerConfig:
    """
    This class is the entry-point for configuring the Python logging framework.

    Call `get_instance` first to install a bootstrap console handler, and `apply_options` once the
    logging options are known.
    """

    _instance: Optional["LoggerConfig"] = None

    def __init__(self, stream: TextIO = sys.stdout) -> None:
        self._stream = stream
        self._handlers: Sequence[logging.Handler] = []
        bootstrap = get_logging_config_from_options(stream, Options(verbose=2))
        self._apply_logging_config(bootstrap)

    @classmethod
    def get_instance(cls, stream: TextIO = sys.stdout) -> "LoggerConfig":
        """
        This method should be used to obtain an instance of this class, because this class is a singleton.

        :param stream: The stream to send log messages to. Default is standard output (sys.stdout)
        """
        if cls._instance:
            if cls._instance._stream is not stream:
                raise Exception("Instance already exists with a different stream")
        else:
            cls._instance = cls(stream)
        return cls._instance

    @classmethod
    def clean_instance(cls) -> None:
        """
        Remove and close the handlers installed by this instance.
        """
        if cls._instance is not None:
            for handler in cls._instance._handlers:
                logging.root.removeHandler(handler)
                handler.close()
        cls._instance = None

    def get_handler(self) -> logging.Handler:
        """
        The handler installed by the logging config that was applied last
        """
        assert len(self._handlers) == 1
        return self._handlers[0]

    def apply_options(self, options: Options) -> None:
        """
        Apply the logging options. A yaml logging config file takes precedence over all other options.
        """
        if options.logging_config:
            dict_config = read_logging_config_file(options.logging_config)
            LOGGER.debug("Using logging config from %s", options.logging_config)
        else:
            dict_config = get_logging_config_from_options(self._stream, options)
        self._apply_logging_config(dict_config)

    def _apply_logging_config(self, dict_config: Mapping[str, object]) -> None:
        for handler in self._handlers:
            logging.root.removeHandler(handler)
            handler.close()
        handlers_before = list(logging.root.handlers)
        try:
            logging.config.dictConfig(dict(dict_config))
        except (ValueError, TypeError, AttributeError, ImportError) as e:
            raise Exception(f"Failed to apply the logging config defined in {dict_config}.") from e
        self._handlers = [handler for handler in logging.root.handlers if handler not in handlers_before]


class MultiLineFormatter(colorlog.ColoredFormatter):
    """
    Formatter for multi-line log records.

    This class extends the `colorlog.ColoredFormatter` class to indent the continuation lines of a record
    to the width of the header of the first line.
    """

    def __init__(
        self,
        fmt: Optional[str] = None,
        *,
        log_colors: Optional[LogColors] = None,
        reset: bool = True,
        no_color: bool = False,
    ):
        super().__init__(fmt, log_colors=log_colors, reset=reset, no_color=no_color)
        self.fmt = fmt

    def get_header_length(self, record: logging.LogRecord) -> int:
        """
        Get the header length of a given log record, without color codes.
        """
        formatter = colorlog.ColoredFormatter(
            fmt=self.fmt,
            log_colors=self.log_colors,
            reset=False,
            no_color=True,
        )
        header = formatter.format(
            logging.LogRecord(
                record.name,
                record.levelno,
                record.pathname,
                record.lineno,
                "",
                (),
                None,
            )
        )
        return len(header)

    def format(self, record: logging.LogRecord) -> str:
        indent: str = " " * self.get_header_length(record)
        head, *tail = super().format(record).splitlines(True)
        return head + "".join(indent + line for line in tail)


_RESOURCE_ID_REGEX = re.compile(r"^(?P<type>[\w:]+)\[(?P<name>.*)\]$")


def resource_logger(resource_id: str) -> logging.Logger:
    """
    Returns the child of the resource action logger for the type of the given resource id.
    """
    match = _RESOURCE_ID_REGEX.match(resource_id)
    if match is None:
        return logging.getLogger(const.NAME_RESOURCE_ACTION_LOGGER)
    return logging.getLogger(f"{const.NAME_RESOURCE_ACTION_LOGGER}.{match.group('type')}")

"""This module defines logging capabilities for kubestrap."""

import logging
import sys
import time

# pylint: disable=no-name-in-module
from huepy import (bad, red, info as infomsg, yellow, run, grey, que, good,
                   green)

LOG_LEVELS = list(range(5))
DEFAULT_LOG_LEVEL = 3

LEVEL_NAMES = {
    'quiet': 0,
    'error': 1,
    'warning': 2,
    'info': 3,
    'debug': 4}


def get_logger(name):
    """Returns a Python logger.

    Only a single handler which logs to STDOUT is added to a logger,
    otherwise multiple calls with the same name would add duplicate
    handlers and lead to extra prints.

    Args:
        name (str): The name of the Logger.

    Returns:
        A Python Logger.
    """

    log = logging.getLogger(name)
    set_level(log, Logger.LOG_LEVEL)

    if not log.handlers:
        sh = logging.StreamHandler(sys.stdout)
        fmt = logging.Formatter("%(message)s")
        sh.setFormatter(fmt)
        log.addHandler(sh)

    return log


def set_level(logger, level):
    """Sets the logging level.

    The kubestrap levels map to the Python levels as follows:
    1 is ERROR, 2 is WARNING, 3 is INFO, 4 is DEBUG and 0 disables
    the logger.

    Args:
        logger: A Python logger object.
        level (int): The logging level.

    Raises:
        ValueError if log level is unsupported.
    """

    if level not in LOG_LEVELS:
        raise ValueError(f"log level {level} is not supported")

    logger.disabled = False
    if level == 1:
        logger.setLevel(logging.ERROR)
    elif level == 2:
        logger.setLevel(logging.WARNING)
    elif level == 3:
        logger.setLevel(logging.INFO)
    elif level == 4:
        logger.setLevel(logging.DEBUG)
    else:
        logger.disabled = True


class Singleton(type):
    """Metaclass to implement the Singleton pattern.

    Should only be used for logging, to avoid introducing mutable global
    state into the application. The first call creates the instance,
    subsequent calls re-initialize and return the same object.

    Example:
        >>> log1 = Logger(__name__)
        >>> log2 = Logger("kubestrap")
        >>> id(log1) == id(log2)
        True
    """
    _instances = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instances:
            cls._instances[cls] = super(Singleton, cls).__call__(*args, **kwargs)
        else:
            cls._instances[cls].__init__(*args, **kwargs)

        return cls._instances[cls]


class Logger(metaclass=Singleton):
    """This class provides logging capabilities.

    A singleton proxy of logging.Logger. Set Logger.LOG_LEVEL before use.

    The different levels are:

    .. code:: shell

        * 0 - quiet (no output)
        * 1 - error
        * 2 - warning
        * 3 - info
        * 4 - debug

    All functions except for :meth:`.Logger.question` support ``%``-style
    arguments.

    Example:
        >>> log = Logger(__name__)
        >>> log.info("hello %s", "world")
        [~] hello world
        >>> log.success("phase %s done", "system-prep")
        [+] phase system-prep done

    Attributes:
        LOG_LEVEL (int): The log level to be used across the application.

    Args:
        name (str): The name of the logger.
    """

    LOG_LEVEL = DEFAULT_LOG_LEVEL

    def __init__(self, name):
        self.logger = get_logger(name)

    @property
    def level(self):
        """Returns the Python log level equivalent.

        Returns:
            The Python loglevel equivalent, 0 if disabled.
        """
        if self.logger.disabled:
            return 0

        return self.logger.level

    @level.setter
    def level(self, level):
        try:
            level = LEVEL_NAMES[level]
        except KeyError:
            level = int(level)

        Logger.LOG_LEVEL = level
        set_level(self.logger, level)

    def error(self, msg, *args, color=True, **kwargs):
        """Logs a message on error level, in red with ``[-]``."""

        if color:
            msg = bad(red(msg))

        self.logger.error(msg, *args, **kwargs)

    def warning(self, msg, *args, color=True, **kwargs):
        """Logs a message on warning level, in yellow with ``[!]``."""

        if color:
            msg = infomsg(yellow(msg))

        self.logger.warning(msg, *args, **kwargs)

    def warn(self, msg, *args, color=True, **kwargs):
        """Convenience function, calls :meth:`.Logger.warning`."""

        self.warning(msg, *args, **kwargs, color=color)

    def info(self, msg, *args, color=True, **kwargs):
        """Logs a message on info level, in grey with ``[~]``."""

        if color:
            msg = run(grey(msg))

        self.logger.info(msg, *args, **kwargs)

    def debug(self, msg, *args, color=True, **kwargs):
        """Logs a message on debug level.

        If color is True, will be logged in grey with the current
        timestamp in brackets as prefix.

        Example:
            >>> log.debug("test")
            [20190426-155611] test
        """

        if color:
            now = time.strftime("%Y%m%d-%H%M%S")
            msg = grey(f"[{now}] {msg}")

        self.logger.debug(msg, *args, **kwargs)

    def success(self, msg, *args, color=True, **kwargs):
        """Indicates a success, printed on info level in green with ``[+]``."""

        if color:
            msg = good(green(msg))

        self.logger.info(msg, *args, **kwargs)

    @staticmethod
    def question(msg, color=True):
        """Outputs a question.

        Questions are unaffected by the log level and always printed.
        """

        if color:
            msg = que(msg)

        print(msg)

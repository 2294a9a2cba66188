"""Console and file logging for kubeboot.

kubeboot talks in verbosity levels from 0 (quiet) to 4 (debug) instead of
Python log levels. Every module creates ``LOGGER = Logger(__name__)`` and
the CLI sets the verbosity once with ``LOGGER.level = ...``.

Cloud-init runs the bootstrap without a terminal, so besides STDOUT every
record can also be sent to a log file on the node, see
:func:`add_file_handler`.
"""

import logging
import sys
import time

from huepy import bad, red, info as infomsg, yellow, run, grey, good, green

DEFAULT_LOG_LEVEL = 3
LOG_NAMESPACE = "kubeboot"

# verbosity 0 has no Python level, it disables the logger
_PY_LEVELS = {
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG}

LOG_LEVELS = [0] + sorted(_PY_LEVELS)

_LEVEL_NAMES = {
    'quiet': 0,
    'error': 1,
    'warning': 2,
    'info': 3,
    'debug': 4}


def level_from_name(level):
    """Converts a verbosity name or number to a kubeboot log level.

    Args:
        level (str or int): e.g. ``"debug"``, ``"3"`` or ``3``.

    Returns:
        int

    Raises:
        ValueError if the level can not be converted.
    """
    try:
        return _LEVEL_NAMES[level]
    except KeyError:
        return int(level)


def set_level(logger, level):
    """Applies a kubeboot verbosity to a Python logger.

    Raises:
        ValueError if ``level`` is not one of :data:`LOG_LEVELS`.
    """
    if level not in LOG_LEVELS:
        raise ValueError(f"log level {level} is not supported")

    logger.disabled = level == 0
    if level:
        logger.setLevel(_PY_LEVELS[level])


def get_logger(name):
    """A Python logger printing bare messages to STDOUT.

    The handler is attached once, asking again for the same name returns
    the same logger.
    """
    log = logging.getLogger(name)
    set_level(log, Logger.LOG_LEVEL)

    if not log.handlers:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(logging.Formatter("%(message)s"))
        log.addHandler(console)

    return log


def add_file_handler(path, name=LOG_NAMESPACE):
    """Also send records of logger ``name`` (and its children) to ``path``.

    Records are prefixed with a timestamp, the message text is the same
    as on the console.

    Args:
        path (str): the log file, e.g. ``/var/log/kubeboot-master.log``
        name (str): the logger to attach to

    Returns:
        the created :class:`logging.FileHandler`
    """
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s"))
    logging.getLogger(name).addHandler(handler)
    return handler


def _stamp(msg):
    return grey("[%s] %s" % (time.strftime("%Y%m%d-%H%M%S"), msg))


class Singleton(type):
    """Metaclass keeping a single instance per class.

    Calling the class again re-runs ``__init__`` on the existing instance,
    so ``Logger("x")`` everywhere in the code base refers to one object.
    """
    _instances = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instances:
            cls._instances[cls] = super().__call__(*args, **kwargs)
        else:
            cls._instances[cls].__init__(*args, **kwargs)

        return cls._instances[cls]


class Logger(metaclass=Singleton):
    """A proxy to :class:`logging.Logger` with colored prefixes.

    ``[-]`` marks errors, ``[!]`` warnings, ``[~]`` progress and ``[+]``
    finished work. Debug messages carry a timestamp instead. All methods
    take ``%``-style arguments and ``color=False`` to log the bare text.

    Example:
        >>> log = Logger(__name__)
        >>> log.info("installing %s", "containerd")
        [~] installing containerd

    Attributes:
        LOG_LEVEL (int): the verbosity used for every new logger.

    Args:
        name (str): The name of the logger.
    """

    LOG_LEVEL = DEFAULT_LOG_LEVEL

    def __init__(self, name):
        self.logger = get_logger(name)

    @property
    def level(self):
        """The Python level of the wrapped logger, 0 if it is disabled."""
        return 0 if self.logger.disabled else self.logger.level

    @level.setter
    def level(self, level):
        level = level_from_name(level)
        Logger.LOG_LEVEL = level
        set_level(self.logger, level)

    def _log(self, pylevel, decorate, msg, args, color, kwargs):
        if color:
            msg = decorate(msg)
        self.logger.log(pylevel, msg, *args, **kwargs)

    def error(self, msg, *args, color=True, **kwargs):
        self._log(logging.ERROR, lambda m: bad(red(m)),
                  msg, args, color, kwargs)

    def warning(self, msg, *args, color=True, **kwargs):
        self._log(logging.WARNING, lambda m: infomsg(yellow(m)),
                  msg, args, color, kwargs)

    def info(self, msg, *args, color=True, **kwargs):
        self._log(logging.INFO, lambda m: run(grey(m)),
                  msg, args, color, kwargs)

    def debug(self, msg, *args, color=True, **kwargs):
        self._log(logging.DEBUG, _stamp, msg, args, color, kwargs)

    def success(self, msg, *args, color=True, **kwargs):
        """Logs finished work on info level."""
        self._log(logging.INFO, lambda m: good(green(m)),
                  msg, args, color, kwargs)

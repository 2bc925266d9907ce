import collections
import logging
import sys

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

from ..ui.actions import signals

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

# Records kept in memory for the management window
TANK_SIZE = 10000


def set_logging_level(level):
    """
    Sets the logging level for the root logger and its handlers.

    Args:
        level (int): The logging level to set. Should be one of the standard logging levels.
    """
    if not isinstance(level, int):
        raise ValueError('Logging level must be an integer.')
    if level not in (
            logging.DEBUG,
            logging.INFO,
            logging.WARNING,
            logging.ERROR,
            logging.CRITICAL,
    ):
        raise ValueError('Invalid logging level. Use one of the standard logging levels, e.g., logging.DEBUG.')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def qt_message_handler(mode, context, message):
    """
    Converts Qt messages to standard Python logging.
    """
    logger = logging.getLogger('Qt')

    message = message.strip()

    if mode == QtMsgType.QtDebugMsg:
        logger.debug(message)
    elif mode == QtMsgType.QtInfoMsg:
        logger.info(message)
    elif mode == QtMsgType.QtWarningMsg:
        logger.warning(message)
    elif mode == QtMsgType.QtCriticalMsg:
        logger.error(message)
    elif mode == QtMsgType.QtFatalMsg:
        logger.critical(message)
        sys.exit(1)


def setup_logging(enable_stream_handler=True, enable_qt_handler=True, log_level=LOG_LEVEL):
    """
    Configures the root logger and installs Qt message handler.

    Args:
        enable_stream_handler (bool): Also print records to stdout.
        enable_qt_handler (bool): Route Qt's own messages through Python logging.
        log_level (int): Level for the root logger and its handlers.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear all handlers to avoid formatting conflicts
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if enable_stream_handler:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(log_level)
        root_logger.addHandler(stream_handler)

    tank_handler = TankHandler()
    tank_handler.setFormatter(formatter)
    tank_handler.setLevel(log_level)
    root_logger.addHandler(tank_handler)

    if enable_qt_handler:
        qInstallMessageHandler(qt_message_handler)


def get_tank():
    """
    Returns the TankHandler installed on the root logger, or None.
    """
    return next((h for h in logging.getLogger().handlers if isinstance(h, TankHandler)), None)


class TankHandler(logging.Handler):
    """
    Keeps the most recent formatted records in memory for the management window.

    Terse notifications leave out missing components and unconfirmed commands; the
    window reads them back from here. The oldest records are dropped once
    ``TANK_SIZE`` is reached.

    Attributes:
        tank (collections.deque[tuple[int, str]]): Level and formatted message of each record.
    """

    def __init__(self, size=TANK_SIZE):
        super().__init__()
        self.tank = collections.deque(maxlen=size)

    def emit(self, record):
        try:
            message = self.format(record)
            self.tank.append((record.levelno, message))
            if record.levelno >= logging.ERROR:
                signals.showLogs.emit()
        except (Exception, KeyboardInterrupt):
            self.handleError(record)

    def get_logs(self, level=logging.NOTSET, contains=None):
        """
        Returns stored messages at or above a level.

        Args:
            level (int, optional): The minimum logging level.
            contains (str, optional): Only messages containing this text, e.g. a preset or component name.

        Returns:
            list[str]: The matching formatted messages, oldest first.
        """
        return [msg for lvl, msg in self.tank if lvl >= level and (not contains or contains in msg)]

    def clear_logs(self):
        self.tank.clear()

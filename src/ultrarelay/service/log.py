import logging
from logging import handlers

from rich.logging import RichHandler

from ultrarelay.common import expand_user, paths

ultrarelay_logger = logging.getLogger('ultrarelay')
ultrarelay_logger.setLevel(logging.DEBUG)

# Third-party client loggers, kept quieter than our own
gmqtt_logger = logging.getLogger('gmqtt')
gmqtt_logger.setLevel(logging.WARNING)
pymodbus_logger = logging.getLogger('pymodbus')
pymodbus_logger.setLevel(logging.WARNING)

STDOUT_FORMATTER = logging.Formatter('%(message)s')
DEF_FORMATTER = logging.Formatter('%(asctime)s - %(levelname)-5s - %(name)s - %(message)s')

STDOUT_HANDLER_NAME = 'stdout-handler'
FILE_HANDLER_NAME = 'file-handler'


def configure(enabled, log_file_level='info', log_file_path=None):
    if not enabled:
        ultrarelay_logger.disabled = True
        return

    setup_console('DEBUG')

    if log_file_level != 'off':
        level = logging.getLevelName(log_file_level.upper())
        log_file_path = expand_user(log_file_path) or paths.log_file_path(create=True)
        setup_file(level, log_file_path)
        if level < ultrarelay_logger.getEffectiveLevel():
            ultrarelay_logger.setLevel(level)


def setup_console(level):
    stdout_handler = RichHandler(show_path=False, log_time_format="[%X]")
    stdout_handler.set_name(STDOUT_HANDLER_NAME)
    stdout_handler.setLevel(level)
    stdout_handler.setFormatter(STDOUT_FORMATTER)
    register_handler(stdout_handler)


def setup_file(level, file):
    file_handler = logging.handlers.WatchedFileHandler(file)
    file_handler.set_name(FILE_HANDLER_NAME)
    file_handler.setLevel(level)
    file_handler.setFormatter(DEF_FORMATTER)
    register_handler(file_handler)


def register_handler(handler):
    for logger in (ultrarelay_logger, gmqtt_logger, pymodbus_logger):
        register_handler_for_logger(logger, handler)


def _find_handler(logger, name):
    for handler in logger.handlers:
        if handler.name == name:
            return handler

    return None


def register_handler_for_logger(logger, handler):
    previous = _find_handler(logger, handler.name)
    if previous:
        logger.removeHandler(previous)

    logger.addHandler(handler)

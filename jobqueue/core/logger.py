import logging
import sys
import json
from datetime import datetime
from pathlib import Path
from logging.handlers import TimedRotatingFileHandler


def _render_extras(record, formatter: logging.Formatter) -> str:
    """Exception, stack and context blocks appended after the message line"""
    rendered = ""

    if record.exc_info:
        rendered += f"\n{formatter.formatException(record.exc_info)}"

    if getattr(record, 'stack', None):
        rendered += f"\nStack trace:\n{record.stack}"

    context = getattr(record, 'context', None)
    if context:
        try:
            # datetimes and job ids end up in contexts, so fall back to str()
            rendered += f"\nContext: {json.dumps(context, indent=2, default=str)}"
        except (TypeError, ValueError):
            rendered += f"\nContext: {context}"

    return rendered


class ColoredLogFormatter(logging.Formatter):
    """Console formatter, level name colored"""

    COLORS = {
        'DEBUG': '\033[36m',  # Cyan
        'INFO': '\033[32m',  # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',  # Red
        'CRITICAL': '\033[35m',  # Purple
        'RESET': '\033[0m'
    }

    def format(self, record):
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        level_name = record.levelname
        colored_level = f"{self.COLORS.get(level_name, '')}{level_name}{self.COLORS['RESET']}"

        # [timestamp] LEVEL (logger): message
        log_entry = f"[{timestamp}] {colored_level} ({record.name}): {record.getMessage()}"
        return log_entry + _render_extras(record, self)


class FileLogFormatter(logging.Formatter):
    """Plain formatter for file output (no colors)"""

    def format(self, record):
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        log_entry = f"[{timestamp}] {record.levelname} ({record.name}): {record.getMessage()}"
        return log_entry + _render_extras(record, self)


def setup_logging(
        log_level=logging.INFO,
        log_dir='logs',
        app_name='jobqueue',
        backup_count=30,
        to_file=True,
):
    """
    Configure a named logger with a colored console handler and a
    file handler rotated at midnight.

    Calling it again for the same name returns the existing logger untouched.
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())

    logger_instance = logging.getLogger(app_name)
    logger_instance.setLevel(log_level)

    if logger_instance.handlers:
        return logger_instance

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredLogFormatter())
    logger_instance.addHandler(console_handler)

    if not to_file:
        return logger_instance

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # app-name-YYYY-MM-DD.log
    today = datetime.now().strftime('%Y-%m-%d')
    log_file = log_path / f"{app_name}-{today}.log"

    file_handler = TimedRotatingFileHandler(
        filename=str(log_file),
        when='midnight',
        interval=1,
        backupCount=backup_count,
        encoding='utf-8'
    )

    # TimedRotatingFileHandler appends .YYYY-MM-DD; keep app-name-YYYY-MM-DD.log
    def namer(default_name):
        return default_name.replace(f"{app_name}-{today}.log.", f"{app_name}-")

    file_handler.namer = namer
    file_handler.setFormatter(FileLogFormatter())
    logger_instance.addHandler(file_handler)

    return logger_instance


def log_with_context(logger, level, message, context=None):
    """Log a message with additional context data"""
    extra = {'context': context} if context else {}
    logger.log(level, message, extra=extra)


def debug(logger, message, context=None):
    log_with_context(logger, logging.DEBUG, message, context)


def info(logger, message, context=None):
    log_with_context(logger, logging.INFO, message, context)


def warning(logger, message, context=None):
    log_with_context(logger, logging.WARNING, message, context)


def error(logger, message, context=None):
    log_with_context(logger, logging.ERROR, message, context)


def critical(logger, message, context=None):
    log_with_context(logger, logging.CRITICAL, message, context)

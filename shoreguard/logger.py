import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(log_dir: str = 'logs', level: int = logging.INFO,
                  log_file: Optional[str] = 'shoreguard.log') -> logging.Logger:
    """Configures console and rotating file logging for the bot.

    The ``shoreguard`` and ``discord`` loggers share the same handlers so
    gateway errors end up next to moderation events.

    Args:
        log_dir: Directory where the rotating log file is written.
        level: Minimum level emitted by both handlers.
        log_file: File name inside ``log_dir``, or None for console only.

    Returns:
        The configured ``shoreguard`` package logger.
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            path / log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding='utf-8'))

    for name in ('shoreguard', 'discord'):
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.handlers.clear()
        for handler in handlers:
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.propagate = False

    return logging.getLogger('shoreguard')

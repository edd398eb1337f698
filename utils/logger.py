import logging
import sys
from datetime import datetime
from colorama import init, Fore, Style

# Initialize colorama
init(autoreset=True)

class CustomFormatter(logging.Formatter):
    """
    Custom formatter with color coding for different levels/tags.
    tags: ERROR, NETWORK, DISCORD, MODERATION
    """

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA + Style.BRIGHT,
        'NETWORK': Fore.BLUE,
        'DISCORD': Fore.MAGENTA,
        'MODERATION': Fore.LIGHTRED_EX
    }

    def format(self, record: logging.LogRecord) -> str:
        # Tag wins over level for coloring
        tag = getattr(record, 'tag', record.levelname)
        color = self.COLORS.get(tag, Fore.WHITE)

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        # Structure: [TIMESTAMP] [TAG] Message
        log_fmt = f"{Style.DIM}[{timestamp}]{Style.RESET_ALL} {color}[{tag}]{Style.RESET_ALL} %(message)s"
        return logging.Formatter(log_fmt).format(record)

def setup_logger(name: str = "Bot", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Console handler
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(CustomFormatter())
        logger.addHandler(handler)

    return logger

class TaggedLogger:
    """Thin wrapper so call sites can write log.network(...) / log.moderation(...)."""

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def debug(self, msg: str):
        self._logger.debug(msg)

    def info(self, msg: str):
        self._logger.info(msg)

    def warning(self, msg: str):
        self._logger.warning(msg)

    def error(self, msg: str, exc_info=None):
        self._logger.error(msg, exc_info=exc_info, extra={'tag': 'ERROR'})

    def network(self, msg: str):
        self._logger.info(msg, extra={'tag': 'NETWORK'})

    def discord(self, msg: str):
        self._logger.info(msg, extra={'tag': 'DISCORD'})

    def moderation(self, msg: str):
        self._logger.info(msg, extra={'tag': 'MODERATION'})

# Global logger instance
logger = setup_logger("Echoguard")
_tagged = TaggedLogger(logger)

def get_logger() -> TaggedLogger:
    return _tagged

import logging
import os
import sys
from typing import Iterable

from tqdm import tqdm

# Modules log through logging.getLogger(__name__), all children of this one.
PACKAGE_LOGGER_NAME = __name__.split('.')[0]

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

# Client libraries that log every request at INFO.
NOISY_LIBRARIES = ('httpx', 'httpcore', 'openai')


class TqdmLoggingHandler(logging.Handler):
    """Console handler that writes through ``tqdm.write`` so job progress bars stay intact."""

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=sys.stderr)
            self.flush()
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


def quiet_libraries(names: Iterable[str] = NOISY_LIBRARIES, level: int = logging.WARNING) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def setup_logger(log_level_str: str, log_file_path: str, log_to_console: bool) -> logging.Logger:
    """
    Configure the package logger used by every pipeline module.

    Args:
        log_level_str: Level name such as 'INFO' or 'DEBUG'; unknown names fall back to INFO.
        log_file_path: Log file location. Empty string disables file logging.
        log_to_console: Whether to add the tqdm-aware console handler.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level_str.upper(), logging.INFO))

    # Reconfiguring replaces handlers instead of stacking duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    if log_file_path:
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if log_to_console:
        console_handler = TqdmLoggingHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if logger.level > logging.DEBUG:
        quiet_libraries()

    return logger

import logging
import sys
from logging.handlers import RotatingFileHandler

from .config import LoggingSettings


def setup_logging(config: LoggingSettings) -> logging.Logger:
    """Configure the ``library_admin`` logger tree.

    Console output always goes to stdout; a rotating file handler is added
    when ``config.file`` is set.  Calling this twice does not stack handlers.
    """
    logger = logging.getLogger("library_admin")
    if logger.handlers:
        return logger

    level = getattr(logging, config.level.upper(), logging.INFO)
    logger.setLevel(level)
    formatter = logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if config.file:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=10485760,  # 10MB
            backupCount=5,
        )
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )
        )
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    return logger

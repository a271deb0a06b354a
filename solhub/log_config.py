import logging

from .config_manager import get_config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(config=None):
    """Configure the 'solhub' logger with a console handler and an optional file."""
    config = config or get_config()
    log_config = config.get_logging_config()

    logger = logging.getLogger('solhub')
    logger.setLevel(getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    log_file = log_config.get('file')
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger

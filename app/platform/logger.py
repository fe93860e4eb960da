import logging
import os
from logging.handlers import RotatingFileHandler

from app.platform.config import settings

# Run lifecycle logs land in logs/<LOG_FILE_NAME> beside the console output
log_dir = os.path.join(os.getcwd(), "logs")
if not os.path.exists(log_dir):
    os.makedirs(log_dir)

log_file_path = os.path.join(log_dir, settings.LOG_FILE_NAME)


def get_logger(name: str):
    """
    Logger for run-level events (run started, finished, crashed, stream
    disconnects) that should survive in a file after the process exits.
    Per-attempt provider noise stays on the stdlib loggers configured in
    app.main.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    # Root handlers from basicConfig would print every record a second time
    logger.propagate = False

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    file_handler = RotatingFileHandler(log_file_path, maxBytes=10_000_000, backupCount=5)
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.INFO)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger

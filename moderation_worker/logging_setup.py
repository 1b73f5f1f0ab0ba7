import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s'
LOG_FILE_NAME = "moderation.log"

# Client libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "openai", "psycopg.pool")


def setup_logging(log_level: str = "INFO", log_dir: str = "/app/data/worker") -> logging.Logger:
    """Send worker logs to <log_dir>/moderation.log (rotated) and the console"""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("moderation_worker")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.propagate = False

    # setup_logging may run again on re-initialize
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    log_file = log_path / LOG_FILE_NAME
    file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging initialized at {log_level.upper()}. Log file: {log_file}")
    return logger


def log_exception(logger: logging.Logger, message: str) -> None:
    """Log an error message together with the active exception's traceback"""
    logger.error(message, exc_info=True)

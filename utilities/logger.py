import os
import logging
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logger(name: str, log_file: str, level: int = logging.INFO) -> logging.Logger:
    """
    Create and return a logger that writes to `log_file`.
    - Ensures the directory exists.
    - Uses a rotating handler to avoid giant files.
    """
    # 1) Make sure the directory for the log file exists
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    # 2) Get (or create) the logger by name
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid adding multiple handlers if setup_logger is called twice
    if not logger.handlers:
        # 3) Create a rotating file handler (1 MB per file, keep 3 backups)
        handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger


def configure_app_logging(app) -> logging.Logger:
    """Route the `itam` logger family and the Flask app logger to one rotating file."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")), logging.INFO)
    log_file = os.path.join(app.config.get("LOG_DIR", "logs"), "itam.log")
    logger = setup_logger("itam", log_file, level)

    app.logger.setLevel(level)
    for handler in logger.handlers:
        if handler not in app.logger.handlers:
            app.logger.addHandler(handler)
    return logger

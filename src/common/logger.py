import logging
import os
import sys
# Import the process-safe handler
from concurrent_log_handler import ConcurrentRotatingFileHandler
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Create a directory for log files if it doesn't exist
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)

def configure_logging(name: str = "PulseBackend") -> logging.Logger:
    """
    Configure and return a logger with process-safe file rotation and stream handlers.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    # Prevent adding duplicate handlers if this function is called multiple times
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
    )

    # Process-safe rotation, uses a lock file to coordinate between workers
    file_handler = ConcurrentRotatingFileHandler(
        LOG_DIR / "pulse.log",
        maxBytes=10*1024*1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    # Set a global hook for uncaught exceptions
    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.error("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = exception_handler

    # Keep records out of the root logger (uvicorn installs its own handlers there)
    logger.propagate = False

    return logger

# Initialize and export the logger for use in other modules
logger = configure_logging()

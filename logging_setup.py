import logging
import atexit
from datetime import datetime
import os
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_dir=None, level=logging.INFO):
    """
    Set up logging for a clustering run.

    Args:
        log_dir: Optional directory for log files
        level: Root logger level

    Returns:
        The configured logger
    """
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"tool_clustering_{timestamp}.log")
    else:
        log_file = f"tool_clustering_{timestamp}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Close and remove any existing handlers to avoid ResourceWarnings
    for handler in list(root_logger.handlers):
        try:
            handler.flush()
            handler.close()
        except Exception:
            pass
        root_logger.removeHandler(handler)

    file_handler = logging.FileHandler(log_file, 'w')
    console_handler = logging.StreamHandler(sys.stdout)

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    _log_handlers.clear()
    _log_handlers.extend([file_handler, console_handler])

    # Register the cleanup only once
    if not hasattr(setup_logging, "_registered"):
        atexit.register(close_handlers)
        setup_logging._registered = True

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized. Log file: {log_file}")

    return logger


def close_handlers():
    """Flush, close and detach the handlers installed by setup_logging."""
    root_logger = logging.getLogger()
    for handler in list(_log_handlers):
        try:
            handler.flush()
            handler.close()
        except Exception:
            pass
        root_logger.removeHandler(handler)
    _log_handlers.clear()


# Handlers installed by setup_logging, kept for cleanup
_log_handlers = []

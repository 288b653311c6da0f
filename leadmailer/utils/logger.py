"""
Logging helpers shared by every LeadMailer module.
"""
import logging
import os
from typing import Optional

from leadmailer.config import LOG_FILE, LOG_LEVEL

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_configured = False


def _configure_root(level: str, log_file: Optional[str]) -> None:
    """Attach console (and optional file) handlers to the package logger once."""
    global _configured
    if _configured:
        return

    root = logging.getLogger("leadmailer")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        directory = os.path.dirname(log_file)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger configured with the project format.

    Args:
        name: Logger name, usually the module's __name__

    Returns:
        Configured logger
    """
    _configure_root(LOG_LEVEL, LOG_FILE)
    return logging.getLogger(name)

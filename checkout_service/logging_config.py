"""
logging_config.py — Centralized Logging Configuration for the Checkout Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages consistently to the console and,
optionally, to a file.

Features:
    • Console output (stdout), optional file output via CHECKOUT_LOG_FILE
    • Process ID tagging for multi-worker deployments
    • Standardized log format for all modules
    • Reduced verbosity for external dependencies (httpx, sqlalchemy)
"""

import logging
import os
import sys


def setup_logging(level=None, log_file=None):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: CHECKOUT_LOG_LEVEL or INFO
        - Log format: timestamp, log level, process ID, logger name and message
        - Output destinations:
            1. Console (stdout): real-time logs, Docker/Kubernetes compatible
            2. File: CHECKOUT_LOG_FILE, if set
        - Reduced verbosity for third-party libraries such as httpx
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'
    level = level or os.environ.get("CHECKOUT_LOG_LEVEL", "INFO")
    log_file = log_file or os.environ.get("CHECKOUT_LOG_FILE")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level.upper(), format=log_format, handlers=handlers)

    # Reduce verbosity from external libraries
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)

"""
Centralized logging configuration for the bridge scripts
Supports console and file logging with configurable levels
"""
import logging
import os
from datetime import datetime


ROOT_LOGGER_NAME = 'glpi_bridge'
DEFAULT_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def create_log_directory(log_path):
    """
    Ensure log directory exists.

    Args:
        log_path: Path to log file
    """
    log_dir = os.path.dirname(log_path)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)


def setup_logger(name, config):
    """
    Setup logger with console and file handlers based on configuration.

    Args:
        name: Logger name (e.g., "glpi_bridge")
        config: Configuration dictionary containing logging settings

    Returns:
        logging.Logger: Configured logger instance

    Configuration Example:
        {
            "logging": {
                "level": "INFO",
                "console": true,
                "file": false,
                "file_path": "logs/bridge_{timestamp}.log",
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            }
        }

    Log Levels:
        - DEBUG: Lookups, cache hits, request payloads
        - INFO: Run start/end, created items, summaries
        - WARNING: Missing relations, skipped fields, best-effort failures
        - ERROR: Per-row failures, API errors
        - CRITICAL: Fatal errors that stop a run
    """
    logger = logging.getLogger(name)

    logging_config = config.get('logging') or {}
    log_level = str(logging_config.get('level', 'INFO')).upper()
    console_enabled = logging_config.get('console', True)
    file_enabled = logging_config.get('file', False)
    log_file_path = logging_config.get('file_path', 'logs/bridge_{timestamp}.log')
    log_format = logging_config.get('format', DEFAULT_FORMAT)

    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Clear existing handlers so repeated setup does not duplicate output
    logger.handlers = []
    logger.propagate = False

    formatter = logging.Formatter(log_format)

    if console_enabled:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(getattr(logging, log_level, logging.INFO))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if file_enabled:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_file_path.replace('{timestamp}', timestamp)

        create_log_directory(log_file)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        logger.info(f"Log file: {os.path.abspath(log_file)}")

    return logger


def get_logger(name):
    """
    Get a child logger for a specific module.

    Args:
        name: Module name (e.g., "importer", "reconciler")

    Returns:
        logging.Logger: Child logger instance
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

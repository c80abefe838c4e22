"""Centralized logging configuration."""
import logging
import sys

from config import LOG_LEVEL

ROOT_LOGGER = "cityguardian"

_configured = False


def configure_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """Attach a stdout handler to the application's root logger (once)."""
    global _configured
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper())
    if _configured:
        return root

    formatter = logging.Formatter(
        '%(asctime)s | %(name)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)
    _configured = True
    return root


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")

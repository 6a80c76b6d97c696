"""Logging configuration for TaxSmart."""
import logging
import logging.config
from pathlib import Path
from typing import Dict, Any, Optional


def get_logging_config(logs_folder: Optional[Path] = None, log_filename: str = "taxsmart.log") -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Logs always go to stdout; a file handler is added when ``logs_folder`` is set.
    """
    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "standard",
            "stream": "ext://sys.stdout"
        }
    }

    if logs_folder is not None:
        logs_folder.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "level": "INFO",
            "formatter": "detailed",
            "filename": str(logs_folder / log_filename),
            "mode": "a",
            "encoding": "utf-8"
        }

    handler_names = list(handlers)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(levelname)s - %(message)s"
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
            }
        },
        "handlers": handlers,
        "root": {
            "level": "INFO",
            "handlers": handler_names
        },
        "loggers": {
            "taxsmart": {
                "level": "DEBUG",
                "handlers": handler_names,
                "propagate": False
            }
        }
    }


def setup_logging(logs_folder: Optional[Path] = None, log_filename: str = "taxsmart.log") -> None:
    """Set up logging with the specified configuration."""
    config = get_logging_config(logs_folder, log_filename)

    # Clear any existing handlers to prevent duplicate logs
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.config.dictConfig(config)

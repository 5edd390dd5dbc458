import logging
import logging.config
import os
import sys


def build_config(level: str = None) -> dict:
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)-6s %(name)s:%(lineno)d %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": sys.stderr,
            },
        },
        "loggers": {
            "batchpay": {
                "level": level,
                "handlers": ["console"],
                "propagate": False,
            },
            # web3 is chatty at DEBUG about every provider request
            "web3": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": ["console"],
        },
    }


def setup_logging(level: str = None):
    """Apply the logging configuration."""
    logging.config.dictConfig(build_config(level))
